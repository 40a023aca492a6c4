from datetime import datetime
from typing import Any, Dict, Optional

from core.errors import invalid_input, not_found
from core.log import get_logger
from core.models.user import User

logger = get_logger(__name__)

SUPPORTED_LANGUAGES = ("en", "zh-cn", "zh-tw", "ja", "ko")
PROFICIENCY_LEVELS = ("beginner", "intermediate", "advanced")
MAX_NAME_LENGTH = 100


def serialize_settings(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "mother_language": user.mother_language,
        "learning_language": user.learning_language,
        "proficiency_level": user.proficiency_level,
    }


def get_user_profile(session, user_id: str) -> Optional[User]:
    return session.query(User).filter(User.id == user_id).first()


def check_user_setup(session, user_id: str) -> bool:
    """语言偏好都已设置才算完成初始化"""
    user = get_user_profile(session, user_id)
    return bool(user is not None and user.mother_language and user.learning_language)


def get_user_settings(session, user_id: str) -> Dict[str, Any]:
    user = get_user_profile(session, user_id)
    if user is None:
        raise not_found("User")
    return serialize_settings(user)


def validate_language_preferences(mother_language: str, learning_language: str, proficiency_level: str) -> None:
    issues = []
    if mother_language not in SUPPORTED_LANGUAGES:
        issues.append("mother_language is not supported")
    if learning_language not in SUPPORTED_LANGUAGES:
        issues.append("learning_language is not supported")
    if proficiency_level not in PROFICIENCY_LEVELS:
        issues.append(f"proficiency_level must be one of {', '.join(PROFICIENCY_LEVELS)}")
    if mother_language and mother_language == learning_language:
        issues.append("Mother language and learning language must be different")
    if issues:
        raise invalid_input(issues=issues)


def update_user_settings(
    session,
    user_id: str,
    email: str,
    mother_language: str,
    learning_language: str,
    proficiency_level: str,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """更新语言偏好；users 表中还没有该用户时按认证信息创建"""
    mother_language = str(mother_language or "").strip().lower()
    learning_language = str(learning_language or "").strip().lower()
    proficiency_level = str(proficiency_level or "").strip().lower()
    validate_language_preferences(mother_language, learning_language, proficiency_level)
    if name is not None:
        name = name.strip()
        if not name or len(name) > MAX_NAME_LENGTH:
            raise invalid_input(issues=["Name is required"] if not name else ["name is too long"])

    now = datetime.now()
    user = get_user_profile(session, user_id)
    if user is None:
        if not email:
            raise invalid_input("User email not available")
        user = User(id=user_id, email=email, created_at=now)
        session.add(user)
    user.mother_language = mother_language
    user.learning_language = learning_language
    user.proficiency_level = proficiency_level
    if name is not None:
        user.name = name
    user.updated_at = now
    session.commit()
    logger.info("用户语言设置已更新: user_id=%s %s -> %s", user_id, mother_language, learning_language)
    return serialize_settings(user)

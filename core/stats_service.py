import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.events import log_event, E
from core.log import get_logger
from core.models.achievement import Achievement
from core.models.user_stats import UserStats

logger = get_logger(__name__)

# 成就类型 -> (统计字段, 阈值)
ACHIEVEMENT_RULES = {
    "words_10": ("total_words_learned", 10),
    "words_100": ("total_words_learned", 100),
    "analyses_10": ("total_analyses", 10),
    "streak_7": ("longest_streak", 7),
    "streak_30": ("longest_streak", 30),
}


def _serialize_stats(stats: Optional[UserStats]) -> Dict[str, Any]:
    if stats is None:
        return {
            "total_words_learned": 0,
            "total_analyses": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "last_activity_date": None,
        }
    return {
        "total_words_learned": int(stats.total_words_learned or 0),
        "total_analyses": int(stats.total_analyses or 0),
        "current_streak": int(stats.current_streak or 0),
        "longest_streak": int(stats.longest_streak or 0),
        "last_activity_date": stats.last_activity_date,
    }


def get_user_stats(session, user_id: str) -> Dict[str, Any]:
    stats = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    return _serialize_stats(stats)


def _get_or_create_stats(session, user_id: str) -> UserStats:
    stats = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    if stats is None:
        stats = UserStats(
            id=str(uuid.uuid4()),
            user_id=user_id,
            total_words_learned=0,
            total_analyses=0,
            current_streak=0,
            longest_streak=0,
            updated_at=datetime.now(),
        )
        session.add(stats)
    return stats


def record_words_learned(session, user_id: str, count: int) -> Dict[str, Any]:
    count = max(0, int(count or 0))
    stats = _get_or_create_stats(session, user_id)
    stats.total_words_learned = int(stats.total_words_learned or 0) + count
    stats.updated_at = datetime.now()
    session.commit()
    return _serialize_stats(stats)


def unlock_achievements(session, user_id: str, now: Optional[datetime] = None) -> List[str]:
    """按当前统计解锁尚未获得的成就，返回本次新解锁的类型列表。"""
    stats = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    if stats is None:
        return []
    owned = {
        row.type
        for row in session.query(Achievement.type).filter(Achievement.user_id == user_id).all()
    }
    now = now or datetime.now()
    unlocked = []
    for kind, (field, threshold) in ACHIEVEMENT_RULES.items():
        if kind in owned:
            continue
        if int(getattr(stats, field, 0) or 0) >= threshold:
            session.add(Achievement(id=str(uuid.uuid4()), user_id=user_id, type=kind, unlocked_at=now))
            unlocked.append(kind)
    if unlocked:
        session.commit()
        log_event(logger, E.ACHIEVEMENT_UNLOCK, user_id=user_id, types=",".join(unlocked))
    return unlocked


def get_user_achievements(session, user_id: str) -> List[Dict[str, Any]]:
    rows = (
        session.query(Achievement)
        .filter(Achievement.user_id == user_id)
        .order_by(Achievement.unlocked_at.desc())
        .all()
    )
    return [
        {
            "id": r.id,
            "type": r.type,
            "unlocked_at": r.unlocked_at.isoformat() if r.unlocked_at else None,
        }
        for r in rows
    ]


def get_profile_overview(session, user: Dict[str, Any]) -> Dict[str, Any]:
    from core.usage_service import check_daily_limit
    from core.analysis_service import count_saved_analyses

    user_id = user["id"]
    return {
        "user": {
            "id": user_id,
            "email": user.get("email"),
            "name": user.get("name"),
            "role": user.get("role"),
        },
        "stats": get_user_stats(session, user_id),
        "usage": check_daily_limit(session, user_id),
        "achievements": get_user_achievements(session, user_id),
        "saved_count": count_saved_analyses(session, user_id),
    }

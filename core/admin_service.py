"""
后台管理：权限校验、用户管理、内容审核、操作日志、平台统计

所有写操作都会追加一条 admin_logs 记录（只追加）。
"""
import math
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import asc, desc, func, or_

from core import tts_service
from core.config import cfg
from core.db import DB
from core.errors import AppError, ErrorKind, invalid_input, not_found
from core.events import log_event, E
from core.log import get_logger
from core.models.achievement import Achievement
from core.models.admin_log import AdminLog, ADMIN_ACTIONS, TARGET_TYPES
from core.models.analysis_task import AnalysisTask
from core.models.daily_usage import DailyUsage
from core.models.saved_analysis import SavedAnalysis
from core.models.user import User, ADMIN_ROLES, ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN, STATUS_ACTIVE, STATUS_SUSPENDED
from core.models.user_limit import UserLimit
from core.models.user_stats import UserStats
from core.usage_service import date_key, resolve_daily_limit, utc_today
from core.user_service import MAX_NAME_LENGTH, validate_language_preferences

logger = get_logger(__name__)

MAX_ADMIN_PAGE_SIZE = 100
MIN_DAILY_LIMIT = 1
MAX_DAILY_LIMIT = 1000
GROWTH_DAYS = 30
USER_SORT_FIELDS = ("created_at", "last_activity_at", "total_analyses")
STATUS_ACTIONS = {"suspend": STATUS_SUSPENDED, "reactivate": STATUS_ACTIVE}
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)
USER_STATUSES = (STATUS_ACTIVE, STATUS_SUSPENDED)
USER_EDITABLE_FIELDS = (
    "email", "name", "role", "status", "mother_language", "learning_language", "proficiency_level",
)
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# 粗略估算：每条分析约 0.5MB，存储额度 10GB
STORAGE_MB_PER_ANALYSIS = 0.5
STORAGE_LIMIT_MB = 10000


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _uuid(value: str, field: str = "user_id") -> str:
    try:
        return str(uuid.UUID(str(value or "")))
    except ValueError:
        raise invalid_input("Invalid input parameters", issues=[f"{field} must be a valid UUID"])


def _paging(page: int, limit: int) -> None:
    if int(page) < 1 or not 1 <= int(limit) <= MAX_ADMIN_PAGE_SIZE:
        raise invalid_input(
            "Invalid input parameters",
            issues=[f"page must be >= 1 and limit between 1 and {MAX_ADMIN_PAGE_SIZE}"],
        )


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "total_pages": math.ceil(total / limit)}


def _parse_day(value: Optional[str], field: str) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise invalid_input("Invalid input parameters", issues=[f"{field} must be YYYY-MM-DD"])


def _date_range(query, column, date_from: Optional[str], date_to: Optional[str]):
    start = _parse_day(date_from, "date_from")
    end = _parse_day(date_to, "date_to")
    if start is not None:
        query = query.filter(column >= datetime.combine(start, datetime.min.time()))
    if end is not None:
        query = query.filter(column <= datetime.combine(end, datetime.max.time()))
    return query


# ── 权限 ─────────────────────────────────────────────────────────────────────

def verify_admin_access(session, user_id: Optional[str]) -> Dict[str, Any]:
    if not user_id:
        raise AppError(ErrorKind.NOT_AUTHENTICATED)
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")
    if user.status == STATUS_SUSPENDED:
        raise AppError(ErrorKind.FORBIDDEN, "Account suspended")
    if not user.is_admin:
        raise AppError(ErrorKind.FORBIDDEN, "Admin access required")
    return {"id": user.id, "email": user.email, "name": user.name, "role": user.role}


# ── 操作日志 ──────────────────────────────────────────────────────────────────

def create_activity_log(
    session,
    admin_id: str,
    action: str,
    target_type: str,
    target_id: str,
    details: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> AdminLog:
    if action not in ADMIN_ACTIONS:
        raise invalid_input(issues=[f"unknown admin action: {action}"])
    if target_type not in TARGET_TYPES:
        raise invalid_input(issues=[f"unknown target type: {target_type}"])
    row = AdminLog(
        id=str(uuid.uuid4()),
        admin_id=admin_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=dict(details or {}),
        created_at=datetime.now(),
    )
    session.add(row)
    if commit:
        session.commit()
    return row


def get_activity_logs(
    session,
    page: int = 1,
    limit: int = 50,
    action: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> Dict[str, Any]:
    _paging(page, limit)
    if action and action not in ADMIN_ACTIONS:
        raise invalid_input("Invalid input parameters", issues=[f"unknown admin action: {action}"])
    query = session.query(AdminLog, User.email, User.name).outerjoin(User, User.id == AdminLog.admin_id)
    if action:
        query = query.filter(AdminLog.action == action)
    query = _date_range(query, AdminLog.created_at, date_from, date_to)
    total = query.count()
    rows = query.order_by(AdminLog.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    logs = [
        {
            "id": log.id,
            "admin_id": log.admin_id,
            "admin_email": email,
            "admin_name": name,
            "action": log.action,
            "target_type": log.target_type,
            "target_id": log.target_id,
            "details": log.details or {},
            "created_at": _iso(log.created_at),
        }
        for log, email, name in rows
    ]
    return {"logs": logs, "pagination": _pagination(page, limit, total)}


# ── 用户管理 ──────────────────────────────────────────────────────────────────

def get_admin_users(
    session,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_direction: str = "desc",
) -> Dict[str, Any]:
    _paging(page, limit)
    if sort_by not in USER_SORT_FIELDS or sort_direction not in ("asc", "desc"):
        raise invalid_input("Invalid input parameters", issues=["invalid sort option"])

    query = session.query(User, UserStats).outerjoin(UserStats, UserStats.user_id == User.id)
    keyword = str(search or "").strip().lower()
    if keyword:
        pattern = f"%{keyword}%"
        query = query.filter(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
    total = query.count()

    column = {
        "created_at": User.created_at,
        "last_activity_at": UserStats.last_activity_date,
        "total_analyses": UserStats.total_analyses,
    }[sort_by]
    order = asc(column) if sort_direction == "asc" else desc(column)
    rows = query.order_by(order, User.id).offset((page - 1) * limit).limit(limit).all()
    users = [
        {
            "id": u.id,
            "email": u.email,
            "name": u.name,
            "status": u.status,
            "role": u.role,
            "created_at": _iso(u.created_at),
            "last_activity_at": getattr(s, "last_activity_date", None),
            "total_analyses": int(getattr(s, "total_analyses", 0) or 0),
            "total_words_learned": int(getattr(s, "total_words_learned", 0) or 0),
        }
        for u, s in rows
    ]
    return {"users": users, "pagination": _pagination(page, limit, total)}


def get_user_detail(session, user_id: str) -> Dict[str, Any]:
    user_id = _uuid(user_id)
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")
    stats = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    recent = (
        session.query(SavedAnalysis)
        .filter(SavedAnalysis.user_id == user_id)
        .order_by(SavedAnalysis.created_at.desc())
        .limit(10)
        .all()
    )
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "status": user.status,
        "role": user.role,
        "mother_language": user.mother_language or "zh-cn",
        "learning_language": user.learning_language or "en",
        "proficiency_level": user.proficiency_level or "beginner",
        "daily_limit": resolve_daily_limit(session, user_id),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "stats": {
            "total_words_learned": int(getattr(stats, "total_words_learned", 0) or 0),
            "total_analyses": int(getattr(stats, "total_analyses", 0) or 0),
            "current_streak": int(getattr(stats, "current_streak", 0) or 0),
            "longest_streak": int(getattr(stats, "longest_streak", 0) or 0),
            "last_activity_date": getattr(stats, "last_activity_date", None),
        },
        "recent_analyses": [
            {"id": a.id, "description": a.description, "image_url": a.image_url, "created_at": _iso(a.created_at)}
            for a in recent
        ],
    }


def _normalize_email(email: str) -> str:
    email = str(email or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise invalid_input("Invalid input parameters", issues=["email must be a valid email address"])
    return email


def _normalize_name(name: Optional[str]) -> Optional[str]:
    name = str(name or "").strip()
    if len(name) > MAX_NAME_LENGTH:
        raise invalid_input("Invalid input parameters", issues=[f"name must be at most {MAX_NAME_LENGTH} characters"])
    return name or None


def _check_role_grant(admin: Dict[str, Any], role: str, message: str) -> None:
    if role not in ROLES:
        raise invalid_input("Invalid input parameters", issues=[f"role must be one of {', '.join(ROLES)}"])
    if role in ADMIN_ROLES and admin.get("role") != ROLE_SUPER_ADMIN:
        raise AppError(ErrorKind.FORBIDDEN, message)


def _check_status(status: str) -> None:
    if status not in USER_STATUSES:
        raise invalid_input("Invalid input parameters", issues=[f"status must be one of {', '.join(USER_STATUSES)}"])


def _email_taken(session, email: str, exclude_id: Optional[str] = None) -> bool:
    query = session.query(User).filter(func.lower(User.email) == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def create_user(
    session,
    admin: Dict[str, Any],
    email: str,
    name: Optional[str] = None,
    role: str = ROLE_USER,
    status: str = STATUS_ACTIVE,
    mother_language: str = "zh-cn",
    learning_language: str = "en",
    proficiency_level: str = "beginner",
) -> Dict[str, Any]:
    """后台直接建号：同时初始化 user_stats；只有超级管理员能创建管理员账号"""
    email = _normalize_email(email)
    name = _normalize_name(name)
    _check_role_grant(admin, role, "Only super admins can create admin users")
    _check_status(status)
    mother_language = str(mother_language or "").strip().lower()
    learning_language = str(learning_language or "").strip().lower()
    proficiency_level = str(proficiency_level or "").strip().lower()
    validate_language_preferences(mother_language, learning_language, proficiency_level)
    if _email_taken(session, email):
        raise AppError(ErrorKind.CONFLICT, "A user with this email already exists")

    now = datetime.now()
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        name=name,
        role=role,
        status=status,
        mother_language=mother_language,
        learning_language=learning_language,
        proficiency_level=proficiency_level,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.add(UserStats(
        id=str(uuid.uuid4()),
        user_id=user.id,
        total_words_learned=0,
        total_analyses=0,
        current_streak=0,
        longest_streak=0,
        updated_at=now,
    ))
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="user_created",
        target_type="user",
        target_id=user.id,
        details={"email": email, "role": role},
        commit=False,
    )
    session.commit()
    log_event(logger, E.ADMIN_USER_CREATE, admin_id=admin["id"], user_id=user.id, role=role)
    return {"id": user.id, "email": user.email}


def update_user(session, admin: Dict[str, Any], user_id: str, **changes) -> Dict[str, Any]:
    """
    后台编辑用户资料，只改传入的字段（None 表示不改）。

    角色变更遵循 update_user_role 的规则，状态变更不能作用于自己；
    角色、状态变化各自另记一条操作日志，其余字段记为 user_updated。
    """
    user_id = _uuid(user_id)
    unknown = [k for k in changes if k not in USER_EDITABLE_FIELDS]
    if unknown:
        raise invalid_input("Invalid input parameters", issues=[f"unknown field: {k}" for k in unknown])
    changes = {k: v for k, v in changes.items() if v is not None}

    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")

    role = changes.get("role")
    if role is not None:
        _check_role_grant(admin, role, "Only super admins can assign admin roles")
        if user_id == admin["id"] and role != admin.get("role"):
            raise invalid_input("Cannot change your own role")
    status = changes.get("status")
    if status is not None:
        _check_status(status)
        if user_id == admin["id"] and status != user.status:
            raise invalid_input("Cannot suspend your own account")
    if "email" in changes:
        changes["email"] = _normalize_email(changes["email"])
        if changes["email"] != str(user.email or "").lower() and _email_taken(session, changes["email"], user_id):
            raise AppError(ErrorKind.CONFLICT, "Email is already in use")
    if "name" in changes:
        changes["name"] = _normalize_name(changes["name"])
    language_fields = ("mother_language", "learning_language", "proficiency_level")
    if any(k in changes for k in language_fields):
        for key in language_fields:
            if key in changes:
                changes[key] = str(changes[key]).strip().lower()
        validate_language_preferences(
            changes.get("mother_language", user.mother_language or "zh-cn"),
            changes.get("learning_language", user.learning_language or "en"),
            changes.get("proficiency_level", user.proficiency_level or "beginner"),
        )

    previous_role, previous_status = user.role, user.status
    updated = sorted(k for k, v in changes.items() if getattr(user, k) != v)
    for key in updated:
        setattr(user, key, changes[key])
    user.updated_at = datetime.now()

    if "role" in updated:
        create_activity_log(
            session,
            admin_id=admin["id"],
            action="role_changed",
            target_type="user",
            target_id=user_id,
            details={"previous_role": previous_role, "new_role": user.role},
            commit=False,
        )
    if "status" in updated:
        create_activity_log(
            session,
            admin_id=admin["id"],
            action="user_suspended" if user.status == STATUS_SUSPENDED else "user_reactivated",
            target_type="user",
            target_id=user_id,
            details={"previous_status": previous_status},
            commit=False,
        )
    profile_fields = [k for k in updated if k not in ("role", "status")]
    if profile_fields:
        create_activity_log(
            session,
            admin_id=admin["id"],
            action="user_updated",
            target_type="user",
            target_id=user_id,
            details={"fields": profile_fields},
            commit=False,
        )
    session.commit()
    log_event(logger, E.ADMIN_USER_UPDATE, admin_id=admin["id"], user_id=user_id, fields=",".join(updated) or "-")
    return {"id": user.id, "email": user.email, "updated_fields": updated}


def update_user_status(session, admin: Dict[str, Any], user_id: str, action: str, reason: Optional[str] = None) -> Dict[str, Any]:
    user_id = _uuid(user_id)
    if action not in STATUS_ACTIONS:
        raise invalid_input("Invalid input parameters", issues=["action must be suspend or reactivate"])
    if user_id == admin["id"]:
        raise invalid_input("Cannot suspend your own account")
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")

    user.status = STATUS_ACTIONS[action]
    user.updated_at = datetime.now()
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="user_suspended" if action == "suspend" else "user_reactivated",
        target_type="user",
        target_id=user_id,
        details={"reason": reason} if reason else {},
        commit=False,
    )
    session.commit()
    log_event(logger, E.ADMIN_USER_STATUS, admin_id=admin["id"], user_id=user_id, status=user.status)
    return {"user_id": user_id, "status": user.status}


def update_user_limit(session, admin: Dict[str, Any], user_id: str, daily_limit: int) -> Dict[str, Any]:
    user_id = _uuid(user_id)
    try:
        daily_limit = int(daily_limit)
    except (TypeError, ValueError):
        daily_limit = 0
    if not MIN_DAILY_LIMIT <= daily_limit <= MAX_DAILY_LIMIT:
        raise invalid_input(
            f"Invalid input: daily_limit must be between {MIN_DAILY_LIMIT} and {MAX_DAILY_LIMIT}"
        )

    now = datetime.now()
    row = session.query(UserLimit).filter(UserLimit.user_id == user_id).first()
    previous = resolve_daily_limit(session, user_id)
    if row is None:
        row = UserLimit(id=str(uuid.uuid4()), user_id=user_id, created_at=now)
        session.add(row)
    row.daily_limit = daily_limit
    row.updated_at = now
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="limit_changed",
        target_type="user_limit",
        target_id=user_id,
        details={"previous_limit": previous, "new_limit": daily_limit},
        commit=False,
    )
    session.commit()
    log_event(logger, E.ADMIN_USER_LIMIT, admin_id=admin["id"], user_id=user_id, previous=previous, new=daily_limit)
    return {"user_id": user_id, "daily_limit": daily_limit}


def update_user_role(session, admin: Dict[str, Any], user_id: str, role: str) -> Dict[str, Any]:
    user_id = _uuid(user_id)
    if role not in ROLES:
        raise invalid_input("Invalid input parameters", issues=[f"role must be one of {', '.join(ROLES)}"])
    if role in ADMIN_ROLES and admin.get("role") != ROLE_SUPER_ADMIN:
        raise AppError(ErrorKind.FORBIDDEN, "Only super admins can assign admin roles")
    if user_id == admin["id"] and role != admin.get("role"):
        raise invalid_input("Cannot change your own role")
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")
    previous = user.role
    user.role = role
    user.updated_at = datetime.now()
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="role_changed",
        target_type="user",
        target_id=user_id,
        details={"previous_role": previous, "new_role": role},
        commit=False,
    )
    session.commit()
    return {"user_id": user_id, "role": role}


def delete_user(session, admin: Dict[str, Any], user_id: str, reason: Optional[str] = None, storage=None) -> Dict[str, Any]:
    from core.analysis_service import remove_media

    user_id = _uuid(user_id)
    if user_id == admin["id"]:
        raise invalid_input("Cannot delete your own account")
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise not_found("User")
    if user.is_admin and admin.get("role") != ROLE_SUPER_ADMIN:
        raise AppError(ErrorKind.FORBIDDEN, "Only super admins can delete admin users")

    analyses = session.query(SavedAnalysis).filter(SavedAnalysis.user_id == user_id).all()
    media_failed = sum(remove_media(storage, a) for a in analyses)

    create_activity_log(
        session,
        admin_id=admin["id"],
        action="user_deleted",
        target_type="user",
        target_id=user_id,
        details={
            "email": user.email,
            "reason": reason or "No reason provided",
            "analyses_count": len(analyses),
        },
        commit=False,
    )
    for model in (SavedAnalysis, AnalysisTask, DailyUsage, UserLimit, UserStats, Achievement):
        session.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
    session.delete(user)
    session.commit()
    log_event(logger, E.ADMIN_USER_DELETE, admin_id=admin["id"], user_id=user_id, media_failed=media_failed)
    return {"user_id": user_id, "deleted": True}


# ── 内容审核 ──────────────────────────────────────────────────────────────────

def _get_analysis(session, analysis_id: str) -> SavedAnalysis:
    analysis_id = _uuid(analysis_id, "analysis_id")
    row = session.query(SavedAnalysis).filter(SavedAnalysis.id == analysis_id).first()
    if row is None:
        raise not_found("Analysis")
    return row


def flag_content(session, admin: Dict[str, Any], analysis_id: str, reason: str) -> Dict[str, Any]:
    reason = str(reason or "").strip()
    if not reason:
        raise invalid_input("Invalid input parameters", issues=["reason is required"])
    row = _get_analysis(session, analysis_id)
    row.flagged = True
    row.flag_reason = reason
    row.flagged_at = datetime.now()
    row.flagged_by = admin["id"]
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="content_flagged",
        target_type="content",
        target_id=row.id,
        details={"reason": reason},
        commit=False,
    )
    session.commit()
    log_event(logger, E.ADMIN_CONTENT_FLAG, admin_id=admin["id"], analysis_id=row.id)
    return {"analysis_id": row.id, "flagged": True}


def delete_content(session, admin: Dict[str, Any], analysis_id: str, reason: Optional[str] = None, storage=None) -> Dict[str, Any]:
    """先尽力删除存储中的媒体文件，再删除数据库记录，最后写日志"""
    from core.analysis_service import remove_media

    row = _get_analysis(session, analysis_id)
    owner_id = row.user_id
    media_failed = remove_media(storage, row)
    session.delete(row)
    session.commit()
    create_activity_log(
        session,
        admin_id=admin["id"],
        action="content_deleted",
        target_type="content",
        target_id=analysis_id,
        details={"reason": reason or "No reason provided", "user_id": owner_id, "media_failed": media_failed},
    )
    log_event(logger, E.ADMIN_CONTENT_DELETE, admin_id=admin["id"], analysis_id=analysis_id)
    return {"analysis_id": analysis_id, "deleted": True}


def get_moderation_content(
    session,
    page: int = 1,
    limit: int = 20,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    flagged: Optional[bool] = None,
) -> Dict[str, Any]:
    _paging(page, limit)
    query = session.query(SavedAnalysis, User.email).outerjoin(User, User.id == SavedAnalysis.user_id)
    query = _date_range(query, SavedAnalysis.created_at, date_from, date_to)
    if flagged is not None:
        query = query.filter(SavedAnalysis.flagged == bool(flagged))
    total = query.count()
    rows = query.order_by(SavedAnalysis.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    analyses = [
        {
            "id": a.id,
            "user_id": a.user_id,
            "user_email": email,
            "image_url": a.image_url,
            "description": a.description,
            "created_at": _iso(a.created_at),
            "flagged": bool(a.flagged),
            "flag_reason": a.flag_reason,
            "flagged_at": _iso(a.flagged_at),
            "flagged_by": a.flagged_by,
        }
        for a, email in rows
    ]
    return {"analyses": analyses, "pagination": _pagination(page, limit, total)}


# ── 平台统计 ──────────────────────────────────────────────────────────────────

def _growth_series(values: List[datetime], start: date, end: date) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for value in values:
        if value is None:
            continue
        key = value.strftime("%Y-%m-%d")
        counts[key] = counts.get(key, 0) + 1
    series = []
    current = start
    while current <= end:
        key = current.strftime("%Y-%m-%d")
        series.append({"date": key, "count": counts.get(key, 0)})
        current += timedelta(days=1)
    return series


def get_platform_stats(session, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or utc_today()
    start = today - timedelta(days=GROWTH_DAYS)
    since = datetime.combine(start, datetime.min.time())

    user_dates = [r[0] for r in session.query(User.created_at).filter(User.created_at >= since).all()]
    analysis_dates = [
        r[0] for r in session.query(SavedAnalysis.created_at).filter(SavedAnalysis.created_at >= since).all()
    ]
    return {
        "total_users": session.query(func.count(User.id)).scalar() or 0,
        "total_analyses": session.query(func.count(SavedAnalysis.id)).scalar() or 0,
        "daily_active_users": session.query(func.count(DailyUsage.id)).filter(
            DailyUsage.usage_date == date_key(today)
        ).scalar() or 0,
        "total_words_learned": int(session.query(func.sum(UserStats.total_words_learned)).scalar() or 0),
        "user_growth": _growth_series(user_dates, start, today),
        "analysis_growth": _growth_series(analysis_dates, start, today),
    }


def get_system_health(session) -> Dict[str, Any]:
    from core.storage_service import R2Storage

    warnings = []
    database_ok = DB.ping()
    if not database_ok:
        warnings.append("Database is unreachable")

    integrations = {
        "supabase": bool(cfg.get("supabase.url", "") or cfg.get("supabase.jwt_secret", "")),
        "storage": R2Storage().is_configured(),
        "speech": tts_service.is_configured(),
        "vocabulary_audio": bool(cfg.get("audio.vocabulary_service_key", "")),
    }
    for name, ok in integrations.items():
        if not ok:
            warnings.append(f"{name} is not configured")

    analyses = session.query(func.count(SavedAnalysis.id)).scalar() or 0
    used_mb = analyses * STORAGE_MB_PER_ANALYSIS
    percentage = used_mb / STORAGE_LIMIT_MB * 100
    if percentage > 80:
        warnings.append("Storage usage above 80%")

    active_tasks = session.query(func.count(AnalysisTask.id)).filter(
        AnalysisTask.status.in_(("pending", "analyzing"))
    ).scalar() or 0
    return {
        "database": {"ok": database_ok, "dialect": DB.dialect},
        "integrations": integrations,
        "storage_usage": {"used": used_mb, "total": STORAGE_LIMIT_MB, "percentage": min(percentage, 100)},
        "active_tasks": active_tasks,
        "daily_analyses": int(session.query(func.sum(DailyUsage.usage_count)).filter(
            DailyUsage.usage_date == date_key()
        ).scalar() or 0),
        "warnings": warnings,
    }

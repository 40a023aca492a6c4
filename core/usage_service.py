"""
每日用量与连续学习天数（streak）

• check_daily_limit  只读：今日已用 / 上限 / 剩余
• increment_usage    计数 +1 并更新 user_stats，不检查上限
• reserve_usage      带上限的原子自增，分析入口使用它避免并发超额

日期一律按 UTC 自然日计算。
"""
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from core.config import cfg
from core.events import log_event, E
from core.log import get_logger
from core.models.base import DATE_KEY_FORMAT
from core.models.daily_usage import DailyUsage
from core.models.user_limit import UserLimit
from core.models.user_stats import UserStats

logger = get_logger(__name__)

DEFAULT_DAILY_LIMIT = 10


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def date_key(day: Optional[date] = None) -> str:
    return (day or utc_today()).strftime(DATE_KEY_FORMAT)


def _default_daily_limit() -> int:
    try:
        value = int(cfg.get("usage.daily_limit", DEFAULT_DAILY_LIMIT) or DEFAULT_DAILY_LIMIT)
    except (TypeError, ValueError):
        value = DEFAULT_DAILY_LIMIT
    return max(1, value)


def resolve_daily_limit(session, user_id: str) -> int:
    row = session.query(UserLimit).filter(UserLimit.user_id == user_id).first()
    if row is not None and int(row.daily_limit or 0) > 0:
        return int(row.daily_limit)
    return _default_daily_limit()


def _get_usage_row(session, user_id: str, key: str) -> Optional[DailyUsage]:
    # 计数由批量 UPDATE 修改，读取时需刷新会话中已加载的对象
    return session.query(DailyUsage).populate_existing().filter(
        DailyUsage.user_id == user_id,
        DailyUsage.usage_date == key,
    ).first()


def build_usage_info(used: int, limit: int) -> Dict[str, Any]:
    used = max(0, int(used or 0))
    remaining = max(0, limit - used)
    return {
        "used": used,
        "limit": limit,
        "remaining": remaining,
        "can_analyze": remaining > 0,
    }


def check_daily_limit(session, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    limit = resolve_daily_limit(session, user_id)
    row = _get_usage_row(session, user_id, date_key(today))
    info = build_usage_info(getattr(row, "usage_count", 0), limit)
    log_event(logger, E.USAGE_CHECK, level="debug", user_id=user_id, used=info["used"], limit=limit)
    return info


def get_daily_usage(session, user_id: str, usage_date: Optional[str] = None) -> Dict[str, Any]:
    key = str(usage_date or "").strip() or date_key()
    row = _get_usage_row(session, user_id, key)
    return {"date": key, "usage_count": int(getattr(row, "usage_count", 0) or 0)}


def apply_streak(stats: UserStats, today: Optional[date] = None) -> bool:
    """
    按上次活跃日期推进 streak，返回是否发生了变化。

    昨天活跃 → +1；今天已记过 → 不变；其余 → 重置为 1。
    longest_streak 只增不减。
    """
    today = today or utc_today()
    today_key = date_key(today)
    yesterday_key = date_key(today - timedelta(days=1))
    last = str(stats.last_activity_date or "")
    current = int(stats.current_streak or 0)

    if last == today_key:
        new_streak = max(1, current)
    elif last == yesterday_key:
        new_streak = current + 1
    else:
        new_streak = 1

    changed = new_streak != current or last != today_key
    stats.current_streak = new_streak
    stats.longest_streak = max(int(stats.longest_streak or 0), new_streak)
    stats.last_activity_date = today_key
    return changed


def _touch_stats(session, user_id: str, today: date) -> UserStats:
    now = datetime.now()
    stats = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    if stats is None:
        stats = UserStats(
            id=str(uuid.uuid4()),
            user_id=user_id,
            total_words_learned=0,
            total_analyses=0,
            current_streak=0,
            longest_streak=0,
            last_activity_date=None,
        )
        session.add(stats)
    stats.total_analyses = int(stats.total_analyses or 0) + 1
    if apply_streak(stats, today):
        log_event(
            logger,
            E.USAGE_STREAK,
            user_id=user_id,
            current=stats.current_streak,
            longest=stats.longest_streak,
        )
    stats.updated_at = now
    return stats


def _increment_row(session, user_id: str, key: str, cap: Optional[int] = None) -> int:
    query = session.query(DailyUsage).filter(
        DailyUsage.user_id == user_id,
        DailyUsage.usage_date == key,
    )
    if cap is not None:
        query = query.filter(DailyUsage.usage_count < cap)
    affected = query.update(
        {
            DailyUsage.usage_count: DailyUsage.usage_count + 1,
            DailyUsage.updated_at: datetime.now(),
        },
        synchronize_session=False,
    )
    return int(affected or 0)


def _insert_first_row(session, user_id: str, key: str) -> bool:
    """插入今日首条记录；唯一索引冲突说明别的请求已插入，回滚后返回 False。"""
    now = datetime.now()
    session.add(DailyUsage(
        id=str(uuid.uuid4()),
        user_id=user_id,
        usage_date=key,
        usage_count=1,
        created_at=now,
        updated_at=now,
    ))
    try:
        session.flush()
        return True
    except IntegrityError:
        session.rollback()
        return False


def _bump_usage(session, user_id: str, key: str, cap: Optional[int]) -> bool:
    """今日计数 +1，只 flush 不提交，由调用方与 user_stats 一起提交。"""
    for _ in range(2):
        if _increment_row(session, user_id, key, cap=cap):
            return True
        if _get_usage_row(session, user_id, key) is not None:
            # 记录存在但条件更新未命中：已达上限
            session.rollback()
            return False
        if cap is not None and cap < 1:
            return False
        if _insert_first_row(session, user_id, key):
            return True
    return False


def increment_usage(session, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
    """
    记录一次分析：今日计数 +1，累计分析数 +1，推进 streak。
    不检查上限，调用方需先 check_daily_limit，或改用 reserve_usage。
    计数与统计在同一事务内提交。
    """
    today = today or utc_today()
    key = date_key(today)
    try:
        if not _bump_usage(session, user_id, key, cap=None):
            raise RuntimeError(f"failed to increment usage for {user_id}")
        _touch_stats(session, user_id, today)
        session.commit()
    except Exception:
        session.rollback()
        raise
    info = check_daily_limit(session, user_id, today=today)
    log_event(logger, E.USAGE_INCREMENT, user_id=user_id, used=info["used"], limit=info["limit"])
    return info


def reserve_usage(session, user_id: str, today: Optional[date] = None) -> Tuple[bool, Dict[str, Any]]:
    """
    原子地占用一次额度：UPDATE ... WHERE usage_count < limit。
    成功时同时更新 user_stats，两者一起提交；已达上限时返回 (False, usage)。
    """
    today = today or utc_today()
    key = date_key(today)
    limit = resolve_daily_limit(session, user_id)
    try:
        reserved = _bump_usage(session, user_id, key, cap=limit)
        if reserved:
            _touch_stats(session, user_id, today)
            session.commit()
    except Exception:
        session.rollback()
        raise
    info = check_daily_limit(session, user_id, today=today)
    if reserved:
        log_event(logger, E.USAGE_RESERVE, user_id=user_id, used=info["used"], limit=limit)
    else:
        log_event(logger, E.USAGE_EXCEED, level="warning", user_id=user_id, used=info["used"], limit=limit)
    return reserved, info

"""
core/events.py - 结构化事件日志

提供统一的事件类型常量（E 类）和 log_event() 格式化方法。

格式：event=xxx | key=val | key=val

用法：
    from core.log import get_logger
    from core.events import log_event, E

    logger = get_logger(__name__)
    log_event(logger, E.USAGE_INCREMENT, user_id="u1", used=3, limit=10)
    # 输出：event=usage.increment | user_id=u1 | used=3 | limit=10
"""

import logging
from typing import Any


class E:
    """结构化事件类型常量，按功能模块分组。"""

    # ── 认证 Auth ──────────────────────────────────────────────────────────────
    AUTH_TOKEN_VERIFY = "auth.token.verify"
    AUTH_TOKEN_INVALID = "auth.token.invalid"
    AUTH_ACCOUNT_SUSPENDED = "auth.account.suspended"

    # ── 用量 Usage ─────────────────────────────────────────────────────────────
    USAGE_CHECK = "usage.check"
    USAGE_INCREMENT = "usage.increment"
    USAGE_RESERVE = "usage.reserve"
    USAGE_EXCEED = "usage.exceed"
    USAGE_STREAK = "usage.streak"

    # ── 分析任务 Task ──────────────────────────────────────────────────────────
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_STALE_DROP = "task.stale.drop"
    TASK_CONFLICT = "task.conflict"
    TASK_SWEEP_START = "task.sweep.start"
    TASK_SWEEP_COMPLETE = "task.sweep.complete"

    # ── 收藏 Saved analysis ────────────────────────────────────────────────────
    ANALYSIS_SAVE = "analysis.save"
    ANALYSIS_DELETE = "analysis.delete"
    ACHIEVEMENT_UNLOCK = "achievement.unlock"

    # ── 存储 Storage ───────────────────────────────────────────────────────────
    STORAGE_UPLOAD = "storage.upload"
    STORAGE_UPLOAD_FAIL = "storage.upload.fail"
    STORAGE_DELETE = "storage.delete"
    STORAGE_DELETE_FAIL = "storage.delete.fail"

    # ── 音频 Audio ─────────────────────────────────────────────────────────────
    TTS_SYNTHESIZE = "tts.synthesize"
    TTS_FAIL = "tts.fail"
    AUDIO_VOCAB_REQUEST = "audio.vocab.request"
    AUDIO_PREFETCH_START = "audio.prefetch.start"
    AUDIO_PREFETCH_COMPLETE = "audio.prefetch.complete"

    # ── 管理 Admin ─────────────────────────────────────────────────────────────
    ADMIN_USER_CREATE = "admin.user.create"
    ADMIN_USER_UPDATE = "admin.user.update"
    ADMIN_USER_STATUS = "admin.user.status"
    ADMIN_USER_LIMIT = "admin.user.limit"
    ADMIN_USER_DELETE = "admin.user.delete"
    ADMIN_CONTENT_FLAG = "admin.content.flag"
    ADMIN_CONTENT_DELETE = "admin.content.delete"

    # ── 系统 System ────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"
    SYSTEM_JOB_ADD = "system.job.add"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    记录结构化事件日志，格式：event=xxx | key=val | key=val

    示例：
        log_event(logger, E.TASK_CREATE, task_id="t001", user_id="u1")
        # → event=task.create | task_id=t001 | user_id=u1
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = str(v) if not isinstance(v, str) else v
        # 截断超长字段，避免单行日志过大
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    msg = " | ".join(parts)
    getattr(logger, level)(msg, stacklevel=2)

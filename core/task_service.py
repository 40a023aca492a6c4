"""
图片分析任务生命周期

状态流转：pending → analyzing → completed | error
本服务只负责创建与读取任务，状态推进由外部分析 worker 通过 update_task 写入。
"""
import base64
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from core.config import cfg
from core.errors import AppError, ErrorKind, invalid_input, not_found
from core.events import log_event, E
from core.log import get_logger
from core.models.analysis_task import AnalysisTask
from core.models.user import User

logger = get_logger(__name__)

TASK_STATUS_PENDING = "pending"
TASK_STATUS_ANALYZING = "analyzing"
TASK_STATUS_COMPLETED = "completed"
TASK_STATUS_ERROR = "error"

ACTIVE_STATUSES = (TASK_STATUS_PENDING, TASK_STATUS_ANALYZING)
TERMINAL_STATUSES = (TASK_STATUS_COMPLETED, TASK_STATUS_ERROR)
TASK_STATUSES = ACTIVE_STATUSES + TERMINAL_STATUSES

ONGOING_TASK_MESSAGE = "You have an ongoing analysis. Please wait for it to complete."
SETUP_REQUIRED_MESSAGE = "Please complete your language setup first"
FINISHED_TASK_MESSAGE = "Task has already finished"

DEFAULT_SUPPORTED_TYPES = "image/jpeg,image/png,image/webp"
UPDATABLE_FIELDS = ("status", "image_url", "description", "vocabulary", "error_message", "saved_analysis_id")


def is_terminal(status: str) -> bool:
    return str(status or "") in TERMINAL_STATUSES


def should_poll(status: str) -> bool:
    return str(status or "") in ACTIVE_STATUSES


def _minutes(key: str, default: int) -> int:
    return max(1, int(cfg.get(key, default) or default))


def _validate_uuid(value: str, field: str = "task_id") -> str:
    try:
        return str(uuid.UUID(str(value or "")))
    except ValueError:
        raise invalid_input(issues=[f"{field} must be a valid UUID"])


def serialize_task(task: AnalysisTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "status": task.status,
        "image_url": task.image_url,
        "description": task.description,
        "vocabulary": task.vocabulary,
        "saved_analysis_id": task.saved_analysis_id,
        "error_message": task.error_message,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }


def create_task(
    session,
    user_id: str,
    image_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnalysisTask:
    now = now or datetime.now()
    task = AnalysisTask(
        id=str(uuid.uuid4()),
        user_id=user_id,
        status=TASK_STATUS_PENDING,
        image_url=image_url,
        created_at=now,
        updated_at=now,
    )
    session.add(task)
    session.commit()
    log_event(logger, E.TASK_CREATE, user_id=user_id, task_id=task.id)
    return task


def _latest_active_task(session, user_id: str) -> Optional[AnalysisTask]:
    return (
        session.query(AnalysisTask)
        .filter(
            AnalysisTask.user_id == user_id,
            AnalysisTask.status.in_(ACTIVE_STATUSES),
        )
        .order_by(AnalysisTask.created_at.desc())
        .first()
    )


def get_pending_task(session, user_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, str]]:
    """返回最近一个未结束的任务；超过 task.stale_minutes 的视为卡死，删除后返回 None。"""
    task = _latest_active_task(session, user_id)
    if task is None:
        return None
    now = now or datetime.now()
    stale_after = timedelta(minutes=_minutes("task.stale_minutes", 10))
    if task.created_at and now - task.created_at > stale_after:
        session.delete(task)
        session.commit()
        log_event(logger, E.TASK_STALE_DROP, user_id=user_id, task_id=task.id)
        return None
    return {"id": task.id, "status": task.status}


def get_task_by_id(session, user_id: str, task_id: str) -> Dict[str, Any]:
    task_id = _validate_uuid(task_id)
    task = session.query(AnalysisTask).filter(
        AnalysisTask.id == task_id,
        AnalysisTask.user_id == user_id,
    ).first()
    if task is None:
        raise not_found("Task")
    return serialize_task(task)


def update_task(session, user_id: str, task_id: str, **changes) -> Dict[str, Any]:
    task_id = _validate_uuid(task_id)
    issues = [f"unknown field: {k}" for k in changes if k not in UPDATABLE_FIELDS]
    status = changes.get("status")
    if status is not None and status not in TASK_STATUSES:
        issues.append(f"status must be one of {', '.join(TASK_STATUSES)}")
    if changes.get("saved_analysis_id") is not None:
        try:
            uuid.UUID(str(changes["saved_analysis_id"]))
        except ValueError:
            issues.append("saved_analysis_id must be a valid UUID")
    if changes.get("vocabulary") is not None and not isinstance(changes["vocabulary"], list):
        issues.append("vocabulary must be a list")
    if issues:
        raise invalid_input(issues=issues)

    task = session.query(AnalysisTask).filter(
        AnalysisTask.id == task_id,
        AnalysisTask.user_id == user_id,
    ).first()
    if task is None:
        raise not_found("Task")
    if status is not None and status != task.status and is_terminal(task.status):
        # 已结束的任务不能再改回进行中或换成另一种结束状态
        raise AppError(
            ErrorKind.CONFLICT,
            FINISHED_TASK_MESSAGE,
            data={"task_id": task.id, "status": task.status},
        )
    for key, value in changes.items():
        if value is not None:
            setattr(task, key, value)
    task.updated_at = datetime.now()
    session.commit()
    log_event(logger, E.TASK_UPDATE, user_id=user_id, task_id=task.id, status=task.status)
    return serialize_task(task)


def _delete_expired(session, now: datetime, user_id: Optional[str] = None) -> int:
    active_cutoff = now - timedelta(minutes=_minutes("task.submit_stale_minutes", 30))
    finished_cutoff = now - timedelta(hours=max(1, int(cfg.get("task.finished_retention_hours", 24) or 24)))

    active_q = session.query(AnalysisTask).filter(
        AnalysisTask.status.in_(ACTIVE_STATUSES),
        AnalysisTask.created_at < active_cutoff,
    )
    finished_q = session.query(AnalysisTask).filter(
        AnalysisTask.status.in_(TERMINAL_STATUSES),
        AnalysisTask.created_at < finished_cutoff,
    )
    if user_id is not None:
        active_q = active_q.filter(AnalysisTask.user_id == user_id)
        finished_q = finished_q.filter(AnalysisTask.user_id == user_id)

    removed = active_q.delete(synchronize_session=False)
    removed += finished_q.delete(synchronize_session=False)
    session.commit()
    return int(removed or 0)


def cleanup_user_tasks(session, user_id: str, now: Optional[datetime] = None) -> int:
    return _delete_expired(session, now or datetime.now(), user_id=user_id)


def sweep_stale_tasks(session, now: Optional[datetime] = None) -> Dict[str, int]:
    removed = _delete_expired(session, now or datetime.now())
    return {"total": removed}


def validate_image(filename: str, content_type: str, data: bytes) -> None:
    supported = [
        t.strip()
        for t in str(cfg.get("image.supported_types", DEFAULT_SUPPORTED_TYPES)).split(",")
        if t.strip()
    ]
    max_kb = int(cfg.get("image.max_size_kb", 500) or 500)
    if not data:
        raise invalid_input("No image provided")
    if content_type not in supported:
        raise invalid_input("Invalid file type. Supported: JPG, PNG, WEBP")
    if len(data) > max_kb * 1024:
        raise invalid_input(f"File too large. Max size: {max_kb}KB")


def submit_analysis(
    session,
    user: Dict[str, Any],
    filename: str,
    content_type: str,
    data: bytes,
    storage=None,
) -> Dict[str, Any]:
    """
    提交一张图片进行分析，返回新建的 pending 任务。

    顺序：校验图片 → 清理过期任务 → 检查进行中任务 → 检查语言设置
    → 占用当日额度 → 上传图片 → 创建任务。
    存储未配置时图片以 data URL 形式保存在任务中。
    """
    from core.usage_service import check_daily_limit, reserve_usage
    from core.storage_service import generate_image_key

    user_id = user["id"]
    validate_image(filename, content_type, data)
    cleanup_user_tasks(session, user_id)

    existing = _latest_active_task(session, user_id)
    if existing is not None:
        log_event(logger, E.TASK_CONFLICT, user_id=user_id, task_id=existing.id)
        raise AppError(
            ErrorKind.CONFLICT,
            ONGOING_TASK_MESSAGE,
            data={"task_id": existing.id, "status": existing.status},
        )

    usage = check_daily_limit(session, user_id)
    if not usage["can_analyze"]:
        raise AppError(ErrorKind.LIMIT_REACHED, data={"usage": usage})

    profile = session.query(User).filter(User.id == user_id).first()
    if profile is None:
        raise invalid_input(SETUP_REQUIRED_MESSAGE)

    reserved, usage = reserve_usage(session, user_id)
    if not reserved:
        raise AppError(ErrorKind.LIMIT_REACHED, data={"usage": usage})

    image_url = None
    if storage is not None and storage.is_configured():
        key = generate_image_key(user_id, filename)
        try:
            image_url = storage.upload(data, key, content_type)
        except Exception as e:
            # 额度已占用，上传失败时退回 data URL，任务照常创建
            log_event(logger, E.STORAGE_UPLOAD_FAIL, level="warning", user_id=user_id, key=key, error=str(e))
    if not image_url:
        image_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"

    task = create_task(session, user_id, image_url=image_url)
    return {"task_id": task.id, "status": task.status, "usage": usage}

import time
from threading import Thread

from core.config import cfg
from core.db import DB
from core.task_service import sweep_stale_tasks
from core.log import get_logger, trace_ctx
from core.events import log_event, E

logger = get_logger(__name__)


def run_sweep_once() -> dict:
    session = DB.get_session()
    try:
        return sweep_stale_tasks(session)
    finally:
        session.close()


def _worker_loop():
    interval = max(60, int(cfg.get("task.sweep_interval_seconds", 600) or 600))
    while True:
        with trace_ctx():
            try:
                log_event(logger, E.TASK_SWEEP_START, interval=interval)
                result = run_sweep_once()
                log_event(logger, E.TASK_SWEEP_COMPLETE, total=int(result.get("total", 0) or 0))
            except Exception:
                logger.exception("过期任务清理异常")
        time.sleep(interval)


def start_task_sweep_worker():
    t = Thread(target=_worker_loop, daemon=True)
    t.start()
    log_event(logger, E.SYSTEM_JOB_ADD, job="task_sweep")
    return t

import time
from typing import Any, Callable, Dict, Optional

from core.config import cfg
from core.log import get_logger
from core.task_service import should_poll

logger = get_logger(__name__)


class TaskPoller:
    """
    客户端轮询：状态为 pending / analyzing 时按固定间隔再次拉取，
    进入 completed / error 后停止。没有退避。

    fetch 为无参可调用对象，返回包含 status 字段的任务字典。
    """

    def __init__(
        self,
        fetch: Callable[[], Dict[str, Any]],
        interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_polls: Optional[int] = None,
    ):
        self.fetch = fetch
        self.interval = float(interval if interval is not None else cfg.get("task.poll_interval_seconds", 1.5))
        self.sleep = sleep
        self.max_polls = max_polls
        self.polls = 0

    def poll(self) -> Dict[str, Any]:
        """阻塞直到任务结束（或达到 max_polls），返回最后一次拉取的结果。"""
        while True:
            task = self.fetch() or {}
            self.polls += 1
            status = task.get("status")
            if not should_poll(status):
                return task
            if self.max_polls is not None and self.polls >= self.max_polls:
                logger.warning("任务轮询达到上限: polls=%s status=%s", self.polls, status)
                return task
            self.sleep(self.interval)

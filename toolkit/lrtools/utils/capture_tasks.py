"""
后台抓包任务管理

pktmon的过滤器和抓包状态是整机共享的, 因此同一时间只允许一个抓包任务。
"""

import threading
import time
import uuid
import logging
from typing import Dict, Optional

from lrtools.schemas.capture import CaptureRequest, CaptureTaskResponse
from lrtools.utils.capture_controller import CaptureController

logger = logging.getLogger(__name__)


class CaptureBusyError(Exception):
    """已有抓包任务在运行"""


class CaptureTask:
    def __init__(self, request: CaptureRequest):
        self.task_id = str(uuid.uuid4())
        self.request = request
        self.status = "running"
        self.started_at = time.time()
        self.finished_at: Optional[float] = None
        self.result = None
        self.cancel_event = threading.Event()

    def to_response(self) -> CaptureTaskResponse:
        return CaptureTaskResponse(
            task_id=self.task_id,
            status=self.status,
            request=self.request,
            started_at=self.started_at,
            finished_at=self.finished_at,
            result=self.result
        )


class CaptureTaskManager:
    """抓包任务注册表"""

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[str, CaptureTask] = {}
        self._active_id: Optional[str] = None

    def submit(self, request: CaptureRequest) -> CaptureTask:
        with self._lock:
            if self._active_id is not None:
                raise CaptureBusyError(f"抓包任务 {self._active_id} 正在运行")
            task = CaptureTask(request)
            self._tasks[task.task_id] = task
            self._active_id = task.task_id
        logger.info(f"抓包任务已创建: {task.task_id}")
        return task

    def execute(self, task: CaptureTask, controller: CaptureController):
        """在后台线程中执行抓包, 结束后释放运行槽位"""
        try:
            task.result = controller.run(task.request, cancel_event=task.cancel_event)
            task.status = task.result.outcome
        except Exception:
            logger.exception(f"抓包任务异常: {task.task_id}")
            task.status = "fatal"
            task.result = None
            raise
        finally:
            task.finished_at = time.time()
            with self._lock:
                if self._active_id == task.task_id:
                    self._active_id = None
            logger.info(f"抓包任务结束: {task.task_id}, 状态: {task.status}")

    def cancel(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None or task.finished_at is not None:
            return False
        task.cancel_event.set()
        return True

    def get(self, task_id: str) -> Optional[CaptureTask]:
        return self._tasks.get(task_id)

    @property
    def active_task_id(self) -> Optional[str]:
        return self._active_id

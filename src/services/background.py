"""
Detached background writes.
Fire-and-forget coroutines whose failures are reported on a side channel
instead of the caller's path.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, BaseException], None]


class TaskResult:
    """Result of a background task."""

    def __init__(
        self,
        task_id: str,
        success: bool,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ):
        self.task_id = task_id
        self.success = success
        self.error = error
        self.started_at = started_at
        self.completed_at = completed_at
        self.duration = None
        if started_at and completed_at:
            self.duration = (completed_at - started_at).total_seconds()


class BackgroundWriter:
    """
    Runs best-effort writes as detached asyncio tasks.
    submit() never raises into the caller.
    """

    def __init__(self, on_error: Optional[ErrorCallback] = None):
        self.on_error = on_error
        self.results: Dict[str, TaskResult] = {}
        self._pending: Set[asyncio.Task] = set()
        self._task_counter = 0

    def _generate_task_id(self, name: str) -> str:
        self._task_counter += 1
        return f"{name}_{self._task_counter}"

    def submit(self, coro: Awaitable[Any], name: str = "write") -> Optional[str]:
        """
        Schedule coro on the running loop and return its task id.
        Returns None (and closes coro) if no loop is running.
        """
        task_id = self._generate_task_id(name)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping background task {task_id}")
            if asyncio.iscoroutine(coro):
                coro.close()
            return None

        started_at = datetime.now(timezone.utc)

        async def wrapped_task() -> None:
            try:
                await coro
                self.results[task_id] = TaskResult(
                    task_id=task_id,
                    success=True,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                )
                logger.debug(f"Background task {task_id} completed")
            except Exception as e:
                self.results[task_id] = TaskResult(
                    task_id=task_id,
                    success=False,
                    error=str(e),
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc),
                )
                logger.warning(f"Background task {task_id} failed: {e}")
                self._report(task_id, e)

        task = loop.create_task(wrapped_task())

        # Keep a strong reference until the task finishes
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task_id

    def _report(self, task_id: str, exc: BaseException) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(task_id, exc)
        except Exception as callback_error:
            logger.error(f"Background error callback failed for {task_id}: {callback_error}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all pending writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_result(self, task_id: str) -> Optional[TaskResult]:
        return self.results.get(task_id)

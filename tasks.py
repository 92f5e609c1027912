import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskFailure:
    name: str
    error: BaseException
    failed_at: datetime


class TaskSupervisor:
    """Runs fire-and-forget work off the request thread.

    A failing task is logged and its error is pushed onto ``failures``, a
    bounded channel that keeps the most recent entries. Nothing is retried
    and nothing propagates back to the submitter.
    """

    def __init__(self, max_workers: int = 2, max_failures: int = 100) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ledger-task"
        )
        self._pending: set[Future] = set()
        self._mutex = threading.Lock()
        self.failures: deque[TaskFailure] = deque(maxlen=max_failures)

    def submit(self, name: str, fn: Callable[[], object]) -> Optional[Future]:
        try:
            future = self._executor.submit(self._run, name, fn)
        except RuntimeError as exc:
            # executor already shut down
            self._record(name, exc)
            return None
        with self._mutex:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _run(self, name: str, fn: Callable[[], object]) -> None:
        try:
            fn()
        except Exception as exc:
            self._record(name, exc)

    def _forget(self, future: Future) -> None:
        with self._mutex:
            self._pending.discard(future)

    def _record(self, name: str, exc: BaseException) -> None:
        logger.error(f"task_failed: name={name} error={exc!r}", exc_info=exc)
        self.failures.append(TaskFailure(name, exc, datetime.utcnow()))

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._mutex:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, grace_secs: float = 5.0) -> None:
        drained = self.wait_idle(grace_secs)
        if not drained:
            logger.warning(f"task_supervisor: pending tasks after {grace_secs}s grace")
        self._executor.shutdown(wait=drained, cancel_futures=not drained)
        logger.info("Task supervisor stopped")

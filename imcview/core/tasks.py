"""
Background execution of renders and classifier runs.

Tasks are pure functions over immutable inputs, so a task made stale by a
newer submission is never interrupted; its result is simply discarded.
"""

import itertools
import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from .config import TASK_WORKERS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskHandle:
    """
    Ticket for one submitted task.

    Attributes
    ----------
    key : Hashable
        Task slot, e.g. "render" or "train".
    generation : int
        Submission number; the highest generation of a key is current.
    future : Future
        The underlying future.
    """

    key: Hashable
    generation: int
    future: Future

    def done(self) -> bool:
        return self.future.done()


class TaskRunner:
    """
    Thread pool with one current task per key.

    Submitting under a key supersedes every earlier task with that key:
    queued ones are cancelled, running ones finish but their result is
    never delivered.

    Attributes
    ----------
    max_workers : int
        Number of worker threads.
    """

    max_workers: int

    def __init__(self, max_workers: int = TASK_WORKERS) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="imcview"
        )
        self._current: Dict[Hashable, TaskHandle] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def submit(
        self, key: Hashable, fn: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> TaskHandle:
        """
        Run ``fn(*args, **kwargs)`` on a worker thread.

        Returns
        -------
        TaskHandle
            The handle to poll or wait on.
        """
        with self._lock:
            handle = TaskHandle(key, next(self._counter), self._executor.submit(fn, *args, **kwargs))
            previous = self._current.get(key)
            self._current[key] = handle
        if previous is not None and previous.future.cancel():
            logger.debug("[Tasks] Cancelled queued task %r #%d", key, previous.generation)
        return handle

    def is_current(self, handle: TaskHandle) -> bool:
        """False once a newer task was submitted under the same key."""
        with self._lock:
            return self._current.get(handle.key) is handle

    def poll(self, handle: TaskHandle) -> Optional[Any]:
        """
        Result of a finished, current task.

        Returns None while the task runs and when it has been superseded.
        An exception raised by the task is re-raised here.
        """
        if not self.is_current(handle) or not handle.future.done():
            return None
        return handle.future.result()

    def wait(self, handle: TaskHandle, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Block until the task finishes and return its result.

        Returns None if the task was superseded.

        Raises
        ------
        concurrent.futures.TimeoutError
            If the task is still running after ``timeout`` seconds.
        """
        if not self.is_current(handle):
            return None
        try:
            result = handle.future.result(timeout=timeout)
        except CancelledError:
            return None
        if not self.is_current(handle):
            logger.debug("[Tasks] Discarded stale result of %r #%d", handle.key, handle.generation)
            return None
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> "TaskRunner":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

"""Background delivery of experiment telemetry.

Impressions and conversions are best-effort: they are queued on a bounded
queue and written by a single worker thread so the request that produced
them never waits on the sink. Failures are logged and counted, not retried.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Optional, Tuple

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000

_STOP = object()


class EventDispatcher:
    """Bounded fire-and-forget task queue with one worker thread."""

    def __init__(self, max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE) -> None:
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_queue_size)
        self._lock = threading.Lock()
        self._closed = False
        self.delivered = 0
        self.failed = 0
        self.dropped = 0
        self._worker = threading.Thread(
            target=self._run, name="event-dispatcher", daemon=True
        )
        self._worker.start()

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "") -> bool:
        """Queue fn(*args). Returns False if the event was dropped."""
        if self._closed:
            logger.warning("Dispatcher closed, dropping event", extra={"event": description})
            with self._lock:
                self.dropped += 1
            return False
        try:
            self._queue.put_nowait((fn, args, description))
        except queue.Full:
            logger.warning("Event queue full, dropping event", extra={"event": description})
            with self._lock:
                self.dropped += 1
            return False
        return True

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                fn, args, description = task
                self._deliver(fn, args, description)
            finally:
                self._queue.task_done()

    def _deliver(self, fn: Callable[..., Any], args: Tuple[Any, ...], description: str) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.warning(
                "Background event failed",
                extra={
                    "event": description,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            with self._lock:
                self.failed += 1
        else:
            with self._lock:
                self.delivered += 1

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event has been handled.

        Returns:
            True if the queue drained, False if the timeout expired first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.error("Could not stop event dispatcher, queue is full")
            return
        self._worker.join(timeout)

    def stats(self) -> dict:
        with self._lock:
            return {
                "queued": self._queue.qsize(),
                "delivered": self.delivered,
                "failed": self.failed,
                "dropped": self.dropped,
            }

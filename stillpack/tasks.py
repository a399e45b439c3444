"""Cancellation tokens and single-flight operation handles.

Pack, unpack and classification each run on a worker thread behind an
``OperationHandle``. The ``OperationRegistry`` keeps at most one active handle
per category; starting a category again cancels the previous handle before the
new one is submitted.
"""

import dataclasses
import logging
import queue
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from stillpack.errors import Cancelled
from stillpack.models import ProgressEvent

log = logging.getLogger(__name__)

PACK = "pack"
UNPACK = "unpack"
CLASSIFY = "classify"


class CancelToken:
    """A one-shot cancellation flag with kill callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancel callback failed")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Registers ``callback`` to run on cancel; returns an unregister function.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise Cancelled("Operation cancelled")

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class OperationStatus(str, Enum):
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclasses.dataclass(frozen=True)
class OperationResult:
    status: OperationStatus
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""


_END = object()


class OperationHandle:
    """The caller's view of one running operation."""

    def __init__(self, category: str, on_progress: Optional[Callable[[ProgressEvent], None]] = None):
        self.category = category
        self.token = CancelToken()
        self._on_progress = on_progress
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._future: Optional[Future] = None
        self._status = OperationStatus.RUNNING

    @property
    def status(self) -> OperationStatus:
        return self._status

    def emit(self, event: ProgressEvent):
        self._events.put(event)
        if self._on_progress:
            self._on_progress(event)

    def cancel(self):
        log.info("Cancelling %s operation", self.category)
        self.token.cancel()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> OperationResult:
        """Blocks until the operation settles."""
        try:
            return self._future.result(timeout)
        except CancelledError:
            return OperationResult(OperationStatus.CANCELLED, error=Cancelled("Operation never started"))

    def events(self) -> Iterator[ProgressEvent]:
        """Yields progress events until the operation settles."""
        while True:
            item = self._events.get()
            if item is _END:
                return
            yield item

    def _run(self, fn: Callable, args: tuple, kwargs: dict) -> OperationResult:
        try:
            value = fn(*args, token=self.token, progress=self.emit, **kwargs)
            result = OperationResult(OperationStatus.DONE, value)
        except Cancelled as e:
            log.info("%s operation cancelled", self.category)
            result = OperationResult(OperationStatus.CANCELLED, error=e)
        except Exception as e:
            log.error("%s operation failed: %s", self.category, e)
            result = OperationResult(OperationStatus.FAILED, error=e)
        finally:
            self._events.put(_END)
        self._status = result.status
        return result

    def _abandon(self):
        self._status = OperationStatus.CANCELLED
        self._events.put(_END)


class OperationRegistry:
    """Runs operations on a worker pool, one active handle per category."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="Operation")
        self._lock = threading.Lock()
        self._active: Dict[str, OperationHandle] = {}

    def start(
        self,
        category: str,
        fn: Callable,
        *args,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        **kwargs,
    ) -> OperationHandle:
        """Submits ``fn(*args, token=..., progress=..., **kwargs)``.

        Any handle already active for ``category`` is cancelled first.
        """
        handle = OperationHandle(category, on_progress)
        with self._lock:
            previous = self._active.get(category)
            self._active[category] = handle
            if previous is not None and not previous.done():
                log.info("New %s call supersedes the one in flight", category)
                previous.cancel()
            handle._future = self._executor.submit(self._run, handle, fn, args, kwargs)
        return handle

    def _run(self, handle: OperationHandle, fn: Callable, args: tuple, kwargs: dict) -> OperationResult:
        try:
            return handle._run(fn, args, kwargs)
        finally:
            with self._lock:
                if self._active.get(handle.category) is handle:
                    del self._active[handle.category]

    def active(self, category: str) -> Optional[OperationHandle]:
        with self._lock:
            return self._active.get(category)

    def cancel(self, category: str) -> bool:
        """Cancels the active handle of ``category``; returns False if idle."""
        handle = self.active(category)
        if handle is None:
            return False
        handle.cancel()
        return True

    def shutdown(self, wait: bool = True):
        log.info("Shutting down operation registry.")
        with self._lock:
            handles = list(self._active.values())
        for handle in handles:
            handle.cancel()
            if handle._future is not None and handle._future.cancel():
                handle._abandon()
        self._executor.shutdown(wait=wait, cancel_futures=True)

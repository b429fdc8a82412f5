"""
Cancellation tokens for in-flight requests.

An AbortController owns an AbortSignal. Aborting records a reason (an
exception instance) and wakes every coroutine waiting on the signal.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_ERR = 23


class AbortError(Exception):
    """Raised when a request is cancelled through its signal."""
    name = "AbortError"

    def __init__(self, message: str = "This operation was aborted", reason: Any = None):
        super().__init__(message)
        self.reason = reason


class RequestTimeoutError(AbortError):
    """Abort reason used when the pipeline's own timeout fires."""
    name = "TimeoutError"
    code = TIMEOUT_ERR

    def __init__(self, message: str = "[TimeoutError]: The operation was aborted due to timeout"):
        super().__init__(message)


class AbortSignal:
    """Read side of a cancellation token."""

    def __init__(self) -> None:
        self.aborted = False
        self.reason: Optional[BaseException] = None
        self._listeners: List[Callable[["AbortSignal"], None]] = []
        self._event: Optional[asyncio.Event] = None

    def add_listener(self, listener: Callable[["AbortSignal"], None]) -> None:
        if self.aborted:
            listener(self)
            return
        self._listeners.append(listener)

    def throw_if_aborted(self) -> None:
        if self.aborted and self.reason is not None:
            raise self.reason

    async def wait(self) -> BaseException:
        """Suspend until the signal is aborted and return its reason."""
        if not self.aborted:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        assert self.reason is not None
        return self.reason

    def _abort(self, reason: BaseException) -> None:
        if self.aborted:
            return
        self.aborted = True
        self.reason = reason
        if self._event is not None:
            self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(self)


class AbortController:
    """Write side of a cancellation token."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        if reason is None:
            reason = AbortError()
        elif not isinstance(reason, BaseException):
            reason = AbortError(str(reason), reason=reason)
        logger.debug(f"Aborting signal: {reason!r}")
        self.signal._abort(reason)


async def race_signal(awaitable: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """
    Await `awaitable` unless `signal` aborts first.

    On abort the pending work is cancelled and the signal's reason is raised.
    """
    if signal is None:
        return await awaitable
    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        signal.throw_if_aborted()

    task = asyncio.ensure_future(awaitable)
    aborted = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, aborted}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        aborted.cancel()
        raise

    if task in done:
        aborted.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise aborted.result()

"""
Retry decisions for failed attempts.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..abort import AbortError
from ..errors import create_fetch_error
from ..types import FetchContext
from ..utils import is_payload_method

logger = logging.getLogger(__name__)

LOG_PREFIX = "[FetchPipeline]"

DEFAULT_RETRY_STATUS_CODES = frozenset({
    408,  # Request Timeout
    409,  # Conflict
    425,  # Too Early
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})

# Status assumed when an attempt failed without a response
NO_RESPONSE_STATUS = 500


def is_caller_abort(context: FetchContext) -> bool:
    """
    True when the failure is a cancellation the caller asked for.

    An abort raised by the pipeline's own timeout is not one (it stays
    retriable) unless the caller also supplied a signal of their own.
    """
    if not isinstance(context.error, AbortError):
        return False
    if not context.options.get("timeout"):
        return True
    return has_caller_signal(context)


def has_caller_signal(context: FetchContext) -> bool:
    signal = context.options.get("signal")
    if signal is None:
        return False
    controller = context.abort_controller
    return controller is None or signal is not controller.signal


def resolve_retry_budget(options: Dict[str, Any]) -> int:
    """Explicit retry count, else 0 for payload methods and 1 otherwise."""
    retry = options.get("retry")
    if isinstance(retry, int) and not isinstance(retry, bool):
        return retry
    return 0 if is_payload_method(options.get("method")) else 1


def is_retry_status(status: int, options: Dict[str, Any]) -> bool:
    codes = options.get("retry_status_codes")
    if codes is not None:
        return status in set(codes)
    return status in DEFAULT_RETRY_STATUS_CODES


def resolve_retry_delay(context: FetchContext) -> float:
    """Delay in milliseconds before the next attempt."""
    delay = context.options.get("retry_delay")
    if callable(delay):
        delay = delay(context)
    return float(delay or 0)


def should_retry(context: FetchContext) -> Optional[int]:
    """Return the remaining retry budget when the attempt should be retried."""
    if context.options.get("retry") is False or is_caller_abort(context):
        return None

    retries = resolve_retry_budget(context.options)
    status = (context.response.status if context.response is not None else None) or NO_RESPONSE_STATUS
    if retries > 0 and is_retry_status(status, context.options):
        return retries
    return None


async def handle_fetch_error(
    context: FetchContext,
    retry_call: Callable[[int], Awaitable[Any]],
) -> Any:
    """
    Retry the call through `retry_call(remaining)` or raise a FetchError.

    `remaining` is the decremented budget handed to the next attempt.
    """
    retries = should_retry(context)
    if retries is not None:
        delay = resolve_retry_delay(context)
        logger.debug(
            f"{LOG_PREFIX} Retrying {context.request!r} in {delay}ms "
            f"({retries} retr{'y' if retries == 1 else 'ies'} left)"
        )
        if delay > 0:
            await asyncio.sleep(delay / 1000)
        return await retry_call(retries - 1)

    error = create_fetch_error(context)
    logger.debug(f"{LOG_PREFIX} {error.message}")
    raise error from context.error

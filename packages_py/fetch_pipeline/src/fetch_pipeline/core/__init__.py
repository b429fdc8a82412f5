from .pipeline import NULL_BODY_STATUSES, Fetch, FetchCapabilities, create_fetch
from .retry import DEFAULT_RETRY_STATUS_CODES, handle_fetch_error, should_retry

__all__ = [
    "Fetch",
    "FetchCapabilities",
    "create_fetch",
    "NULL_BODY_STATUSES",
    "DEFAULT_RETRY_STATUS_CODES",
    "handle_fetch_error",
    "should_retry",
]

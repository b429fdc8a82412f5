"""
Normalized errors raised by the fetch pipeline.
"""
import json
from typing import Any, Dict, Optional

from .types import FetchContext, FetchRequest


class FetchError(Exception):
    """
    Error raised when a call fails after retries, or cannot be retried.

    Request, options and response are read through the originating context,
    so they always reflect its current state.
    """

    def __init__(self, message: str, context: Optional[FetchContext] = None):
        super().__init__(message)
        self.message = message
        self._context = context

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__

    @property
    def request(self) -> Optional[FetchRequest]:
        return self._context.request if self._context else None

    @property
    def options(self) -> Optional[Dict[str, Any]]:
        return self._context.options if self._context else None

    @property
    def response(self) -> Any:
        return self._context.response if self._context else None

    @property
    def data(self) -> Any:
        return self.response.data if self.response is not None else None

    @property
    def status(self) -> Optional[int]:
        return self.response.status if self.response is not None else None

    @property
    def status_text(self) -> Optional[str]:
        return self.response.status_text if self.response is not None else None

    # Legacy aliases
    @property
    def status_code(self) -> Optional[int]:
        return self.status

    @property
    def status_message(self) -> Optional[str]:
        return self.status_text


def _error_message(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    return str(error) or type(error).__name__


def create_fetch_error(context: FetchContext) -> FetchError:
    """Build a FetchError describing the request, response and failure."""
    request = context.request
    options = context.options or {}

    if isinstance(request, str):
        method = options.get("method") or "GET"
        url = request or "/"
    else:
        method = getattr(request, "method", None) or options.get("method") or "GET"
        url = str(getattr(request, "url", None) or request)

    request_str = f"[{method}] {json.dumps(url)}"

    if context.response is not None:
        status_str = f"{context.response.status} {context.response.status_text}"
    else:
        status_str = "<no response>"

    error_message = _error_message(context.error)
    message = f"{request_str}: {status_str}"
    if error_message:
        message = f"{message} {error_message}"

    fetch_error = FetchError(message, context)
    if context.error is not None:
        fetch_error.__cause__ = context.error
    return fetch_error

"""
fetch-pipeline - enhanced fetch over httpx.

Serializes request bodies, decodes responses, runs lifecycle hooks,
enforces timeouts, retries transient failures and normalizes errors.

Example:
    from fetch_pipeline import fetch

    user = await fetch("/users/1", base_url="https://api.example.com")

    api = fetch.create({"base_url": "https://api.example.com", "retry": 2})
    created = await api.post("/users", body={"name": "ada"})
"""
from .abort import AbortController, AbortError, AbortSignal, RequestTimeoutError, race_signal
from .config import TimeoutConfig, TransportConfig, resolve_transport_config
from .core import DEFAULT_RETRY_STATUS_CODES, Fetch, FetchCapabilities, create_fetch
from .errors import FetchError, create_fetch_error
from .response import FetchResponse
from .transport import HttpxResponse, HttpxTransport
from .types import (
    Blob,
    FetchContext,
    FetchOptions,
    FormData,
    ResponseType,
    Transport,
    TransportResponse,
    URLSearchParams,
)
from .utils import detect_response_type, parse_json_lenient, with_base, with_query

__version__ = "0.1.0"

# Default instance over a per-call httpx transport
fetch = create_fetch()

__all__ = [
    "fetch",
    "Fetch",
    "FetchCapabilities",
    "create_fetch",
    "FetchContext",
    "FetchOptions",
    "FetchResponse",
    "FetchError",
    "create_fetch_error",
    "AbortController",
    "AbortSignal",
    "AbortError",
    "RequestTimeoutError",
    "race_signal",
    "HttpxTransport",
    "HttpxResponse",
    "TimeoutConfig",
    "TransportConfig",
    "resolve_transport_config",
    "Transport",
    "TransportResponse",
    "ResponseType",
    "Blob",
    "FormData",
    "URLSearchParams",
    "DEFAULT_RETRY_STATUS_CODES",
    "detect_response_type",
    "parse_json_lenient",
    "with_base",
    "with_query",
]

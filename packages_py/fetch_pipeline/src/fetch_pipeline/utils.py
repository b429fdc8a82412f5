"""
Helpers for option resolution, body handling and response decoding.
"""
import inspect
import json
import math
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from pydantic import BaseModel

from .types import FetchContext, FormData, URLSearchParams

PAYLOAD_METHODS = frozenset({"PATCH", "POST", "PUT", "DELETE"})

HOOK_KEYS = ("on_request", "on_request_error", "on_response", "on_response_error")

TEXT_TYPES = frozenset({
    "image/svg",
    "application/xml",
    "application/xhtml",
    "application/html",
})

JSON_RE = re.compile(r"^application/(?:[\w!#$%&*.^`~-]*\+)?json(;.+)?$", re.IGNORECASE)

# Values that look like JSON documents or bare numbers
JSON_SIGNATURE_RE = re.compile(r'^\s*["\[{]|^\s*-?\d{1,16}(\.\d{1,17})?([Ee][+-]?\d+)?\s*$')

SENSITIVE_HEADERS = {"authorization", "x-api-key", "api-key", "token", "secret", "cookie"}


def is_payload_method(method: Optional[str] = "GET") -> bool:
    """Whether the method conventionally carries a request body."""
    return (method or "GET").upper() in PAYLOAD_METHODS


# =========================================================================
# Request bodies
# =========================================================================

class BodyKind(str, Enum):
    """Closed set of request body shapes the pipeline distinguishes."""
    TEXT = "text"
    JSON = "json"
    BINARY = "binary"
    STREAM = "stream"
    MULTIPART = "multipart"
    URL_ENCODED = "url_encoded"
    OPAQUE = "opaque"


def classify_body(body: Any) -> BodyKind:
    """Decide the body kind once, at the call boundary."""
    if isinstance(body, str):
        return BodyKind.TEXT
    if isinstance(body, (bytes, bytearray, memoryview)):
        return BodyKind.BINARY
    if isinstance(body, FormData):
        return BodyKind.MULTIPART
    if isinstance(body, URLSearchParams):
        return BodyKind.URL_ENCODED
    if isinstance(body, (bool, int, float, dict, list, tuple, BaseModel)):
        return BodyKind.JSON
    if callable(getattr(body, "to_json", None)):
        return BodyKind.JSON
    if (
        hasattr(body, "__aiter__")
        or hasattr(body, "__next__")
        or callable(getattr(body, "read", None))
    ):
        return BodyKind.STREAM
    return BodyKind.OPAQUE


def serialize_json_body(body: Any) -> str:
    """Serialize a TEXT or JSON body to text; strings pass unchanged."""
    if isinstance(body, str):
        return body
    if isinstance(body, BaseModel):
        return json.dumps(body.model_dump(mode="json"))
    to_json = getattr(body, "to_json", None)
    if callable(to_json):
        value = to_json()
        return value if isinstance(value, str) else json.dumps(value)
    return json.dumps(body)


# =========================================================================
# Response decoding
# =========================================================================

def detect_response_type(content_type: str = "") -> str:
    """Map a content-type header value to a decoding strategy."""
    if not content_type:
        return "json"

    content_type = content_type.split(";")[0].strip()

    if JSON_RE.match(content_type):
        return "json"

    if content_type in TEXT_TYPES or content_type.startswith("text/"):
        return "text"

    return "blob"


def parse_json_lenient(text: str) -> Any:
    """
    Parse a response body as JSON without failing.

    Literal keywords map to their values, JSON-looking text is decoded and
    anything unparseable is returned as the original string.
    """
    if not isinstance(text, str):
        return text

    stripped = text.strip()
    if len(stripped) <= 9:
        lowered = stripped.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered in ("null", "undefined"):
            return None
        if lowered == "nan":
            return math.nan
        if lowered == "infinity":
            return math.inf
        if lowered == "-infinity":
            return -math.inf

    if not JSON_SIGNATURE_RE.match(text):
        return text

    try:
        return json.loads(text)
    except ValueError:
        return text


# =========================================================================
# URLs
# =========================================================================

def has_protocol(url: str) -> bool:
    return bool(re.match(r"^[a-zA-Z][a-zA-Z\d+\-.]*:", url)) or url.startswith("//")


def with_base(url: str, base_url: Optional[str]) -> str:
    """Prefix a relative URL with base_url; absolute or already-based URLs are kept."""
    if not base_url or base_url == "/" or has_protocol(url):
        return url
    base = base_url.rstrip("/")
    if url.startswith(base):
        return url
    if not url or url == "/":
        return base
    return f"{base}/{url.lstrip('/')}"


def _query_pairs(key: str, value: Any) -> List[Tuple[str, str]]:
    if value is None:
        return []
    if isinstance(value, bool):
        return [(key, "true" if value else "false")]
    if isinstance(value, (list, tuple)):
        pairs: List[Tuple[str, str]] = []
        for item in value:
            pairs.extend(_query_pairs(key, item))
        return pairs
    if isinstance(value, dict):
        return [(key, json.dumps(value))]
    return [(key, str(value))]


def with_query(url: str, query: Optional[Mapping[str, Any]]) -> str:
    """Merge query parameters into the URL; a None value removes the key."""
    if not query:
        return url
    parts = urlsplit(url)
    existing = parse_qsl(parts.query, keep_blank_values=True)

    replaced = set(query.keys())
    pairs = [(k, v) for k, v in existing if k not in replaced]
    for key, value in query.items():
        pairs.extend(_query_pairs(key, value))

    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


# =========================================================================
# Options
# =========================================================================

def iter_header_pairs(headers: Any) -> Iterable[Tuple[str, str]]:
    """Yield (name, value) pairs from any supported headers input."""
    if headers is None:
        return []
    multi_items = getattr(headers, "multi_items", None)
    if callable(multi_items):
        return multi_items()
    if isinstance(headers, Mapping):
        return list(headers.items())
    return [(k, v) for k, v in headers]


def merge_headers(*sources: Any, headers_class: Type = httpx.Headers) -> Any:
    """Field-wise merge; later sources win per header name."""
    merged = headers_class()
    for source in sources:
        for key, value in iter_header_pairs(source):
            merged[key] = value
    return merged


def _merge_query(*sources: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not any(sources):
        return None
    merged: Dict[str, Any] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged


def normalize_hooks(hooks: Any) -> List[Any]:
    """A single hook or a sequence of hooks becomes an ordered list."""
    if not hooks:
        return []
    if isinstance(hooks, (list, tuple)):
        return list(hooks)
    return [hooks]


def resolve_fetch_options(
    request: Any,
    options: Optional[Mapping[str, Any]],
    defaults: Optional[Mapping[str, Any]],
    headers_class: Type,
) -> Dict[str, Any]:
    """Merge per-call options over defaults."""
    options = options or {}
    defaults = defaults or {}

    request_headers = None if isinstance(request, str) else getattr(request, "headers", None)
    headers = merge_headers(
        defaults.get("headers"),
        request_headers,
        options.get("headers"),
        headers_class=headers_class,
    )

    query = _merge_query(
        defaults.get("params"),
        defaults.get("query"),
        options.get("params"),
        options.get("query"),
    )

    resolved: Dict[str, Any] = {**defaults, **options}
    resolved["query"] = query
    resolved["params"] = query
    resolved["headers"] = headers
    for key in HOOK_KEYS:
        resolved[key] = normalize_hooks(resolved.get(key))
    return resolved


def merge_defaults(
    base: Optional[Mapping[str, Any]],
    override: Optional[Mapping[str, Any]],
    headers_class: Type,
) -> Dict[str, Any]:
    """Deep-merge instance defaults: headers and query field-wise, the rest replaced."""
    base = base or {}
    override = override or {}
    merged: Dict[str, Any] = {**base, **override}

    if base.get("headers") is not None or override.get("headers") is not None:
        merged["headers"] = merge_headers(
            base.get("headers"), override.get("headers"), headers_class=headers_class
        )

    for key in ("query", "params"):
        value = _merge_query(base.get(key), override.get(key))
        if value is not None:
            merged[key] = value

    return merged


async def call_hooks(context: FetchContext, hooks: Any) -> None:
    """Run hooks in order, awaiting asynchronous ones before the next."""
    for hook in normalize_hooks(hooks):
        result = hook(context)
        if inspect.isawaitable(result):
            await result


# =========================================================================
# Logging helpers
# =========================================================================

def mask_header_value(key: str, value: str) -> str:
    if key.lower() in SENSITIVE_HEADERS:
        if len(value) <= 20:
            return "****"
        return f"{value[:20]}..."
    return value


def format_body(body: Any) -> str:
    """Format a body for logging; binary and streamed data are summarized."""
    if body is None:
        return "<empty>"
    if isinstance(body, (bytes, bytearray)):
        return f"<binary data: {len(body)} bytes>"
    if isinstance(body, str):
        try:
            if body.strip().startswith(("{", "[")):
                return json.dumps(json.loads(body), indent=2)
        except json.JSONDecodeError:
            pass
        if len(body) > 5000:
            return body[:5000] + "... (truncated)"
        return body
    if isinstance(body, dict):
        return json.dumps(body, indent=2, default=str)
    kind = classify_body(body)
    if kind == BodyKind.STREAM:
        return f"<stream: {type(body).__name__}>"
    return str(body)

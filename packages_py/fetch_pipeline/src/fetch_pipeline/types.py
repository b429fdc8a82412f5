"""
Core type definitions for fetch-pipeline.
"""
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypedDict,
    Union,
    runtime_checkable,
)
from urllib.parse import urlencode

import httpx

# Decoding strategies for response bodies
ResponseType = Literal["json", "text", "blob", "array_buffer", "stream"]

# URL string or a pre-built request carrying its own method/headers/url
FetchRequest = Union[str, httpx.Request]

HeadersInit = Union[Mapping[str, str], Sequence[Tuple[str, str]], httpx.Headers]


@dataclass
class Blob:
    """Binary payload together with its media type."""
    data: bytes
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class FormData:
    """Multipart form body: plain fields plus file parts."""
    fields: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, Any] = field(default_factory=dict)

    def append(self, name: str, value: Any) -> "FormData":
        self.fields[name] = value
        return self


class URLSearchParams:
    """URL-encoded form body."""

    def __init__(self, init: Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None] = None):
        if init is None:
            self._pairs: List[Tuple[str, str]] = []
        elif isinstance(init, Mapping):
            self._pairs = [(k, str(v)) for k, v in init.items()]
        else:
            self._pairs = [(k, str(v)) for k, v in init]

    def append(self, name: str, value: Any) -> None:
        self._pairs.append((name, str(value)))

    def items(self) -> List[Tuple[str, str]]:
        return list(self._pairs)

    def __str__(self) -> str:
        return urlencode(self._pairs)

    def __repr__(self) -> str:
        return f"URLSearchParams({self._pairs!r})"


@runtime_checkable
class TransportResponse(Protocol):
    """Response shape returned by a transport primitive."""
    status: int
    status_text: str
    headers: Any
    url: str

    @property
    def body(self) -> Optional[AsyncIterator[bytes]]: ...

    async def text(self) -> str: ...
    async def json(self) -> Any: ...
    async def blob(self) -> Blob: ...
    async def array_buffer(self) -> bytes: ...


@runtime_checkable
class Transport(Protocol):
    """The request/response primitive the pipeline enhances."""
    def __call__(self, request: FetchRequest, options: Dict[str, Any]) -> Awaitable[TransportResponse]: ...


@dataclass
class FetchContext:
    """Unit of work for one attempt of a call."""
    request: FetchRequest
    options: Dict[str, Any]
    response: Optional[Any] = None  # FetchResponse
    error: Optional[BaseException] = None
    # Controller armed by the pipeline for this attempt's timeout
    abort_controller: Optional[Any] = field(default=None, repr=False)


FetchHook = Callable[[FetchContext], Union[None, Awaitable[None]]]
HookSlot = Union[FetchHook, Sequence[FetchHook]]
RetryDelay = Union[float, Callable[[FetchContext], float]]


class FetchOptions(TypedDict, total=False):
    """Options accepted per call and as instance defaults."""
    method: str
    base_url: str
    body: Any
    query: Dict[str, Any]
    params: Dict[str, Any]  # alias of query
    headers: HeadersInit
    response_type: ResponseType
    parse_response: Callable[[str], Any]
    ignore_response_error: bool
    timeout: float  # milliseconds
    retry: Union[int, Literal[False]]
    retry_delay: RetryDelay  # milliseconds
    retry_status_codes: Iterable[int]
    signal: Any  # AbortSignal
    duplex: Literal["half"]
    on_request: HookSlot
    on_request_error: HookSlot
    on_response: HookSlot
    on_response_error: HookSlot

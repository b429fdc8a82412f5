"""
Transport primitive implemented on httpx.AsyncClient.
"""
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from ..abort import race_signal
from ..config import ResolvedTransportConfig, TransportConfig, resolve_transport_config
from ..types import Blob, FetchRequest
from ..utils import BodyKind, classify_body, format_body, iter_header_pairs, mask_header_value, serialize_json_body

logger = logging.getLogger(__name__)

LOG_PREFIX = "[HttpxTransport]"
STREAM_CHUNK_SIZE = 64 * 1024


class HttpxResponse:
    """Adapts httpx.Response to the transport response shape."""

    def __init__(
        self,
        response: httpx.Response,
        stream: bool = False,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._response = response
        self._stream = stream
        self._on_close = on_close
        self._closed = False

        self.status = response.status_code
        self.status_text = response.reason_phrase
        self.headers = response.headers
        self.url = str(response.url)

    @property
    def raw(self) -> httpx.Response:
        return self._response

    @property
    def body(self) -> Optional[AsyncIterator[bytes]]:
        if self._stream:
            return self._iter_stream()
        if not self._response.content:
            return None
        return self._response.aiter_bytes()

    async def _iter_stream(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        finally:
            await self.aclose()

    async def _read(self) -> None:
        if self._stream and not self._closed:
            try:
                await self._response.aread()
            finally:
                await self.aclose()

    async def text(self) -> str:
        await self._read()
        return self._response.text

    async def json(self) -> Any:
        await self._read()
        return self._response.json()

    async def blob(self) -> Blob:
        await self._read()
        return Blob(
            data=self._response.content,
            content_type=self._response.headers.get("content-type", ""),
        )

    async def array_buffer(self) -> bytes:
        await self._read()
        return bytes(self._response.content)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        if self._on_close is not None:
            await self._on_close()


async def _aiter_stream_body(body: Any) -> AsyncIterator[bytes]:
    """Wrap synchronous iterators and file-like objects for AsyncClient."""
    read = getattr(body, "read", None)
    if callable(read):
        while True:
            chunk = read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk.encode() if isinstance(chunk, str) else chunk
        return
    for chunk in body:
        yield chunk.encode() if isinstance(chunk, str) else chunk


def _body_kwargs(body: Any, headers: httpx.Headers) -> Dict[str, Any]:
    """Translate a pipeline body into httpx.build_request keyword arguments."""
    if body is None:
        return {}

    kind = classify_body(body)
    if kind == BodyKind.TEXT:
        return {"content": body}
    if kind == BodyKind.JSON:
        return {"content": serialize_json_body(body)}
    if kind == BodyKind.BINARY:
        return {"content": bytes(body)}
    if kind == BodyKind.MULTIPART:
        return {"data": body.fields, "files": body.files or None}
    if kind == BodyKind.URL_ENCODED:
        if "content-type" not in headers:
            headers["content-type"] = "application/x-www-form-urlencoded;charset=UTF-8"
        return {"content": str(body)}
    if kind == BodyKind.STREAM:
        if hasattr(body, "__aiter__"):
            return {"content": body}
        return {"content": _aiter_stream_body(body)}
    return {"content": body}


def build_httpx_request(
    client: httpx.AsyncClient,
    request: FetchRequest,
    options: Dict[str, Any],
) -> httpx.Request:
    """Build the outgoing httpx.Request from a descriptor and resolved options."""
    headers = httpx.Headers(list(iter_header_pairs(options.get("headers"))))
    body = options.get("body")

    if isinstance(request, httpx.Request):
        method = options.get("method") or request.method
        url: Any = request.url
        if body is None:
            try:
                body = request.content or None
            except httpx.RequestNotRead:
                body = request.stream
    else:
        method = options.get("method") or "GET"
        url = request

    return client.build_request(
        method.upper(),
        url,
        headers=headers,
        **_body_kwargs(body, headers),
    )


class HttpxTransport:
    """
    Transport primitive backed by httpx.

    With keep_alive one pooled client is reused across calls, otherwise a
    client is created per call and closed once the response is consumed.
    An injected client is used as-is and never closed here.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[TransportConfig] = None,
    ):
        self._config: ResolvedTransportConfig = resolve_transport_config(config)
        self._client: Optional[httpx.AsyncClient] = client
        self._own_client = client is None

    @property
    def config(self) -> ResolvedTransportConfig:
        return self._config

    def get_client_kwargs(self) -> Dict[str, Any]:
        """Build kwargs for httpx.AsyncClient."""
        timeout = self._config.timeout
        kwargs: Dict[str, Any] = {
            "timeout": httpx.Timeout(
                connect=timeout.connect,
                read=timeout.read,
                write=timeout.write,
                pool=timeout.pool,
            ),
            "verify": self._config.verify_ssl,
            "follow_redirects": self._config.follow_redirects,
            "headers": self._config.headers,
        }
        if self._config.proxy_url:
            kwargs["proxy"] = self._config.proxy_url
            kwargs["trust_env"] = False
        return kwargs

    def _create_client(self) -> httpx.AsyncClient:
        kwargs = self.get_client_kwargs()
        logger.debug(f"{LOG_PREFIX} Creating httpx.AsyncClient (keep_alive={self._config.keep_alive})")
        return httpx.AsyncClient(**kwargs)

    def _acquire_client(self) -> Tuple[httpx.AsyncClient, bool]:
        """Return (client, per_call); per-call clients are closed by the caller."""
        if self._client is not None:
            return self._client, False
        if self._config.keep_alive:
            self._client = self._create_client()
            return self._client, False
        return self._create_client(), True

    async def connect(self) -> None:
        """Initialize the shared client if needed."""
        if self._client is None:
            self._client = self._create_client()

    async def close(self) -> None:
        """Close the shared client if we own it."""
        if self._own_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpxTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def __call__(self, request: FetchRequest, options: Dict[str, Any]) -> HttpxResponse:
        signal = options.get("signal")
        if signal is not None:
            signal.throw_if_aborted()

        stream = options.get("response_type") == "stream"
        client, per_call = self._acquire_client()

        try:
            http_request = build_httpx_request(client, request, options)
            if logger.isEnabledFor(logging.DEBUG):
                masked = {k: mask_header_value(k, v) for k, v in http_request.headers.items()}
                logger.debug(
                    f"{LOG_PREFIX} {http_request.method} {http_request.url} "
                    f"headers={masked} body={format_body(options.get('body'))}"
                )
            response = await race_signal(self._send(client, http_request, stream), signal)
        except BaseException:
            if per_call:
                await client.aclose()
            raise

        if stream:
            return HttpxResponse(response, stream=True, on_close=client.aclose if per_call else None)

        if per_call:
            await client.aclose()
        return HttpxResponse(response)

    async def _send(self, client: httpx.AsyncClient, request: httpx.Request, stream: bool) -> httpx.Response:
        response = await client.send(request, stream=True)
        if stream:
            return response
        try:
            await response.aread()
        finally:
            await response.aclose()
        return response

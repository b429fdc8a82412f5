"""
Request execution pipeline.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Type

import httpx

from ..abort import AbortController, RequestTimeoutError, race_signal
from ..response import FetchResponse
from ..types import FetchContext, FetchOptions, FetchRequest, Transport, TransportResponse
from ..utils import (
    BodyKind,
    call_hooks,
    classify_body,
    detect_response_type,
    iter_header_pairs,
    is_payload_method,
    merge_defaults,
    parse_json_lenient,
    resolve_fetch_options,
    serialize_json_body,
    with_base,
    with_query,
)
from .retry import handle_fetch_error

logger = logging.getLogger(__name__)

# Constants
LOG_PREFIX = "[FetchPipeline]"
NULL_BODY_STATUSES = frozenset({101, 204, 205, 304})
JSON_CONTENT_TYPE = "application/json"


@dataclass
class FetchCapabilities:
    """Collaborators the pipeline calls through."""
    transport: Transport
    headers_class: Type = field(default=httpx.Headers)
    abort_controller_class: Type = field(default=AbortController)


class Fetch:
    """
    Enhanced fetch built over a transport primitive.

    Calling the instance returns decoded data; `raw` returns the full
    FetchResponse; `native` calls the transport directly; `create` derives
    an instance with merged defaults.
    """

    def __init__(
        self,
        capabilities: FetchCapabilities,
        defaults: Optional[Mapping[str, Any]] = None,
    ):
        self._capabilities = capabilities
        self._defaults: Dict[str, Any] = dict(defaults or {})

    @property
    def capabilities(self) -> FetchCapabilities:
        return self._capabilities

    @property
    def defaults(self) -> Mapping[str, Any]:
        return MappingProxyType(self._defaults)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def __call__(
        self,
        request: FetchRequest,
        options: Optional[FetchOptions] = None,
        **kwargs: Any,
    ) -> Any:
        response = await self.raw(request, options, **kwargs)
        return response.data

    async def raw(
        self,
        request: FetchRequest,
        options: Optional[FetchOptions] = None,
        **kwargs: Any,
    ) -> FetchResponse:
        """Execute a request and return the response with decoded data."""
        call_options: Dict[str, Any] = {**(options or {}), **kwargs}
        context = self._build_context(request, call_options)
        return await self._execute(context, deadline=None)

    async def native(
        self,
        request: FetchRequest,
        options: Optional[Mapping[str, Any]] = None,
    ) -> TransportResponse:
        """Call the transport primitive without any enhancement."""
        return await self._capabilities.transport(request, dict(options or {}))

    def create(
        self,
        defaults: Optional[FetchOptions] = None,
        *,
        transport: Optional[Transport] = None,
        headers_class: Optional[Type] = None,
        abort_controller_class: Optional[Type] = None,
    ) -> "Fetch":
        """New instance with defaults deep-merged over this one's."""
        capabilities = FetchCapabilities(
            transport=transport or self._capabilities.transport,
            headers_class=headers_class or self._capabilities.headers_class,
            abort_controller_class=abort_controller_class or self._capabilities.abort_controller_class,
        )
        merged = merge_defaults(self._defaults, defaults, capabilities.headers_class)
        return Fetch(capabilities, merged)

    async def get(self, request: FetchRequest, **options: Any) -> Any:
        """Execute GET request."""
        return await self(request, method="GET", **options)

    async def head(self, request: FetchRequest, **options: Any) -> Any:
        """Execute HEAD request."""
        return await self(request, method="HEAD", **options)

    async def post(self, request: FetchRequest, body: Any = None, **options: Any) -> Any:
        """Execute POST request."""
        return await self(request, method="POST", body=body, **options)

    async def put(self, request: FetchRequest, body: Any = None, **options: Any) -> Any:
        """Execute PUT request."""
        return await self(request, method="PUT", body=body, **options)

    async def patch(self, request: FetchRequest, body: Any = None, **options: Any) -> Any:
        """Execute PATCH request."""
        return await self(request, method="PATCH", body=body, **options)

    async def delete(self, request: FetchRequest, **options: Any) -> Any:
        """Execute DELETE request."""
        return await self(request, method="DELETE", **options)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _build_context(self, request: FetchRequest, options: Mapping[str, Any]) -> FetchContext:
        resolved = resolve_fetch_options(
            request,
            options,
            self._defaults,
            self._capabilities.headers_class,
        )
        if resolved.get("method"):
            resolved["method"] = resolved["method"].upper()
        return FetchContext(request=request, options=resolved)

    def _retry_context(self, context: FetchContext, retries: int) -> FetchContext:
        """Fresh context for the next attempt; the previous one is left untouched."""
        options = dict(context.options)
        options["retry"] = retries
        options["headers"] = self._capabilities.headers_class(
            list(iter_header_pairs(context.options.get("headers")))
        )
        if context.abort_controller is not None and options.get("signal") is context.abort_controller.signal:
            del options["signal"]
        return FetchContext(request=context.request, options=options)

    async def _execute(self, context: FetchContext, deadline: Optional[float]) -> FetchResponse:
        options = context.options

        await call_hooks(context, options.get("on_request"))

        if isinstance(context.request, str):
            if options.get("base_url"):
                context.request = with_base(context.request, options["base_url"])
            if options.get("query"):
                context.request = with_query(context.request, options["query"])
            options.pop("query", None)
            options.pop("params", None)

        self._prepare_body(context)

        timer, deadline = self._arm_timeout(context, deadline)

        logger.debug(f"{LOG_PREFIX} Request: {options.get('method') or 'GET'} {context.request}")
        try:
            raw = await self._capabilities.transport(context.request, options)
        except Exception as e:
            context.error = e
        finally:
            if timer is not None:
                timer.cancel()

        if context.error is not None:
            logger.warning(f"{LOG_PREFIX} Request failed: {type(context.error).__name__}: {context.error}")
            await call_hooks(context, options.get("on_request_error"))
            return await self._on_error(context, deadline)

        response = FetchResponse(raw)
        context.response = response

        await self._decode_response(context, response)

        await call_hooks(context, options.get("on_response"))

        if not options.get("ignore_response_error") and 400 <= response.status < 600:
            await call_hooks(context, options.get("on_response_error"))
            return await self._on_error(context, deadline)

        return response

    async def _on_error(self, context: FetchContext, deadline: Optional[float]) -> FetchResponse:
        async def retry_call(retries: int) -> FetchResponse:
            # Superseded attempt; a terminal error keeps its response readable
            if context.response is not None:
                await self._release(context.response)
            return await self._execute(self._retry_context(context, retries), deadline)

        return await handle_fetch_error(context, retry_call)

    def _prepare_body(self, context: FetchContext) -> None:
        options = context.options
        body = options.get("body")
        if body is None or body == "" or not is_payload_method(options.get("method")):
            return

        kind = classify_body(body)
        if kind in (BodyKind.TEXT, BodyKind.JSON):
            options["body"] = serialize_json_body(body)
            headers = self._capabilities.headers_class(list(iter_header_pairs(options.get("headers"))))
            if "content-type" not in headers:
                headers["content-type"] = JSON_CONTENT_TYPE
            if "accept" not in headers:
                headers["accept"] = JSON_CONTENT_TYPE
            options["headers"] = headers
        elif kind == BodyKind.STREAM:
            if "duplex" not in options:
                options["duplex"] = "half"

    def _arm_timeout(
        self,
        context: FetchContext,
        deadline: Optional[float],
    ) -> Tuple[Optional[asyncio.TimerHandle], Optional[float]]:
        """
        Install a per-attempt signal aborted with RequestTimeoutError.

        The deadline is fixed by the first attempt; retries only get the time
        that remains of it.
        """
        options = context.options
        timeout = options.get("timeout")
        if options.get("signal") is not None or not timeout:
            return None, deadline

        loop = asyncio.get_running_loop()
        if deadline is None:
            deadline = loop.time() + timeout / 1000

        controller = self._capabilities.abort_controller_class()
        context.abort_controller = controller
        options["signal"] = controller.signal

        delay = deadline - loop.time()
        if delay <= 0:
            controller.abort(RequestTimeoutError())
            return None, deadline
        return loop.call_later(delay, controller.abort, RequestTimeoutError()), deadline

    async def _decode_response(self, context: FetchContext, response: FetchResponse) -> None:
        options = context.options
        if response.status in NULL_BODY_STATUSES or options.get("method") == "HEAD":
            await self._release(response)
            return

        body = response.body
        if body is None:
            return

        parse_response = options.get("parse_response")
        if parse_response:
            response_type = "json"
        else:
            response_type = options.get("response_type") or detect_response_type(
                response.headers.get("content-type") or ""
            )

        if response_type == "stream":
            response.data = body
            return

        response.data = await race_signal(
            self._read_body(response, response_type, parse_response),
            options.get("signal"),
        )

    async def _read_body(self, response: FetchResponse, response_type: str, parse_response: Any) -> Any:
        if response_type == "json":
            text = await response.text()
            return (parse_response or parse_json_lenient)(text)
        if response_type == "text":
            return await response.text()
        if response_type == "blob":
            return await response.blob()
        if response_type == "array_buffer":
            return await response.array_buffer()
        raise ValueError(f"Unsupported response_type: {response_type!r}")

    async def _release(self, response: FetchResponse) -> None:
        aclose = getattr(response.raw, "aclose", None)
        if aclose is not None:
            await aclose()


def create_fetch(
    transport: Optional[Transport] = None,
    *,
    defaults: Optional[FetchOptions] = None,
    headers_class: Type = httpx.Headers,
    abort_controller_class: Type = AbortController,
) -> Fetch:
    """Build a Fetch; without a transport an HttpxTransport is created."""
    if transport is None:
        from ..transport import HttpxTransport
        transport = HttpxTransport()
    capabilities = FetchCapabilities(
        transport=transport,
        headers_class=headers_class,
        abort_controller_class=abort_controller_class,
    )
    return Fetch(capabilities, defaults)

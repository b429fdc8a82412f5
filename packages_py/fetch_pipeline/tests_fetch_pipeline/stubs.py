"""
In-memory transport doubles that record every call.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from fetch_pipeline import Blob
from fetch_pipeline.abort import race_signal
from fetch_pipeline.utils import iter_header_pairs

STATUS_TEXT = {
    200: "OK",
    204: "No Content",
    304: "Not Modified",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    408: "Request Timeout",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
}


class StubResponse:
    def __init__(
        self,
        status: int = 200,
        content: Any = b"",
        headers: Optional[Dict[str, str]] = None,
        url: str = "",
    ):
        if isinstance(content, (dict, list)):
            content = json.dumps(content)
            headers = {"content-type": "application/json", **(headers or {})}
        if isinstance(content, str):
            content = content.encode()
        self.status = status
        self.status_text = STATUS_TEXT.get(status, "")
        self.headers = httpx.Headers(headers or {})
        self.url = url
        self.content = content
        self.closed = False

    @property
    def body(self):
        if not self.content:
            return None

        async def chunks():
            yield self.content

        return chunks()

    async def text(self) -> str:
        return self.content.decode()

    async def json(self) -> Any:
        return json.loads(self.content)

    async def blob(self) -> Blob:
        return Blob(self.content, self.headers.get("content-type", ""))

    async def array_buffer(self) -> bytes:
        return self.content

    async def aclose(self) -> None:
        self.closed = True


class RecordingTransport:
    """
    Transport double; `handler(request, options)` returns a StubResponse,
    raises, or is a coroutine function for slow responses.
    """

    def __init__(self, handler: Callable[..., Any]):
        self.handler = handler
        self.calls: List[Tuple[Any, Dict[str, Any]]] = []

    async def __call__(self, request, options):
        headers = httpx.Headers(list(iter_header_pairs(options.get("headers"))))
        self.calls.append((request, dict(options, headers=headers)))
        return await race_signal(self._respond(request, options), options.get("signal"))

    async def _respond(self, request, options):
        result = self.handler(request, options)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    @property
    def last_request(self):
        return self.calls[-1][0]

    @property
    def last_options(self) -> Dict[str, Any]:
        return self.calls[-1][1]


def reply(status: int = 200, content: Any = b"", headers: Optional[Dict[str, str]] = None):
    """Handler returning the same response for every call."""
    def handler(request, options):
        return StubResponse(status, content, headers, url=str(request))
    return handler


def slow(seconds: float, status: int = 200, content: Any = b""):
    async def handler(request, options):
        await asyncio.sleep(seconds)
        return StubResponse(status, content, url=str(request))
    return handler

"""
Response wrapper with a decoded-data slot.
"""
from typing import Any, AsyncIterator, Optional

from .types import Blob, TransportResponse

_UNSET = object()


class FetchResponse:
    """
    Transport response plus the body decoded by the pipeline.

    `data` stays None until the pipeline decodes a body; it is assigned at
    most once.
    """

    def __init__(self, raw: TransportResponse):
        self.raw = raw
        self._data: Any = _UNSET

    @property
    def status(self) -> int:
        return self.raw.status

    @property
    def status_text(self) -> str:
        return self.raw.status_text

    @property
    def headers(self) -> Any:
        return self.raw.headers

    @property
    def url(self) -> str:
        return self.raw.url

    @property
    def ok(self) -> bool:
        """Check if status code is 2xx."""
        return 200 <= self.status <= 299

    @property
    def body(self) -> Optional[AsyncIterator[bytes]]:
        return self.raw.body

    @property
    def has_data(self) -> bool:
        return self._data is not _UNSET

    @property
    def data(self) -> Any:
        return None if self._data is _UNSET else self._data

    @data.setter
    def data(self, value: Any) -> None:
        if self._data is not _UNSET:
            raise RuntimeError("Response data has already been decoded")
        self._data = value

    async def text(self) -> str:
        return await self.raw.text()

    async def json(self) -> Any:
        return await self.raw.json()

    async def blob(self) -> Blob:
        return await self.raw.blob()

    async def array_buffer(self) -> bytes:
        return await self.raw.array_buffer()

    def __repr__(self) -> str:
        return f"<FetchResponse [{self.status} {self.status_text}] {self.url}>"

import pytest

from fetch_pipeline import Fetch, FetchCapabilities
from stubs import RecordingTransport


@pytest.fixture
def make_fetch():
    def factory(handler, defaults=None):
        transport = RecordingTransport(handler)
        return Fetch(FetchCapabilities(transport=transport), defaults), transport
    return factory

import pytest
from fastapi.testclient import TestClient

from storefront.database import MemoryBackend
from storefront.main import create_app
from storefront.store import ProductStore


class FakeResponse:
    """Stand-in for ``requests.Response``."""

    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeRequests:
    """Replays canned responses for ``requests.request`` and records each call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return ProductStore(backend)


@pytest.fixture
def client(store):
    return TestClient(create_app(store))


@pytest.fixture
def speaker():
    return {"name": "Speaker", "price": 100, "description": "loud"}

"""
Pytest fixtures for gateway tests.

No test touches the network: every outbound request goes to StubFetcher.
"""

import os

# Must be set before the limiter is created on import
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from rssplanet.auth import KeyRing
from rssplanet.client_policy import LegacyClientPolicy
from rssplanet.codec import URLCACHE_OWNER, URLCACHE_SERVICE, Codec
from rssplanet.config import state
from rssplanet.crypto import OwnerCipher
from rssplanet.exceptions import UpstreamUnreachable
from rssplanet.fetcher import UpstreamResponse
from rssplanet.kvs import EncryptedStore
from rssplanet.server import app
from rssplanet.storage import MemoryBackend
from rssplanet.url_validator import SSRFError

TEST_KEY = "test-key"
OTHER_KEY = "other-key"
TEST_SECRET = "test-secret"
PROXY_BASE = "http://testserver/proxy/"


class StubStream:
    """Stands in for fetcher.UpstreamStream."""

    def __init__(self, response: UpstreamResponse):
        self.status = response.status
        self.headers = dict(response.headers)
        self._body = response.body
        self.closed = False

    async def iter_chunks(self, chunk_size: int = 64 * 1024):
        if self._body:
            yield self._body
        await self.close()

    async def close(self):
        self.closed = True


class StubFetcher:
    """Serves canned responses by exact URL; anything unknown is a 404."""

    def __init__(self):
        self.responses: dict[str, UpstreamResponse] = {}
        self.unreachable: set[str] = set()
        self.blocked: set[str] = set()
        self.requests: list[tuple[str, str, dict]] = []

    def add(self, url, body="", status=200, content_type="text/plain", headers=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        all_headers = {"content-type": content_type}
        all_headers.update({k.lower(): v for k, v in (headers or {}).items()})
        self.responses[url] = UpstreamResponse(url=url, status=status, headers=all_headers, body=body)

    def requested(self, method: str | None = None) -> list[str]:
        return [url for m, url, _ in self.requests if method is None or m == method]

    async def fetch(self, url, method="GET", headers=None):
        if url in self.blocked:
            raise SSRFError(f"Access to '{url}' is not allowed")
        self.requests.append((method, url, dict(headers or {})))
        if url in self.unreachable:
            raise UpstreamUnreachable(f"Could not reach {url}")
        response = self.responses.get(url)
        if response is None:
            response = UpstreamResponse(
                url=url, status=404, headers={"content-type": "text/plain"}, body=b"not found"
            )
        if method == "HEAD":
            return replace(response, body=b"")
        return response

    async def head(self, url, headers=None):
        return await self.fetch(url, method="HEAD", headers=headers)

    async def open_stream(self, url, method="GET", headers=None):
        return StubStream(await self.fetch(url, method=method, headers=headers))


@pytest.fixture
def stub_fetcher():
    return StubFetcher()


@pytest.fixture
def keyring():
    ring = KeyRing()
    ring.load(f'["{TEST_KEY}", "{OTHER_KEY}"]')
    return ring


@pytest.fixture
def cipher():
    return OwnerCipher(TEST_SECRET)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def url_cache(backend, cipher):
    return EncryptedStore(backend, URLCACHE_SERVICE, URLCACHE_OWNER, cipher)


@pytest.fixture
def codec(url_cache):
    """Codec as the proxy would build it for TEST_KEY."""
    return Codec(PROXY_BASE, TEST_KEY, url_cache=url_cache)


@pytest.fixture
def client(stub_fetcher, keyring, backend, cipher):
    """Create a test client with isolated state and a stubbed network."""
    # Store original state
    original_keyring = state.keyring
    original_backend = state.backend
    original_cipher = state.cipher
    original_fetcher = state.fetcher
    original_policy = state.policy

    state.keyring = keyring
    state.backend = backend
    state.cipher = cipher
    state.fetcher = stub_fetcher
    state.policy = LegacyClientPolicy()

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    # Restore original state
    state.keyring = original_keyring
    state.backend = original_backend
    state.cipher = original_cipher
    state.fetcher = original_fetcher
    state.policy = original_policy

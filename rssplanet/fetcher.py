"""
Upstream fetcher.

Handles:
- Header sanitization in both directions (hop-by-hop, CSP, length/encoding)
- Buffered GET/HEAD for documents that get rewritten (feeds, HTML, API JSON)
- Streaming for assets and images that are passed through untouched
- SSRF protection via URL validation
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlencode

import aiohttp

from .config import config
from .exceptions import UpstreamUnreachable
from .url_validator import validate_url

logger = logging.getLogger(__name__)

REQUEST_HEADERS_TO_STRIP = {
    "host",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "content-length",
}

RESPONSE_HEADERS_TO_STRIP = {
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "content-security-policy",
    "content-security-policy-report-only",
}

# Old clients cannot resume, so range and validator headers only confuse them
LEGACY_ASSET_HEADERS_TO_STRIP = {
    "accept-ranges",
    "content-range",
    "etag",
    "last-modified",
}


def sanitize_request_headers(
    incoming: Mapping[str, str] | None,
    user_agent: str = config.DEFAULT_USER_AGENT,
) -> dict[str, str]:
    """Copy client headers for forwarding, dropping hop-by-hop ones."""
    headers = {
        name: value
        for name, value in (incoming or {}).items()
        if name.lower() not in REQUEST_HEADERS_TO_STRIP
    }
    if not any(name.lower() == "user-agent" for name in headers):
        headers["User-Agent"] = user_agent
    return headers


def sanitize_response_headers(
    incoming: Mapping[str, str],
    extra_strip: set[str] | None = None,
) -> dict[str, str]:
    """Copy upstream headers for re-emission to the client."""
    strip = RESPONSE_HEADERS_TO_STRIP | (extra_strip or set())
    return {
        name: value
        for name, value in incoming.items()
        if name.lower() not in strip
    }


def image_resize_url(target_url: str) -> str:
    """URL of the resize service rendering target_url as a bounded JPEG."""
    params = {
        "url": target_url,
        "w": config.IMAGE_MAX_DIMENSION,
        "h": config.IMAGE_MAX_DIMENSION,
        "fit": "inside",
        "we": 1,
        "output": "jpg",
        "q": config.IMAGE_QUALITY,
    }
    return f"{config.IMAGE_RESIZE_ENDPOINT}?{urlencode(params)}"


def _flatten_headers(headers) -> dict[str, str]:
    # aiohttp's CIMultiDict may repeat names; keep the last value, lowercase keys
    return {name.lower(): value for name, value in headers.items()}


@dataclass
class UpstreamResponse:
    """A fully buffered upstream response."""
    url: str
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    charset: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode(self.charset or "utf-8", errors="replace")


class UpstreamStream:
    """An open upstream response whose body is relayed chunk by chunk."""

    def __init__(self, session: aiohttp.ClientSession, response: aiohttp.ClientResponse):
        self._session = session
        self._response = response
        self.status = response.status
        self.headers = _flatten_headers(response.headers)
        self._closed = False

    async def iter_chunks(self, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.content.iter_chunked(chunk_size):
                yield chunk
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.release()
        await self._session.close()


class ProxyFetcher:
    """Performs outbound requests on behalf of proxied clients."""

    def __init__(
        self,
        timeout: int = config.FETCH_TIMEOUT,
        user_agent: str | None = None,
        check_ssrf: bool = True,
    ):
        self.timeout = timeout
        self.user_agent = user_agent or config.DEFAULT_USER_AGENT
        self.check_ssrf = check_ssrf

    async def _validate(self, url: str) -> None:
        if self.check_ssrf:
            # Resolves DNS, so keep it off the event loop
            await asyncio.to_thread(validate_url, url)

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
    ) -> UpstreamResponse:
        """
        Fetch url and buffer the whole body.

        Raises:
            SSRFError: If URL targets internal network or blocked resources
            UpstreamUnreachable: On connection failure or timeout
        """
        await self._validate(url)
        request_headers = sanitize_request_headers(headers, self.user_agent)
        try:
            async with self._session() as session:
                async with session.request(method, url, headers=request_headers) as response:
                    body = await response.read()
                    return UpstreamResponse(
                        url=str(response.url),
                        status=response.status,
                        headers=_flatten_headers(response.headers),
                        body=body,
                        charset=response.charset,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            raise UpstreamUnreachable(f"Could not reach {url}") from e

    async def head(self, url: str, headers: Mapping[str, str] | None = None) -> UpstreamResponse:
        return await self.fetch(url, method="HEAD", headers=headers)

    async def open_stream(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
    ) -> UpstreamStream:
        """Open url for relaying. The caller must close() the returned stream."""
        await self._validate(url)
        request_headers = sanitize_request_headers(headers, self.user_agent)
        session = self._session()
        try:
            response = await session.request(method, url, headers=request_headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            logger.warning(f"Stream open failed for {url}: {e}")
            raise UpstreamUnreachable(f"Could not reach {url}") from e
        return UpstreamStream(session, response)

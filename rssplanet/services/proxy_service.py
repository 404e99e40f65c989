"""
Proxy service: decode a proxy URL, fetch the target and rewrite or relay it.

Handles:
- The submission form and URL encoding for new targets
- Feed and HTML rewriting
- Asset passthrough and image downsampling via the resize endpoint
"""

import logging

from fastapi import Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from ..client_policy import LegacyClientPolicy
from ..codec import Codec, parse_absolute_url
from ..exceptions import AuthError, UpstreamUnreachable
from ..feed_rewriter import FeedRewriter
from ..fetcher import (
    LEGACY_ASSET_HEADERS_TO_STRIP,
    ProxyFetcher,
    image_resize_url,
    sanitize_response_headers,
)
from ..html_rewriter import HTMLRewriter
from ..option import Option, fetch_auto_option, get_option
from ..pages import render_page

logger = logging.getLogger(__name__)


def raw_request_path(request: Request) -> str:
    """The request path with its percent-encoding intact."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


class ProxyService:
    """Service for proxied fetches."""

    def __init__(
        self,
        codec: Codec,
        fetcher: ProxyFetcher,
        policy: LegacyClientPolicy,
        auth_key: str | None,
    ):
        self.codec = codec
        self.fetcher = fetcher
        self.policy = policy
        self.auth_key = auth_key

    async def handle(self, request: Request) -> Response:
        legacy = self.policy.is_legacy_user_agent(request.headers.get("user-agent"))
        option = get_option(request.query_params.get("option"))

        target = await self.codec.decode(raw_request_path(request))
        submitted = None
        if target is None:
            submitted = parse_absolute_url(request.query_params.get("url"))
            target = submitted

        if target is None:
            return render_page(
                "proxy_form.html",
                title="RSS THE PLANET: Proxy",
                action=request.url.path,
                key=request.query_params.get("key", ""),
                options=[o.value for o in Option],
            )

        if not self.auth_key:
            raise AuthError()

        if option == Option.AUTO:
            option = await fetch_auto_option(target, self.fetcher)

        if submitted is not None:
            encoded = await self.codec.encode(submitted, option or Option.AUTO, legacy=legacy)
            return PlainTextResponse(encoded)

        if option is None:
            raise UpstreamUnreachable(f"Could not determine content type of {target}")

        logger.info(f"Proxying {target} as {option.value} (legacy={legacy})")
        if option == Option.FEED:
            return await self.handle_feed(request, target, legacy)
        if option == Option.HTML:
            return await self.handle_html(request, target)
        if option == Option.IMAGE:
            return await self.relay(request, image_resize_url(target), method="GET")
        return await self.relay(
            request,
            target,
            extra_strip=LEGACY_ASSET_HEADERS_TO_STRIP if legacy else None,
        )

    # ─────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────

    async def handle_feed(self, request: Request, target: str, legacy: bool) -> Response:
        if request.method != "GET":
            return await self.relay(request, target)

        upstream = await self.fetcher.fetch(target, headers=request.headers)
        if not upstream.ok:
            return self._passthrough(upstream)

        rewriter = FeedRewriter(self.codec, legacy=legacy, source_url=target, policy=self.policy)
        body = await rewriter.rewrite(upstream.body)
        logger.info(f"Rewrote feed {target}: {len(upstream.body)} -> {len(body)} bytes")
        return Response(content=body, media_type="text/xml; charset=utf-8")

    async def handle_html(self, request: Request, target: str) -> Response:
        if request.method != "GET":
            return await self.relay(request, target)

        upstream = await self.fetcher.fetch(target, headers=request.headers)
        if not upstream.ok:
            return self._passthrough(upstream)

        html = HTMLRewriter(self.codec, page_url=target).rewrite(upstream.text())
        return HTMLResponse(content=html)

    async def relay(
        self,
        request: Request,
        url: str,
        method: str | None = None,
        extra_strip: set[str] | None = None,
    ) -> StreamingResponse:
        """Stream an upstream response back to the client untouched."""
        stream = await self.fetcher.open_stream(
            url, method=method or request.method, headers=request.headers
        )
        return StreamingResponse(
            stream.iter_chunks(),
            status_code=stream.status,
            headers=sanitize_response_headers(stream.headers, extra_strip),
            background=BackgroundTask(stream.close),
        )

    def _passthrough(self, upstream) -> Response:
        logger.info(f"Upstream {upstream.url} answered {upstream.status}, passing through")
        return Response(
            content=upstream.body,
            status_code=upstream.status,
            headers=sanitize_response_headers(upstream.headers),
        )

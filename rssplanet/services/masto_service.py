"""
Mastodon service: store server credentials per caller and serve timelines as RSS.
"""

import logging
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from ..codec import Codec, parse_absolute_url
from ..exceptions import InternalError, NotFoundError, ValidationError, require_auth
from ..fetcher import ProxyFetcher
from ..kvs import EncryptedStore, StoredEntry
from ..mastodon import SUBTYPES, MastodonClient, statuses_to_rss
from ..pages import render_page
from ..url_validator import validate_url

logger = logging.getLogger(__name__)

MASTO_SERVICE = "MASTO"
RSS_MEDIA_TYPE = "application/rss+xml; charset=utf-8"


class MastoService:
    """Service for Mastodon credentials and timeline feeds."""

    def __init__(
        self,
        codec: Codec,
        fetcher: ProxyFetcher,
        store: EncryptedStore | None,
        auth_key: str | None,
        base_path: str,
    ):
        self.codec = codec
        self.fetcher = fetcher
        self.store = store
        self.auth_key = auth_key
        self.base_path = base_path

    def _require_store(self) -> EncryptedStore:
        require_auth(self.auth_key)
        if self.store is None:
            raise InternalError("Object store not initialized")
        return self.store

    def _back(self) -> RedirectResponse:
        return RedirectResponse(f"{self.base_path}?{urlencode({'key': self.auth_key})}", status_code=302)

    async def page(self, request: Request) -> Response:
        entries = await self.store.list() if self.auth_key and self.store else []
        return render_page(
            "masto.html",
            title="RSS THE PLANET: Mastodon",
            authorized=bool(self.auth_key),
            key=self.auth_key or request.query_params.get("key", ""),
            base_path=self.base_path,
            entries=entries,
            subtypes=SUBTYPES,
        )

    async def save(self, request: Request) -> Response:
        store = self._require_store()

        form = await request.form()
        server = form.get("server")
        token = form.get("apiKey")
        if not isinstance(server, str) or not server.strip() or not isinstance(token, str) or not token.strip():
            raise ValidationError("Server URL and API Key are required")

        server_url = parse_absolute_url(server)
        if server_url is None:
            raise ValidationError("Server URL must be an absolute http(s) URL")
        validate_url(server_url, resolve_dns=False)

        entry = await store.put(StoredEntry(
            name=server_url.rstrip("/"),
            value=token.strip(),
            service=MASTO_SERVICE,
            owner=self.auth_key,
        ))
        if entry is None:
            raise InternalError("Failed to save credentials")
        logger.info(f"Saved Mastodon credentials for {entry.name} as {entry.key}")
        return self._back()

    async def delete(self, entry_id: str) -> Response:
        store = self._require_store()
        if await store.delete(entry_id):
            logger.info(f"Deleted Mastodon credentials {entry_id}")
        return self._back()

    async def timeline(self, request: Request, entry_id: str, subtype: str) -> Response:
        store = self._require_store()
        if subtype not in SUBTYPES:
            raise ValidationError(f"Invalid status type: {subtype}")

        if await store.get_meta(entry_id) is None:
            raise NotFoundError("Mastodon credentials not found")
        entry = await store.get(entry_id)
        if entry is None:
            logger.error(f"Mastodon credentials {entry_id} could not be decrypted")
            raise InternalError("Could not decrypt credentials. Please re-save them.")

        client = MastodonClient(self.fetcher, entry.name, entry.value)
        statuses = await client.fetch_statuses(subtype)
        logger.info(f"Fetched {len(statuses)} {subtype} statuses from {entry.name}")

        rss = statuses_to_rss(
            statuses,
            subtype,
            server=entry.name,
            site_url=str(request.base_url).rstrip("/"),
            codec=self.codec,
        )
        return Response(content=rss, media_type=RSS_MEDIA_TYPE)

"""
OPML service: rewrite uploaded subscription lists and keep them per caller.
"""

import logging
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse, Response
from starlette.datastructures import UploadFile

from ..codec import Codec
from ..exceptions import InternalError, ValidationError, require_auth, require_resource
from ..kvs import EncryptedStore, StoredEntry
from ..opml import parse_opml, rewrite_opml
from ..pages import render_page

logger = logging.getLogger(__name__)

OPML_SERVICE = "OPML"
OPML_MEDIA_TYPE = "text/x-opml"
DEFAULT_FILENAME = "feeds.opml"
PAGE_TITLE = "RSS THE PLANET: OPML Rewriter"


def attachment(filename: str) -> dict[str, str]:
    """Content-Disposition header for a download, safe for latin-1 headers."""
    safe = filename.replace('"', "").encode("ascii", "ignore").decode("ascii") or DEFAULT_FILENAME
    return {"Content-Disposition": f'attachment; filename="{safe}"'}


class OPMLService:
    """Service for OPML uploads, storage and conversion."""

    def __init__(
        self,
        codec: Codec,
        store: EncryptedStore | None,
        auth_key: str | None,
        base_path: str,
    ):
        self.codec = codec
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
            "opml.html",
            title=PAGE_TITLE,
            authorized=bool(self.auth_key),
            key=self.auth_key or request.query_params.get("key", ""),
            base_path=self.base_path,
            entries=entries,
        )

    async def submit(self, request: Request) -> Response:
        """Rewrite an uploaded file now, or save it for later."""
        store = self._require_store()

        form = await request.form()
        upload = form.get("opml")
        if not isinstance(upload, UploadFile):
            raise ValidationError("No OPML file provided")
        content = await upload.read()
        if not content:
            raise ValidationError("No OPML file provided")
        filename = upload.filename or DEFAULT_FILENAME
        logger.info(f"Processing OPML upload {filename} ({len(content)} bytes)")

        if form.get("mode") == "save":
            try:
                document = parse_opml(content)
            except ValueError as e:
                raise ValidationError(f"Invalid OPML/XML format: {e}")
            entry = await store.put(StoredEntry(
                name=filename,
                value=content.decode("utf-8", errors="replace"),
                service=OPML_SERVICE,
                owner=self.auth_key,
            ))
            if entry is None:
                raise InternalError("Failed to save OPML file")
            return render_page(
                "opml_saved.html",
                title="RSS THE PLANET: Saved",
                entry=entry,
                feed_count=len(document.subscriptions),
                key=self.auth_key,
                base_path=self.base_path,
            )

        try:
            rewritten = rewrite_opml(content, self.codec)
        except ValueError as e:
            raise ValidationError(f"Invalid OPML/XML format: {e}")
        return Response(
            content=rewritten,
            media_type=OPML_MEDIA_TYPE,
            headers=attachment(f"rewritten_{filename}"),
        )

    async def download(self, entry_id: str) -> Response:
        store = self._require_store()
        entry = require_resource(await store.get(entry_id), "File not found")
        return Response(
            content=entry.value,
            media_type=OPML_MEDIA_TYPE,
            headers=attachment(entry.name),
        )

    async def convert(self, entry_id: str) -> Response:
        store = self._require_store()
        entry = require_resource(await store.get(entry_id), "File not found")
        try:
            rewritten = rewrite_opml(entry.value.encode("utf-8"), self.codec)
        except ValueError as e:
            logger.error(f"Stored OPML {entry_id} could not be rewritten: {e}")
            raise InternalError("Failed to rewrite OPML")
        return Response(
            content=rewritten,
            media_type=OPML_MEDIA_TYPE,
            headers=attachment(f"proxied_{entry.name}"),
        )

    async def delete(self, entry_id: str) -> Response:
        store = self._require_store()
        if await store.delete(entry_id):
            logger.info(f"Deleted OPML file {entry_id}")
        return self._back()

"""
OPML routes: upload, rewrite, store and download subscription lists.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from ..config import config
from ..services import OPMLServiceDep

router = APIRouter(prefix=config.OPML_PATH.rstrip("/"), tags=["opml"])


@router.get("/")
async def opml_page(request: Request, service: OPMLServiceDep) -> Response:
    """Key form, or upload form and stored file list."""
    return await service.page(request)


@router.post("/")
async def opml_submit(request: Request, service: OPMLServiceDep) -> Response:
    """Rewrite (mode=rewrite) or store (mode=save) an uploaded OPML file."""
    return await service.submit(request)


@router.get("/{entry_id}/download")
async def opml_download(entry_id: str, service: OPMLServiceDep) -> Response:
    return await service.download(entry_id)


@router.get("/{entry_id}/convert")
async def opml_convert(entry_id: str, service: OPMLServiceDep) -> Response:
    """Stored file with every feed URL routed through the proxy."""
    return await service.convert(entry_id)


@router.get("/{entry_id}/delete")
async def opml_delete(entry_id: str, service: OPMLServiceDep) -> Response:
    return await service.delete(entry_id)

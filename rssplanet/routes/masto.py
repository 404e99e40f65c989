"""
Mastodon routes: saved servers and their timelines as RSS.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from ..config import config
from ..services import MastoServiceDep

router = APIRouter(prefix=config.MASTO_PATH.rstrip("/"), tags=["masto"])


@router.get("/")
async def masto_page(request: Request, service: MastoServiceDep) -> Response:
    return await service.page(request)


@router.post("/")
async def masto_save(request: Request, service: MastoServiceDep) -> Response:
    """Store a server URL and access token, then go back to the list."""
    return await service.save(request)


@router.get("/{entry_id}/delete")
async def masto_delete(entry_id: str, service: MastoServiceDep) -> Response:
    return await service.delete(entry_id)


@router.get("/{entry_id}/status/{subtype}")
async def masto_timeline(
    request: Request,
    entry_id: str,
    subtype: str,
    service: MastoServiceDep,
) -> Response:
    """Home, local or user timeline rendered as RSS."""
    return await service.timeline(request, entry_id, subtype)

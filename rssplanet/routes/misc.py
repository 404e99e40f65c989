"""
Miscellaneous routes: health check and landing redirect.
"""

from fastapi import APIRouter
from fastapi.responses import RedirectResponse

from .. import __version__
from ..config import config, state
from ..schemas import HealthResponse

router = APIRouter(tags=["misc"])


@router.get("/status")
async def health_check() -> HealthResponse:
    """Gateway health check."""
    return HealthResponse(
        status="ok",
        version=__version__,
        store_backend=state.backend.name if state.backend else "none",
        keys_loaded=len(state.keyring) if state.keyring else 0,
    )


@router.get("/", include_in_schema=False)
async def index() -> RedirectResponse:
    return RedirectResponse(config.PROXY_PATH, status_code=302)

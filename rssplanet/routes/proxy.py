"""
Proxy routes: every path under the proxy prefix carries a token.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from ..config import config
from ..services import ProxyServiceDep

router = APIRouter(prefix=config.PROXY_PATH.rstrip("/"), tags=["proxy"])


@router.api_route("/{token_path:path}", methods=["GET", "HEAD"])
async def proxy(request: Request, service: ProxyServiceDep) -> Response:
    """Decode the token and serve the target, or show the submission form."""
    return await service.handle(request)

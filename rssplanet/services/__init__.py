"""
Service layer for gateway logic.

Services encapsulate request handling, keeping routes as thin HTTP adapters.
Each service receives its dependencies via constructor injection.

Usage in routes:
    from ..services import ProxyServiceDep

    @router.get("/{token_path:path}")
    async def proxy(request: Request, service: ProxyServiceDep):
        return await service.handle(request)
"""

from typing import Annotated

from fastapi import Depends, Request

from ..auth import AuthKeyDep
from ..client_policy import LegacyClientPolicy
from ..codec import URLCACHE_OWNER, URLCACHE_SERVICE, Codec
from ..config import config, get_backend, get_fetcher, state
from ..fetcher import ProxyFetcher
from ..kvs import EncryptedStore
from ..storage import StoreBackend

from .masto_service import MASTO_SERVICE, MastoService
from .opml_service import OPML_SERVICE, OPMLService
from .proxy_service import ProxyService

__all__ = [
    # Services
    "ProxyService",
    "OPMLService",
    "MastoService",
    # Dependency factories
    "get_proxy_service",
    "get_opml_service",
    "get_masto_service",
    # Type aliases for dependency injection
    "ProxyServiceDep",
    "OPMLServiceDep",
    "MastoServiceDep",
]


def proxy_base_url(request: Request) -> str:
    """Absolute proxy prefix for URLs handed back to this caller."""
    return str(request.base_url).rstrip("/") + config.PROXY_PATH


def scoped_store(backend: StoreBackend, service: str, owner: str | None) -> EncryptedStore | None:
    if not owner:
        return None
    return EncryptedStore(backend, service, owner, state.cipher)


def _codec(request: Request, backend: StoreBackend, auth_key: str | None) -> Codec:
    url_cache = EncryptedStore(backend, URLCACHE_SERVICE, URLCACHE_OWNER, state.cipher)
    return Codec(proxy_base_url(request), auth_key or "", url_cache=url_cache)


def get_proxy_service(
    request: Request,
    auth_key: AuthKeyDep,
    backend: Annotated[StoreBackend, Depends(get_backend)],
    fetcher: Annotated[ProxyFetcher, Depends(get_fetcher)],
) -> ProxyService:
    """Dependency to get ProxyService instance."""
    return ProxyService(
        codec=_codec(request, backend, auth_key),
        fetcher=fetcher,
        policy=state.policy or LegacyClientPolicy(),
        auth_key=auth_key,
    )


def get_opml_service(
    request: Request,
    auth_key: AuthKeyDep,
    backend: Annotated[StoreBackend, Depends(get_backend)],
) -> OPMLService:
    """Dependency to get OPMLService instance."""
    return OPMLService(
        codec=_codec(request, backend, auth_key),
        store=scoped_store(backend, OPML_SERVICE, auth_key),
        auth_key=auth_key,
        base_path=config.OPML_PATH,
    )


def get_masto_service(
    request: Request,
    auth_key: AuthKeyDep,
    backend: Annotated[StoreBackend, Depends(get_backend)],
    fetcher: Annotated[ProxyFetcher, Depends(get_fetcher)],
) -> MastoService:
    """Dependency to get MastoService instance."""
    return MastoService(
        codec=_codec(request, backend, auth_key),
        fetcher=fetcher,
        store=scoped_store(backend, MASTO_SERVICE, auth_key),
        auth_key=auth_key,
        base_path=config.MASTO_PATH,
    )


ProxyServiceDep = Annotated[ProxyService, Depends(get_proxy_service)]
OPMLServiceDep = Annotated[OPMLService, Depends(get_opml_service)]
MastoServiceDep = Annotated[MastoService, Depends(get_masto_service)]

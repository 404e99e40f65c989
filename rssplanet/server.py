"""
RSS THE PLANET gateway server

FastAPI application providing:
- /proxy/: feed, page, asset and image proxying for legacy clients
- /opml/: OPML rewriting and per-caller storage
- /masto/: Mastodon timelines as RSS
- /status: health check
"""

import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from . import __version__
from .auth import KeyRing
from .client_policy import LegacyClientPolicy
from .config import config, state
from .crypto import OwnerCipher
from .exceptions import GatewayError
from .fetcher import ProxyFetcher
from .pages import render_error
from .rate_limit import setup_rate_limiting
from .routes import masto_router, misc_router, opml_router, proxy_router
from .storage import create_backend

logger = logging.getLogger(__name__)


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _encryption_secret() -> str:
    if config.ENCRYPTION_SECRET:
        return config.ENCRYPTION_SECRET
    logger.warning(
        "ENCRYPTION_SECRET is not set; using a random secret. "
        "Stored entries will be unreadable after a restart."
    )
    return secrets.token_urlsafe(32)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize application resources."""
    # Startup - skip anything already initialized (e.g., by tests)
    if state.keyring is None:
        state.keyring = KeyRing()
    state.keyring.load(config.VALID_KEYS)

    if state.backend is None:
        state.backend = create_backend(config.STORE_BACKEND, config.STORE_DIR)
        logger.info(f"Using {state.backend.name} object store")
    if state.cipher is None:
        state.cipher = OwnerCipher(_encryption_secret())
    if state.fetcher is None:
        state.fetcher = ProxyFetcher()
    if state.policy is None:
        state.policy = LegacyClientPolicy()

    yield


app = FastAPI(
    title="RSS THE PLANET",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.error(f"{exc.status_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.status_code} on {request.url.path}: {exc.message}")
    return render_error(exc.status_code, exc.message, request.url.path)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return render_error(500, "An internal server error occurred", request.url.path)


setup_rate_limiting(app)

# Include routers
app.include_router(misc_router)
app.include_router(proxy_router)
app.include_router(opml_router)
app.include_router(masto_router)


def main() -> None:
    """Run the gateway with uvicorn."""
    import uvicorn

    configure_logging()
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()

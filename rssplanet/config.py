"""
Configuration and application state management.
"""

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from .exceptions import InternalError

if TYPE_CHECKING:
    from .auth import KeyRing
    from .client_policy import LegacyClientPolicy
    from .crypto import OwnerCipher
    from .fetcher import ProxyFetcher
    from .storage import StoreBackend

# Load environment variables
load_dotenv()


def _parse_list(value: str | None, default: list[str]) -> list[str]:
    """Parse a JSON array (or comma-separated list) from an environment variable."""
    if value is None or not value.strip():
        return list(default)
    value = value.strip()
    if value.startswith("["):
        parsed = json.loads(value)
        if not isinstance(parsed, list):
            raise ValueError("Expected a JSON array")
        return [str(item) for item in parsed if str(item)]
    return [item.strip() for item in value.split(",") if item.strip()]


def _normalize_path(value: str) -> str:
    """Ensure a route path has exactly one leading and one trailing slash."""
    return "/" + value.strip("/") + "/"


DEFAULT_LEGACY_USER_AGENTS = [
    "NetNewsWire/3",
    "iTunes/10",
    "iTunes/9",
    "iTunes/8",
    "iTunes/7",
    "iTunes/6",
    "iTunes/5",
    "iTunes/4",
    "iTunes/3",
    "iTunes/2",
    "iTunes/1",
]

# Ad/analytics services that wrap the real media URL
DEFAULT_TRACKER_DOMAINS = [
    "podtrac.com",
    "swap.fm",
    "pscrb.fm",
    "advenn.com",
    "chrt.fm",
]

# Hosts where the real file lives; used to find the end of a tracker wrapper
DEFAULT_HOSTING_MARKERS = [
    "stitcher.simplecastaudio.com",
    "traffic.libsyn.com",
    "traffic.megaphone.fm",
    "api.spreaker.com",
    "traffic.omny.fm",
    "www.omnycontent.com",
    "waaa.wnyc.org",
    "media.transistor.fm",
]


class Config:
    """Application configuration from environment."""
    # Raw caller keys; parsed once into the KeyRing at startup
    VALID_KEYS: str = os.getenv("VALID_KEYS", "[]")

    # Server secret mixed with the owner identity to derive per-owner keys
    ENCRYPTION_SECRET: str = os.getenv("ENCRYPTION_SECRET", "")

    # "memory" (ephemeral) or "disk" (persistent JSON files under STORE_DIR)
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
    STORE_DIR: Path = Path(os.getenv("STORE_DIR", "./data/store"))

    PROXY_PATH: str = _normalize_path(os.getenv("PROXY_PATH", "/proxy/"))
    OPML_PATH: str = _normalize_path(os.getenv("OPML_PATH", "/opml/"))
    MASTO_PATH: str = _normalize_path(os.getenv("MASTO_PATH", "/masto/"))

    LEGACY_USER_AGENTS: list[str] = _parse_list(
        os.getenv("LEGACY_USER_AGENTS"), DEFAULT_LEGACY_USER_AGENTS
    )
    TRACKER_DOMAINS: list[str] = _parse_list(
        os.getenv("TRACKER_DOMAINS"), DEFAULT_TRACKER_DOMAINS
    )
    HOSTING_MARKERS: list[str] = _parse_list(
        os.getenv("HOSTING_MARKERS"), DEFAULT_HOSTING_MARKERS
    )

    # Feed size caps
    LEGACY_MAX_ENTRIES: int = int(os.getenv("LEGACY_MAX_ENTRIES", "10"))
    MAX_ENTRIES: int = int(os.getenv("MAX_ENTRIES", "30"))
    # Proxy URLs at or above this length are shortened for legacy clients
    LEGACY_URL_LIMIT: int = int(os.getenv("LEGACY_URL_LIMIT", "255"))

    # Age pruning; 0 disables. RSS and Atom are deliberately independent.
    RSS_ITEM_MAX_AGE_DAYS: int = int(os.getenv("RSS_ITEM_MAX_AGE_DAYS", "365"))
    ATOM_ENTRY_MAX_AGE_DAYS: int = int(os.getenv("ATOM_ENTRY_MAX_AGE_DAYS", "30"))

    # Image downsampling service
    IMAGE_RESIZE_ENDPOINT: str = os.getenv("IMAGE_RESIZE_ENDPOINT", "https://wsrv.nl/")
    IMAGE_MAX_DIMENSION: int = int(os.getenv("IMAGE_MAX_DIMENSION", "1024"))
    IMAGE_QUALITY: int = int(os.getenv("IMAGE_QUALITY", "75"))

    FETCH_TIMEOUT: int = int(os.getenv("FETCH_TIMEOUT", "30"))
    DEFAULT_USER_AGENT: str = os.getenv(
        "DEFAULT_USER_AGENT", "Overcast/3.0 (+http://overcast.fm/; iOS podcast app)"
    )

    MASTO_MAX_STATUSES: int = int(os.getenv("MASTO_MAX_STATUSES", "100"))
    MASTO_MAX_PAGES: int = int(os.getenv("MASTO_MAX_PAGES", "5"))

    RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "120"))

    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "5005"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def proxy_marker(cls) -> str:
        """Path segment that precedes the token in a proxy URL."""
        return cls.PROXY_PATH.strip("/").split("/")[-1]


config = Config()


class AppState:
    """Shared application state."""
    keyring: "KeyRing | None" = None
    backend: "StoreBackend | None" = None
    cipher: "OwnerCipher | None" = None
    fetcher: "ProxyFetcher | None" = None
    policy: "LegacyClientPolicy | None" = None


state = AppState()


def get_backend() -> "StoreBackend":
    """Dependency to get the store backend."""
    if state.backend is None or state.cipher is None:
        raise InternalError("Object store not initialized")
    return state.backend


def get_fetcher() -> "ProxyFetcher":
    """Dependency to get the upstream fetcher."""
    if state.fetcher is None:
        raise InternalError("Fetcher not initialized")
    return state.fetcher

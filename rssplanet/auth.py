"""
Caller key authentication.

Callers authenticate with a shared key passed as the `key` query parameter,
or as a `key` form field on POST submissions. The set of valid keys is
loaded once at startup and read-only afterwards.
"""

import json
import logging
import secrets
from typing import Annotated

from fastapi import Depends, Request

from .config import state

logger = logging.getLogger(__name__)


def parse_keys(raw: str | None) -> list[str]:
    """
    Parse configured keys: a JSON array of strings, or a comma-separated list.

    Raises:
        ValueError: If a JSON value is given but is not an array of strings
    """
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        parsed = json.loads(raw)
        if not isinstance(parsed, list) or not all(isinstance(k, str) for k in parsed):
            raise ValueError("VALID_KEYS must be a JSON array of strings")
        return [k for k in parsed if k]
    return [k.strip() for k in raw.split(",") if k.strip()]


class KeyRing:
    """Process-wide set of valid caller keys, populated at most once."""

    def __init__(self):
        self._keys: frozenset[str] | None = None

    @property
    def loaded(self) -> bool:
        return self._keys is not None

    def load(self, raw: str | None) -> None:
        if self._keys is not None:
            logger.info("Valid keys already loaded, reusing them")
            return
        keys = parse_keys(raw)
        self._keys = frozenset(keys)
        if keys:
            logger.info(f"Loaded {len(keys)} valid key(s)")
        else:
            logger.warning("No valid keys configured; every protected request will be rejected")

    def __len__(self) -> int:
        return len(self._keys or ())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str) or not key or not self._keys:
            return False
        # Use constant-time comparison to prevent timing attacks
        matched = False
        for candidate in self._keys:
            matched |= secrets.compare_digest(key.encode(), candidate.encode())
        return matched


class AuthGate:
    def __init__(self, keyring: KeyRing):
        self.keyring = keyring

    async def validate(self, request: Request) -> str | None:
        """
        Return the caller key if it is valid, otherwise None.

        The query string wins; a form POST body is only consulted when the
        query has no key. Never raises.
        """
        try:
            key = request.query_params.get("key")
            if not key and request.method == "POST":
                form = await request.form()
                value = form.get("key")
                key = value if isinstance(value, str) else None
        except Exception as e:
            logger.info(f"Could not read key from request: {e}")
            return None

        if key and key in self.keyring:
            return key
        if key:
            logger.info(f"Rejected invalid key on {request.url.path}")
        return None


def get_keyring() -> KeyRing:
    """Dependency to get the process-wide key ring."""
    if state.keyring is None:
        state.keyring = KeyRing()
    return state.keyring


async def get_auth_key(
    request: Request,
    keyring: Annotated[KeyRing, Depends(get_keyring)],
) -> str | None:
    """Dependency resolving the caller key, or None when unauthenticated."""
    return await AuthGate(keyring).validate(request)


AuthKeyDep = Annotated[str | None, Depends(get_auth_key)]

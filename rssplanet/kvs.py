"""
Owner/service scoped encrypted store on top of a raw StoreBackend.

A store instance is bound to one (service, owner) pair. Every read, write,
list and delete is checked against that scope, so a caller can only ever see
entries written under its own key for the same service.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from .crypto import OwnerCipher
from .storage import StoreBackend

logger = logging.getLogger(__name__)


def _require_text(**values: Any) -> None:
    for name, value in values.items():
        if not isinstance(value, str) or not value:
            raise ValueError(f"{name} must be a non-empty string")


@dataclass
class StoredMeta:
    key: str
    name: str
    service: str
    owner: str

    def __post_init__(self):
        _require_text(key=self.key, name=self.name, service=self.service, owner=self.owner)


@dataclass
class StoredEntry:
    name: str
    value: str
    service: str
    owner: str
    key: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if self.key is None:
            self.key = str(uuid.uuid4())
        _require_text(
            key=self.key, name=self.name, value=self.value,
            service=self.service, owner=self.owner,
        )

    @property
    def meta(self) -> StoredMeta:
        return StoredMeta(key=self.key, name=self.name, service=self.service, owner=self.owner)


def _meta_from_backend(key: str, metadata: dict[str, Any] | None) -> StoredMeta | None:
    if not metadata:
        return None
    try:
        return StoredMeta(
            key=key,
            name=metadata.get("name"),
            service=metadata.get("service"),
            owner=metadata.get("owner"),
        )
    except ValueError:
        return None


class EncryptedStore:
    """Scoped, encrypted view of a backend for one service and owner."""

    def __init__(self, backend: StoreBackend, service: str, owner: str, cipher: OwnerCipher):
        _require_text(service=service, owner=owner)
        self.backend = backend
        self.service = service
        self.owner = owner
        self.cipher = cipher

    def _in_scope(self, meta: StoredMeta | None) -> bool:
        return (
            meta is not None
            and meta.service == self.service
            and meta.owner == self.owner
        )

    async def get_meta(self, key: str) -> StoredMeta | None:
        """Metadata for an entry in this scope, without decrypting it."""
        if not key:
            return None
        _, metadata = await self.backend.get_with_metadata(key)
        meta = _meta_from_backend(key, metadata)
        if not self._in_scope(meta):
            if meta is not None:
                logger.warning(f"Refusing access to {key}: scope mismatch")
            return None
        return meta

    async def put(self, entry: StoredEntry) -> StoredEntry | None:
        """Encrypt and store an entry. Returns None if the entry is out of scope."""
        if entry.service != self.service or entry.owner != self.owner:
            logger.warning(f"Refusing to store {entry.key}: scope mismatch")
            return None

        _, existing = await self.backend.get_with_metadata(entry.key)
        existing_meta = _meta_from_backend(entry.key, existing)
        if existing is not None and not self._in_scope(existing_meta):
            logger.warning(f"Refusing to overwrite {entry.key}: owned by another scope")
            return None

        ciphertext = self.cipher.encrypt(entry.value, self.owner)
        stored = await self.backend.put(
            entry.key,
            ciphertext,
            metadata={"name": entry.name, "service": entry.service, "owner": entry.owner},
            allow_overwrite=True,
        )
        if not stored:
            return None
        logger.debug(f"Stored {self.service} entry {entry.key}")
        return entry

    async def get(self, key: str) -> StoredEntry | None:
        """Fetch and decrypt an entry; None when missing, foreign or undecryptable."""
        if not key:
            return None
        value, metadata = await self.backend.get_with_metadata(key)
        meta = _meta_from_backend(key, metadata)
        if value is None or not self._in_scope(meta):
            if meta is not None:
                logger.warning(f"Refusing access to {key}: scope mismatch")
            return None

        plaintext = self.cipher.decrypt(value, self.owner)
        if not plaintext:
            return None
        return StoredEntry(
            key=key,
            name=meta.name,
            value=plaintext,
            service=meta.service,
            owner=meta.owner,
        )

    async def delete(self, key: str) -> bool:
        """Delete an entry in this scope. Anything else is a silent no-op."""
        if await self.get_meta(key) is None:
            return False
        await self.backend.delete(key)
        return True

    async def list(self) -> list[StoredMeta]:
        """Metadata for every entry in this scope, ordered by name."""
        results = []
        for key, metadata in await self.backend.list():
            meta = _meta_from_backend(key, metadata)
            if self._in_scope(meta):
                results.append(meta)
        return sorted(results, key=lambda meta: (meta.name.lower(), meta.key))

"""
Storage - Raw key/value object store with pluggable backends.

Provides:
- MemoryBackend: In-process dictionary, lost on restart
- DiskBackend: One JSON file per key, persistent across restarts

Backends store opaque string values plus a small metadata dict. They know
nothing about owners or encryption; see kvs.EncryptedStore for that layer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
import asyncio
import hashlib
import json
import logging
import os
import uuid

logger = logging.getLogger(__name__)


@dataclass
class StoredRecord:
    key: str
    value: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    expires_at: datetime | None = None

    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < datetime.now()


def _expiry(expiration_ttl: int | None) -> datetime | None:
    return datetime.now() + timedelta(seconds=expiration_ttl) if expiration_ttl else None


class StoreBackend(ABC):
    """Abstract base class for object store backends."""

    name: str = "abstract"

    async def get(self, key: str) -> str | None:
        """Get a raw value."""
        value, _ = await self.get_with_metadata(key)
        return value

    @abstractmethod
    async def get_with_metadata(self, key: str) -> tuple[str | None, dict[str, Any] | None]:
        """Get a raw value and its metadata; (None, None) when absent."""
        pass

    @abstractmethod
    async def put(
        self,
        key: str,
        value: str,
        metadata: dict[str, Any] | None = None,
        allow_overwrite: bool = False,
        expiration_ttl: int | None = None,
    ) -> bool:
        """
        Store a value. Returns False without writing when the key exists and
        allow_overwrite is not set.
        """
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> list[tuple[str, dict[str, Any]]]:
        """List (key, metadata) pairs whose key starts with prefix."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value; unknown keys are ignored."""
        pass


class MemoryBackend(StoreBackend):
    """In-memory store. Everything is lost when the process exits."""

    name = "memory"

    def __init__(self):
        self._records: dict[str, StoredRecord] = {}

    def _live(self, key: str) -> StoredRecord | None:
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired():
            self._records.pop(key, None)
            return None
        return record

    async def get_with_metadata(self, key):
        record = self._live(key)
        if record is None:
            return None, None
        return record.value, dict(record.metadata)

    async def put(self, key, value, metadata=None, allow_overwrite=False, expiration_ttl=None):
        if not allow_overwrite and self._live(key) is not None:
            logger.info(f"Not overwriting existing key {key}")
            return False
        self._records[key] = StoredRecord(
            key=key,
            value=value,
            metadata=dict(metadata or {}),
            expires_at=_expiry(expiration_ttl),
        )
        return True

    async def list(self, prefix=""):
        return [
            (key, dict(record.metadata))
            for key, record in list(self._records.items())
            if key.startswith(prefix) and self._live(key) is not None
        ]

    async def delete(self, key):
        self._records.pop(key, None)


class DiskBackend(StoreBackend):
    """Persistent store: one JSON document per key under store_dir."""

    name = "disk"

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def _key_to_path(self, key: str) -> Path:
        """Convert store key to file path."""
        hashed = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.store_dir / f"{hashed}.json"

    def _read(self, path: Path) -> StoredRecord | None:
        try:
            data = json.loads(path.read_text())
            expires_at = data.get("expires_at")
            record = StoredRecord(
                key=data["key"],
                value=data["value"],
                metadata=data.get("metadata") or {},
                created_at=datetime.fromisoformat(data["created_at"]),
                expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            )
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning(f"Removing corrupted store file {path.name}")
            path.unlink(missing_ok=True)
            return None

        if record.is_expired():
            path.unlink(missing_ok=True)
            return None
        return record

    def _get_sync(self, key: str) -> StoredRecord | None:
        record = self._read(self._key_to_path(key))
        # Verify key matches (handle hash collisions)
        if record is None or record.key != key:
            return None
        return record

    def _put_sync(self, key, value, metadata, allow_overwrite, expiration_ttl) -> bool:
        if not allow_overwrite and self._get_sync(key) is not None:
            logger.info(f"Not overwriting existing key {key}")
            return False
        expires_at = _expiry(expiration_ttl)
        data = {
            "key": key,
            "value": value,
            "metadata": metadata or {},
            "created_at": datetime.now().isoformat(),
            "expires_at": expires_at.isoformat() if expires_at else None,
        }
        path = self._key_to_path(key)
        # One temp file per write; concurrent writers to a key settle on the last replace
        tmp_path = path.with_name(f"{path.stem}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_text(json.dumps(data))
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return True

    def _list_sync(self, prefix: str) -> list[tuple[str, dict[str, Any]]]:
        results = []
        for file in self.store_dir.glob("*.json"):
            record = self._read(file)
            if record is not None and record.key.startswith(prefix):
                results.append((record.key, dict(record.metadata)))
        return results

    async def get_with_metadata(self, key):
        record = await asyncio.to_thread(self._get_sync, key)
        if record is None:
            return None, None
        return record.value, dict(record.metadata)

    async def put(self, key, value, metadata=None, allow_overwrite=False, expiration_ttl=None):
        return await asyncio.to_thread(
            self._put_sync, key, value, metadata, allow_overwrite, expiration_ttl
        )

    async def list(self, prefix=""):
        return await asyncio.to_thread(self._list_sync, prefix)

    async def delete(self, key):
        path = self._key_to_path(key)
        record = await asyncio.to_thread(self._read, path)
        if record is not None and record.key == key:
            await asyncio.to_thread(path.unlink, True)


def create_backend(kind: str, store_dir: str | Path | None = None) -> StoreBackend:
    """Factory function to create a backend from settings."""
    kind = (kind or "memory").lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "disk":
        if store_dir is None:
            raise ValueError("Disk store requires a directory")
        return DiskBackend(Path(store_dir))
    raise ValueError(f"Unknown store backend: {kind}")

"""File-backed cache: one JSON document per key."""

import asyncio
import hashlib
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any

from consensus.cache.base import DEFAULT_TTL_SECONDS, CacheAdapter, CacheEntry
from consensus.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_BACKEND = "file"


class FileCacheAdapter(CacheAdapter):
    """Persists entries under ``cache_dir`` so they survive process restarts.

    Values must be JSON-serializable. Writes go to a temp file and are renamed
    into place, so readers never observe a half-written entry.
    """

    def __init__(
        self,
        cache_dir: str | Path = ".cache",
        default_ttl: int = DEFAULT_TTL_SECONDS,
        create_dir: bool = True,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.default_ttl = default_ttl
        if create_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        elif not self.cache_dir.is_dir():
            raise StoreUnavailable(_BACKEND, f"Cache directory does not exist: {self.cache_dir}")

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    def _read(self, key: str) -> Any | None:
        path = self._path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(_BACKEND, f"Cannot read {path.name}: {exc}") from exc

        try:
            doc = json.loads(raw)
            entry = CacheEntry(
                value=doc["value"],
                created_at=float(doc["created_at"]),
                expires_at=None if doc.get("expires_at") is None else float(doc["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Corrupt cache file %s, deleting: %s", path.name, exc)
            path.unlink(missing_ok=True)
            return None

        if entry.is_expired():
            path.unlink(missing_ok=True)
            return None
        return entry.value

    def _write(self, key: str, value: Any, ttl_seconds: int) -> None:
        entry = CacheEntry.create(value, ttl_seconds)
        path = self._path_for(key)
        # Unique per write; concurrent writers of one key must not share a temp file
        tmp_path = path.with_name(f"{path.stem}.{uuid.uuid4().hex}.tmp")
        try:
            payload = json.dumps(
                {
                    "key": key,
                    "value": entry.value,
                    "created_at": entry.created_at,
                    "expires_at": entry.expires_at,
                }
            )
        except (TypeError, ValueError) as exc:
            raise TypeError(f"File cache values must be JSON-serializable: {exc}") from exc
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StoreUnavailable(_BACKEND, f"Cannot write {path.name}: {exc}") from exc

    def _delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreUnavailable(_BACKEND, f"Cannot delete entry: {exc}") from exc

    def _clear(self) -> None:
        if not self.cache_dir.exists():
            return
        try:
            for path in self.cache_dir.iterdir():
                if path.suffix in (".json", ".tmp"):
                    path.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreUnavailable(_BACKEND, f"Cannot clear {self.cache_dir}: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await asyncio.to_thread(self._write, key, value, self._effective_ttl(ttl_seconds))

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    def cleanup_expired(self) -> int:
        """Remove expired and unreadable entry files. Returns the number removed."""
        removed = 0
        now = time.time()
        for path in self.cache_dir.glob("*.json"):
            try:
                doc = json.loads(path.read_text(encoding="utf-8"))
                expires_at = doc.get("expires_at")
                stale = expires_at is not None and float(expires_at) <= now
            except (OSError, ValueError, TypeError, AttributeError):
                stale = True
            if stale:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("File cache cleanup removed %d entries", removed)
        return removed

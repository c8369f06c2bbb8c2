"""Local file cache tier."""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from bookhub import logging_manager as log_mgr

from ..errors import TierTransientFailure
from ..keys import safe_key_name
from ..types import CacheEntry
from .base import CacheTier

logger = log_mgr.get_logger().getChild("services.metadata.tiers.disk")


class DiskCacheTier(CacheTier):
    """File-based cache tier.

    Stores one JSON file per cache key, named from the sanitized key and a
    digest. Entries older than the TTL read as misses and are removed.
    Blocking file I/O runs in worker threads.
    """

    name = "disk"

    def __init__(
        self,
        cache_dir: Path,
        ttl_hours: float = 24 * 7,
    ) -> None:
        """Initialize the cache.

        Args:
            cache_dir: Directory to store cache files.
            ttl_hours: Time-to-live in hours for cache entries.
        """
        self._cache_dir = Path(cache_dir)
        self._ttl = timedelta(hours=ttl_hours)
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    def _cache_path(self, key: str) -> Path:
        return self._cache_dir / f"{safe_key_name(key)}.json"

    def _is_expired(self, cached_at: Optional[str], now: datetime) -> bool:
        if not cached_at:
            return False
        cached_time = datetime.fromisoformat(cached_at)
        if cached_time.tzinfo is None:
            cached_time = cached_time.replace(tzinfo=timezone.utc)
        return now - cached_time > self._ttl

    def _read(self, key: str) -> Optional[CacheEntry]:
        path = self._cache_path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TierTransientFailure(self.name, f"cannot read {path.name}: {exc}") from exc

        try:
            data = json.loads(raw)
            if data.get("key") != key:
                return None
            if self._is_expired(data.get("cached_at"), datetime.now(timezone.utc)):
                logger.debug("Cache entry expired for key %s", key, extra={"cache_key": key})
                path.unlink(missing_ok=True)
                return None
            entry = CacheEntry.from_dict(data["entry"])
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            path.unlink(missing_ok=True)
            raise TierTransientFailure(self.name, f"malformed cache file {path.name}") from exc
        return entry.touch()

    def _write(self, key: str, entry: CacheEntry) -> None:
        path = self._cache_path(key)
        data = {
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "key": key,
            "entry": entry.to_dict(),
        }
        tmp_path = path.with_suffix(f".{os.getpid()}.tmp")
        try:
            tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise TierTransientFailure(self.name, f"cannot write {path.name}: {exc}") from exc

    async def get(self, key: str) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, entry: CacheEntry) -> None:
        await asyncio.to_thread(self._write, key, entry)

    def delete(self, key: str) -> bool:
        """Delete a cached entry; ``True`` if one existed."""
        path = self._cache_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Deleted cache entry for key %s", key, extra={"cache_key": key})
        return True

    def clear(self) -> int:
        """Clear all cache entries.

        Returns:
            Number of entries deleted.
        """
        count = 0
        for path in self._cache_dir.glob("*.json"):
            try:
                path.unlink()
                count += 1
            except OSError:
                continue
        logger.info("Cleared %d cache entries", count, extra={"event": "tier.cleared", "tier": self.name})
        return count

    def cleanup_expired(self) -> int:
        """Remove expired and unreadable cache entries.

        Returns:
            Number of entries removed.
        """
        count = 0
        now = datetime.now(timezone.utc)

        for path in self._cache_dir.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                expired = self._is_expired(data.get("cached_at"), now)
            except (OSError, ValueError, AttributeError):
                expired = True
            if expired:
                try:
                    path.unlink()
                    count += 1
                except OSError:
                    continue

        if count > 0:
            logger.info(
                "Cleaned up %d expired cache entries",
                count,
                extra={"event": "tier.cleanup", "tier": self.name},
            )
        return count

    @property
    def cache_dir(self) -> Path:
        """Return the cache directory path."""
        return self._cache_dir


__all__ = ["DiskCacheTier"]

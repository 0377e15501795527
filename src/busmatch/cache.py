"""Keyed TTL cache with stale-on-failure fallback."""

import asyncio
import hashlib
import json
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional

from .config import SEVEN_DAYS_IN_SECONDS

logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    value: Any
    stored_at: float  # Unix timestamp of the write


class MemoryStore:
    """In-process store; entries live for the session."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def write(self, key: str, value: Any, stored_at: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value, stored_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class FileStore:
    """
    One JSON document per key under a directory.

    Writes go through a temporary file and os.replace, so a reader never sees a
    partially written document. A document that cannot be decoded reads as absent.
    """

    _UNSAFE = re.compile(r"[^\w.\-]")

    def __init__(self, directory):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = self._UNSAFE.sub("_", key)
        if safe != key:
            # Keep distinct keys distinct after sanitizing
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
            safe = f"{safe}-{digest}"
        return self.directory / f"{safe}.json"

    def read(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
            return CacheEntry(document["value"], float(document["stored_at"]))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error reading cache file {path.name}: {e}")
            return None

    def write(self, key: str, value: Any, stored_at: float) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"stored_at": stored_at, "value": value}, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def clear(self) -> None:
        for path in self.directory.glob("*.json"):
            path.unlink()


def _is_empty(value: Any) -> bool:
    try:
        return len(value) == 0
    except TypeError:
        return value is None


class TTLCache:
    """
    Caches fetched provider responses under caller-supplied keys.

    get() serves a stored value while it is younger than the TTL. Otherwise it
    calls the fetcher: non-empty results are stored, empty results are returned
    without replacing what is stored, and a failing fetcher falls back to any
    stored value, expired or not.
    """

    def __init__(
        self,
        store=None,
        ttl_seconds: float = SEVEN_DAYS_IN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            store: A MemoryStore, FileStore or any object with read/write/delete/clear.
                Defaults to a MemoryStore.
            ttl_seconds: Age after which a stored value is refreshed.
            clock: Source of Unix timestamps, replaceable in tests.
        """
        self.store = store if store is not None else MemoryStore()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def is_fresh(self, entry: CacheEntry) -> bool:
        return (self._clock() - entry.stored_at) < self.ttl_seconds

    async def get(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the value for key, fetching it when missing, expired or forced.

        Args:
            key: Cache key; distinct query parameters must use distinct keys.
            fetcher: Zero-argument coroutine function producing a fresh value.
            force_refresh: Skip the freshness check and always call the fetcher.

        Returns:
            The cached or freshly fetched value.

        Raises:
            Whatever the fetcher raised, when nothing is stored for key.
        """
        # Store reads and writes run in worker threads
        entry = await asyncio.to_thread(self.store.read, key)
        if entry is not None and not force_refresh and self.is_fresh(entry):
            logger.debug(f"Loading from valid cache: {key}")
            return entry.value

        logger.debug(f"Cache missing, stale, or force-refreshed, fetching: {key}")
        try:
            value = await fetcher()
        except Exception as e:
            logger.error(f"Fetch failed for {key}: {e}")
            # Re-read: a concurrent fetch for the same key may have stored a value meanwhile
            fallback = await asyncio.to_thread(self.store.read, key) or entry
            if fallback is not None:
                logger.warning(f"Fetch failed, using stale cache as fallback: {key}")
                return fallback.value
            raise

        if _is_empty(value):
            logger.warning(f"Fetcher returned an empty result for {key}. Cache will not be updated.")
            return value

        try:
            await asyncio.to_thread(self.store.write, key, value, self._clock())
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving cache entry {key}: {e}")
        return value

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for key without fetching."""
        return self.store.read(key)

    def invalidate(self, key: str) -> None:
        self.store.delete(key)

    def clear(self) -> None:
        self.store.clear()

"""
Expiring cache and temporary file registry.

ExpiringCache keeps entries for a fixed time-to-live and hands expired
entries to a callback. TempFileCache uses it to remember temporary files
written by save operations and deletes them on expiry or on request.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

from .. import DEFAULT_TMP_FILE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached value and the clock reading it was stored at."""
    value: Any
    inserted_at: float


@dataclass
class CacheStatistics:
    """Cache bookkeeping counters."""
    added_count: int = 0
    expired_count: int = 0
    removed_count: int = 0


class ExpiringCache:
    """
    Thread-safe mapping whose entries expire after a fixed TTL.

    An entry inserted at clock time T expires once clock() >= T + ttl.
    Expired entries are removed from the mapping under the lock before the
    callback runs, so each entry is handed out exactly once.
    """

    def __init__(
        self,
        ttl_seconds: float,
        expired_callback: Optional[Callable[[Hashable, Any], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of every entry
            expired_callback: Called with (key, value) for each expired entry
            clock: Monotonic time source in seconds
            sweep_interval: Seconds between background sweeps
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.ttl_seconds = ttl_seconds
        self.expired_callback = expired_callback
        self.clock = clock
        self.sweep_interval = sweep_interval

        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stats = CacheStatistics()

        # Background sweep
        self._sweep_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def add(self, key: Hashable, value: Any) -> None:
        """Add or replace an entry, restarting its lifetime."""
        with self._lock:
            self._entries[key] = CacheEntry(value=value, inserted_at=self.clock())
            self._stats.added_count += 1

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None else default

    def remove(self, key: Hashable) -> bool:
        """
        Remove an entry without calling the expiry callback.

        Returns:
            True if the entry existed
        """
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is not None:
                self._stats.removed_count += 1
            return entry is not None

    def pop_all(self) -> Dict[Hashable, Any]:
        """Remove every entry and return a snapshot of them."""
        with self._lock:
            snapshot = {key: entry.value for key, entry in self._entries.items()}
            self._entries.clear()
            self._stats.removed_count += len(snapshot)
        return snapshot

    @property
    def elements(self) -> List[Any]:
        """Snapshot of the cached values."""
        with self._lock:
            return [entry.value for entry in self._entries.values()]

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def expire_due(self) -> int:
        """
        Remove entries whose lifetime is over and run the callback for each.

        Returns:
            Number of expired entries
        """
        now = self.clock()
        with self._lock:
            expired_keys = [
                key for key, entry in self._entries.items()
                if now - entry.inserted_at >= self.ttl_seconds
            ]
            expired = [(key, self._entries.pop(key).value) for key in expired_keys]
            self._stats.expired_count += len(expired)

        for key, value in expired:
            if self.expired_callback is None:
                continue
            try:
                self.expired_callback(key, value)
            except Exception as e:
                logger.error("Error in expiry callback for %s: %s", key, e)

        return len(expired)

    def start(self) -> None:
        """Start the background sweep thread."""
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            return
        self._stop_event.clear()
        self._sweep_thread = threading.Thread(
            target=self._periodic_sweep_loop,
            name="expiring-cache-sweep",
            daemon=True
        )
        self._sweep_thread.start()
        logger.debug("Expiry sweep started, interval %ss", self.sweep_interval)

    def _periodic_sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.expire_due()
            except Exception as e:
                logger.error("Error in periodic expiry sweep: %s", e)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the background sweep thread."""
        self._stop_event.set()
        if self._sweep_thread is not None:
            self._sweep_thread.join(timeout)
            self._sweep_thread = None

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'entries': len(self._entries),
                'added_count': self._stats.added_count,
                'expired_count': self._stats.expired_count,
                'removed_count': self._stats.removed_count,
                'ttl_seconds': self.ttl_seconds,
            }


def _delete_file(path: str) -> bool:
    if not os.path.exists(path):
        return False
    os.remove(path)
    return True


class TempFileCache:
    """
    Registry of temporary files written by save operations.

    Files are deleted once their TTL is over or when remove_all() is
    called. A file that is already gone counts as cleaned up.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TMP_FILE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0
    ):
        self._cache = ExpiringCache(
            ttl_seconds,
            expired_callback=self._remove_expired_tmp_file,
            clock=clock,
            sweep_interval=sweep_interval
        )

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    @property
    def paths(self) -> List[str]:
        return self._cache.elements

    def add(self, path: str) -> str:
        """
        Track a temporary file.

        Returns:
            The absolute path that is tracked
        """
        full_path = os.path.abspath(path)
        self._cache.add(full_path, full_path)
        logger.debug("Tracking temp file %s", full_path)
        return full_path

    def __contains__(self, path: str) -> bool:
        return os.path.abspath(path) in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def expire_due(self) -> int:
        """Delete the files whose TTL is over."""
        return self._cache.expire_due()

    def remove_all(self) -> int:
        """
        Delete every tracked file that still exists and forget all entries.

        Returns:
            Number of files deleted from disk
        """
        deleted = 0
        for path in self._cache.pop_all().values():
            try:
                if _delete_file(path):
                    logger.debug("Removing old temp file %s", path)
                    deleted += 1
            except OSError as e:
                logger.warning("Could not remove temp file %s: %s", path, e)
        return deleted

    def _remove_expired_tmp_file(self, key: str, path: Any) -> None:
        if not isinstance(path, str):
            return
        try:
            if _delete_file(path):
                logger.debug("Removing expired file %s", path)
        except OSError as e:
            logger.warning("Could not remove expired file %s: %s", path, e)

    def start(self) -> None:
        self._cache.start()

    def shutdown(self) -> None:
        self._cache.shutdown()

    def get_statistics(self) -> Dict[str, Any]:
        return self._cache.get_statistics()

"""
Flat-file JSON cache with per-key TTL.

- One instance per process, built in build_services and injected.
- Individual operations are guarded by a lock; compound read-then-write
  sequences by callers are not atomic.
- Writes go to a temp file and are swapped in with os.replace.
"""

import json
import logging
import os
import tempfile
import threading
import time
from typing import Any, Callable, Dict, Optional

from rapidalle.core.metrics import cache_entries

logger = logging.getLogger("rapidalle")


def library_key(user_id: str) -> str:
    return f"library:{user_id}"


def rate_limit_key(user_id: str) -> str:
    return f"ratelimit:{user_id}"


class FlatCache:
    def __init__(
        self,
        cache_dir: str = "./cache",
        cache_id: str = "library-cache",
        ttl_seconds: float = 300,
        persist_interval_seconds: float = 60,
        time_fn: Callable[[], float] = time.time,
    ):
        self.cache_dir = cache_dir
        self.cache_id = cache_id
        self.ttl_seconds = ttl_seconds
        self.persist_interval_seconds = persist_interval_seconds
        self.time_fn = time_fn
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._dirty = False
        self._last_saved = self.time_fn()

    @property
    def path(self) -> str:
        return os.path.join(self.cache_dir, self.cache_id)

    def _expired(self, entry: Dict[str, Any], now: float) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and expires_at <= now

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self.time_fn()):
                return None
            return entry.get("value")

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        # Fail here rather than at save time
        json.dumps(value)
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            expires_at = self.time_fn() + ttl if ttl and ttl > 0 else None
            self._entries[key] = {"value": value, "expires_at": expires_at}
            self._dirty = True

    def invalidate(self, key: str) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self._dirty = True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dirty = True

    def save(self, force: bool = False) -> bool:
        """Persist to disk when dirty and due (or forced). Returns True if written."""
        with self._lock:
            now = self.time_fn()
            if not self._dirty:
                return False
            if not force and now - self._last_saved < self.persist_interval_seconds:
                return False

            self._entries = {k: v for k, v in self._entries.items() if not self._expired(v, now)}
            os.makedirs(self.cache_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{self.cache_id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(self._entries, handle)
                os.replace(tmp_path, self.path)
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

            self._dirty = False
            self._last_saved = now
            cache_entries.set(len(self._entries))
            return True

    def load(self) -> int:
        """Load entries from disk, dropping expired ones. Returns the entry count."""
        with self._lock:
            if not os.path.exists(self.path):
                return 0
            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    raw = json.load(handle)
            except (OSError, ValueError) as e:
                logger.warning(f"cache.load_failed: {e}", extra={"event_type": "cache.load_failed"})
                return 0

            now = self.time_fn()
            self._entries = {
                k: v for k, v in raw.items()
                if isinstance(v, dict) and not self._expired(v, now)
            }
            self._dirty = False
            self._last_saved = now
            cache_entries.set(len(self._entries))
            return len(self._entries)

"""Short-lived cache of GitLab GET responses.

A single triage touches the same merge request several times: the branch
lookup, the MR itself, its discussions and diffs. Repeating a tool call a few
seconds later should not refetch all of it. Entries are keyed by request URL
and query, and writes invalidate everything cached below the URL they touch,
so a posted reply is visible to the next discussion fetch.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30.0

CacheKey = tuple[str, str, bool]


class ResponseCache:
    """GET responses kept for ``ttl`` seconds, shared by every client in the process."""

    def __init__(self, ttl: float = DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._entries: dict[CacheKey, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(url: str, params: dict[str, Any] | None = None, *, paginate: bool = False) -> CacheKey:
        query = urlencode(sorted((params or {}).items()), doseq=True)
        return url, query, paginate

    def lookup(self, key: CacheKey) -> tuple[bool, Any]:
        """Return ``(True, value)`` on a fresh hit, else ``(False, None)``."""
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if now - entry[0] >= self.ttl:
                del self._entries[key]
                return False, None
        logger.debug("Cached response for %s", key[0])
        return True, entry[1]

    def store(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic(), value)

    def invalidate(self, scope: str) -> int:
        """Drop entries whose URL is *scope* or lies below it. Returns how many went."""
        with self._lock:
            stale = [k for k in self._entries if k[0] == scope or k[0].startswith(f"{scope}/")]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Invalidated %d cached response(s) under %s", len(stale), scope)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


responses = ResponseCache()

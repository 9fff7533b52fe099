"""TTL cache for dictionary similarity lookups.

Keys are derived from the organization id and a hash of the normalized
text, so resubmitting identical text inside the TTL is a cache hit.
Expired entries are evicted lazily when read.
"""

import hashlib
import re
import threading
import time
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """NFKC-fold, trim and collapse whitespace."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFKC", text)).strip()


def text_hash(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def similarity_key(organization_id: UUID | str, text: str) -> str:
    return f"similar:{organization_id}:{text_hash(text)}"


def organization_prefix(organization_id: UUID | str) -> str:
    return f"similar:{organization_id}:"


def embedding_key(text: str) -> str:
    return f"emb:{text_hash(text)}"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class TTLCache(Generic[T]):
    """In-memory key/value store with per-entry TTL."""

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(now):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=self._clock(), ttl=ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``; returns how many were removed."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            LOGGER.info("Cache entries invalidated", extra={"prefix": prefix, "count": len(doomed)})
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"size": len(self._entries), "hits": self._hits, "misses": self._misses}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

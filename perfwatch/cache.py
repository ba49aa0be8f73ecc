"""
In-memory result caching for perfwatch.

Usage:
    from perfwatch.cache import TTLCache, canonical_params_key, make_cache_key

    cache = TTLCache(maxsize=256, ttl_seconds=600)
    key = make_cache_key("fractal", canonical_params_key({"zoom": 1.0, "w": 800}))
    cache.set(key, response)
    result = cache.get(key)  # None once expired

Expiry is lazy (checked on read) plus ``sweep()``, which the client calls
periodically to drop entries nobody reads again.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


class TTLCache(Generic[T]):
    """LRU cache whose entries also expire ``ttl_seconds`` after being stored."""

    def __init__(
        self,
        maxsize: int = 256,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def _expired(self, entry: CacheEntry[T], now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    def get(self, key: str) -> Optional[T]:
        """Get a value if present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
                self._evictions += 1

    def age(self, key: str) -> Optional[float]:
        """Seconds since ``key`` was stored, or None if absent."""
        with self._lock:
            entry = self._entries.get(key)
            return None if entry is None else self._clock() - entry.stored_at

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            doomed = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in doomed:
                del self._entries[key]
            self._expirations += len(doomed)
        if doomed:
            logger.debug("Swept %d expired cache entries", len(doomed))
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "maxsize": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }


# =============================================================================
# Cache Key Utilities
# =============================================================================


def _quantize(value: Any, precision: int) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        value = float(value)
        if not math.isfinite(value):
            return repr(value)
        rounded = round(value, precision)
        # Avoid "-0.0" and "0.0" landing on different keys
        return 0.0 if rounded == 0 else rounded
    if isinstance(value, Mapping):
        return {str(k): _quantize(v, precision) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_quantize(v, precision) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), (str, int)):
        return value.value
    return value


def canonical_params_key(params: Mapping[str, Any], precision: int = 10) -> str:
    """Deterministic key for a parameter set.

    Numbers are converted to float and rounded to ``precision`` decimal
    places, so ``1`` and ``1.0`` share a key and values that differ only by
    floating-point noise map to the same key. Keys are sorted, so
    argument order does not matter.

    Example:
        >>> canonical_params_key({"z": 1.00000000000004, "cx": -0.5})
        '{"cx":-0.5,"z":1.0}'
    """
    return json.dumps(
        _quantize(dict(params), precision),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def make_cache_key(*parts: str, separator: str = ":", max_length: int = 250) -> str:
    """Generate a namespaced cache key from multiple parts.

    Keys longer than ``max_length`` keep their first part as a readable prefix
    and hash the rest.

    Example:
        >>> make_cache_key("fractal", "mandelbrot", '{"z":1.0}')
        'fractal:mandelbrot:{"z":1.0}'
    """
    clean_parts = [str(p).strip() for p in parts if p is not None and str(p).strip()]
    if not clean_parts:
        raise ValueError("At least one non-empty cache key part is required")

    clean_parts = [p.replace(" ", "_").replace("\n", "_") for p in clean_parts]
    key = separator.join(clean_parts)

    if len(key) > max_length:
        prefix = clean_parts[0][:50]
        key = f"{prefix}{separator}hash_{make_content_hash(key, 32)}"

    return key


def make_content_hash(content: str, length: int = 16) -> str:
    """Short SHA-256 hex digest for content-based keys (8 to 64 chars)."""
    if length < 8:
        raise ValueError("Hash length must be at least 8 for reasonable collision resistance")
    return hashlib.sha256(content.encode()).hexdigest()[: min(length, 64)]


__all__ = [
    "TTLCache",
    "canonical_params_key",
    "make_cache_key",
    "make_content_hash",
]

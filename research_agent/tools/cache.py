"""
In-process result caches for tools.

Each named cache is a bounded LRU with a per-entry time-to-live. Caches
are process-wide and shared by every tool instance; `clear_caches` drops
them all (tests use it for isolation).
"""

from __future__ import annotations

import functools
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# name -> (max entries, ttl seconds)
CACHE_CONFIGS: Dict[str, Tuple[int, float]] = {
    "search_results": (100, 15 * 60),
    "fetch_results": (100, 15 * 60),
    "analysis_results": (50, 30 * 60),
    "bibliography_data": (200, 60 * 60),
    "journal_matches": (100, 24 * 60 * 60),
    "latex_compilation": (20, 10 * 60),
}

_MISSING = object()


class TTLCache:
    """LRU cache whose entries also expire `ttl_seconds` after being stored."""

    def __init__(
        self,
        max_entries: int = 100,
        ttl_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        # Blocking tools run in worker threads.
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = (self._clock() + self.ttl_seconds, value)
            self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


_caches: Dict[str, TTLCache] = {}


def get_cache(name: str) -> TTLCache:
    cache = _caches.get(name)
    if cache is None:
        if name not in CACHE_CONFIGS:
            raise KeyError(f"Unknown cache '{name}'. Known caches: {', '.join(CACHE_CONFIGS)}")
        max_entries, ttl = CACHE_CONFIGS[name]
        cache = _caches[name] = TTLCache(max_entries, ttl)
    return cache


def clear_caches() -> None:
    for cache in _caches.values():
        cache.clear()
    _caches.clear()


def cache_key(prefix: str, *args: Any, **kwargs: Any) -> str:
    payload = json.dumps([args, kwargs], sort_keys=True, default=str)
    return f"{prefix}:{payload}"


def cached(
    cache_name: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Cache the result of an async function in the named cache.

    The key is the function's qualified name plus its JSON-encoded
    arguments. `None` results and exceptions are never cached.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            cache = get_cache(cache_name)
            key = cache_key(func.__qualname__, *args, **kwargs)
            hit = cache.get(key, _MISSING)
            if hit is not _MISSING:
                logger.debug("cache hit for %s", func.__qualname__)
                return hit
            result = await func(*args, **kwargs)
            if result is not None:
                cache.set(key, result)
            return result

        return wrapper

    return decorator

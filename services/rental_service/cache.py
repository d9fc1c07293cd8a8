from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Hashable, Tuple
import logging

from clock import ClockSource

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0


class TTLCache:
    """Fixed time-to-live cache driven by an injected clock.

    Writers must call ``invalidate`` or ``clear`` for every key their change
    can affect; entries are otherwise served until their TTL runs out.
    """

    def __init__(self, ttl: float, clock: ClockSource, name: str = "default"):
        self.ttl = ttl
        self.clock = clock
        self.name = name
        self.stats = CacheStats()
        self._entries: Dict[Hashable, Tuple[datetime, Any]] = {}
        self._lock = Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                stored_at, value = entry
                if (self.clock.now() - stored_at).total_seconds() < self.ttl:
                    self.stats.hits += 1
                    return value
                self._entries.pop(key, None)
            self.stats.misses += 1
            return default

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self.clock.now(), value)

    def get_or_set(self, key: Hashable, factory) -> Any:
        # factory runs unlocked; concurrent misses may both load
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            if self._entries.pop(key, None) is not None:
                self.stats.invalidations += 1

    def clear(self) -> None:
        with self._lock:
            if self._entries:
                self.stats.invalidations += len(self._entries)
                logger.debug(f"Cache {self.name} cleared ({len(self._entries)} entries)")
            self._entries.clear()

    def get_state(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "ttl": self.ttl,
                "size": len(self._entries),
                "hits": self.stats.hits,
                "misses": self.stats.misses,
                "invalidations": self.stats.invalidations,
            }

"""
Cached per-day rate.

The rate lives in the settings table under Config.RATE_SETTING_KEY. Reads go
through a small read-through cache:
  - get_or_load() returns the cached value, or calls the loader on a miss
  - entries expire after Config.RATE_CACHE_TTL_SECONDS
  - a rate-setting write refreshes (numeric value) or invalidates the entry

The cache is the only state shared between concurrent state-machine runs, so
fill and invalidate happen under a lock. Two concurrent fills are allowed; the
last one wins.
"""
import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import Config
from app.services import store

logger = logging.getLogger(__name__)


class RateCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[float] = None
        self._expires_at = 0.0
        self._generation = 0

    def _fresh(self) -> bool:
        return self._value is not None and self._clock() < self._expires_at

    def get_or_load(self, loader: Callable[[], float]) -> float:
        with self._lock:
            if self._fresh():
                return self._value
            generation = self._generation
        # Load outside the lock so a slow settings read never blocks other readers.
        value = loader()
        with self._lock:
            # An invalidate/refresh that landed while loading wins over this fill.
            if self._generation == generation:
                self._store(value)
        return value

    def _store(self, value: float) -> None:
        self._value = value
        self._expires_at = self._clock() + self.ttl_seconds

    def refresh(self, value: float) -> None:
        with self._lock:
            self._generation += 1
            self._store(value)

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._value = None
            self._expires_at = 0.0


rate_cache = RateCache(ttl_seconds=Config.RATE_CACHE_TTL_SECONDS)


def get_rate_per_day(db: Session) -> float:
    return rate_cache.get_or_load(lambda: store.read_rate(db))


def on_rate_change(value) -> None:
    """Write notification on the rate setting."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        logger.info("Rate per day changed to %s", value)
        rate_cache.refresh(float(value))
    else:
        logger.info("Rate per day cleared; cache invalidated")
        rate_cache.invalidate()

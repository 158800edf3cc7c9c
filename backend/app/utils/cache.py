"""
In-process TTL cache for quota snapshots
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from app.config import get_settings


@dataclass
class QuotaSnapshot:
    """Read-only copy of a quota row"""
    service: str
    used: int
    limit: int
    last_reset: datetime


class QuotaCache:
    """
    Short-lived cache in front of the quota table.

    Only reads go through it. Enforcement always hits the store, so a stale
    entry can at worst let a request reach the atomic increment, which then
    refuses it.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, QuotaSnapshot]] = {}

    def get(self, service: str) -> Optional[QuotaSnapshot]:
        entry = self._entries.get(service)
        if entry is None:
            return None
        stored_at, snapshot = entry
        if self._clock() - stored_at > self.ttl:
            del self._entries[service]
            return None
        return snapshot

    def set(self, service: str, snapshot: QuotaSnapshot) -> None:
        self._entries[service] = (self._clock(), snapshot)

    def invalidate(self, service: Optional[str] = None) -> None:
        if service is None:
            self._entries.clear()
        else:
            self._entries.pop(service, None)


quota_cache = QuotaCache(ttl=get_settings().QUOTA_CACHE_TTL)

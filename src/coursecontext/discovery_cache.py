"""Per-course store of CourseContentIndex values with a clock-driven TTL.

One slot per course id. Staleness is checked on read against the index's own
``last_scanned`` timestamp, so there is no background expiry: a stale slot is
evicted the first time it is read (or by ``purge_expired``). The store is
also capacity-bounded, evicting the least recently used course first.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import timedelta

import structlog

from coursecontext.clock import Clock, utc_now
from coursecontext.models.discovery import CourseContentIndex

log = structlog.get_logger()


class DiscoveryCache:
    def __init__(
        self,
        ttl: timedelta = timedelta(hours=1),
        *,
        clock: Clock = utc_now,
        max_entries: int = 256,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._slots: OrderedDict[str, CourseContentIndex] = OrderedDict()

    def _is_fresh(self, index: CourseContentIndex) -> bool:
        # Inclusive: an index exactly ttl old is still served
        return self._clock() - index.last_scanned <= self.ttl

    def get(self, course_id: str) -> CourseContentIndex | None:
        index = self._slots.get(course_id)
        if index is None:
            return None
        if not self._is_fresh(index):
            del self._slots[course_id]
            log.debug("discovery_cache_expired", course_id=course_id)
            return None
        self._slots.move_to_end(course_id)
        return index

    def set(self, course_id: str, index: CourseContentIndex) -> None:
        self._slots[course_id] = index
        self._slots.move_to_end(course_id)
        while len(self._slots) > self.max_entries:
            evicted, _ = self._slots.popitem(last=False)
            log.debug("discovery_cache_evicted", course_id=evicted)

    def clear(self, course_id: str | None = None) -> None:
        if course_id is None:
            self._slots.clear()
        else:
            self._slots.pop(course_id, None)
        log.info("discovery_cache_cleared", course_id=course_id)

    def age(self, course_id: str) -> timedelta | None:
        """Age of a fresh index, or None when there is none."""
        index = self.get(course_id)
        if index is None:
            return None
        return self._clock() - index.last_scanned

    def purge_expired(self) -> int:
        stale = [cid for cid, index in self._slots.items() if not self._is_fresh(index)]
        for cid in stale:
            del self._slots[cid]
        if stale:
            log.info("discovery_cache_purged", removed=len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, course_id: object) -> bool:
        index = self._slots.get(course_id) if isinstance(course_id, str) else None
        return index is not None and self._is_fresh(index)

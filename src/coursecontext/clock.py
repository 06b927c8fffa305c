"""Injectable wall clock.

Caches and the extractor take a ``Clock`` instead of calling
``datetime.now`` directly so TTL boundaries can be tested exactly.
Durations reported in results use the monotonic counter instead.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def ms_since(started: float) -> int:
    """Milliseconds elapsed since a ``time.perf_counter()`` reading."""
    return int((time.perf_counter() - started) * 1000)

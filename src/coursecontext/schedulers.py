"""Background scheduler coroutine for cache sweeps."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from coursecontext.state import AppState

log = structlog.get_logger()


def sweep_caches(state: AppState) -> tuple[int, int]:
    """Drop expired file-cache entries and stale course indexes."""
    files_removed = state.file_cache.cleanup_expired()
    courses_removed = state.discovery_cache.purge_expired()
    log.info("cache_sweep_complete", files_removed=files_removed, courses_removed=courses_removed)
    return files_removed, courses_removed


async def run_cache_sweep_scheduler(state: AppState) -> None:
    """Sweep at startup and (HTTP mode) on the configured interval."""
    interval_minutes = state.settings.file_cache.cleanup_interval_minutes

    # Both transports: run at startup.
    sweep_caches(state)

    if state.settings.server.transport != "http":
        return

    # HTTP long-running mode: repeat on the configured interval.
    while True:
        await asyncio.sleep(interval_minutes * 60)
        sweep_caches(state)

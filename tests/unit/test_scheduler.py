"""Unit tests for the cache sweep scheduler in schedulers.py.

The loop is driven by patching asyncio.sleep; each fake sleep records its
duration and cancels the loop when the test has seen enough iterations.
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import timedelta
from unittest.mock import patch

import pytest

from coursecontext.config import Settings
from coursecontext.models.discovery import CourseContentIndex, IndexMetadata
from coursecontext.schedulers import run_cache_sweep_scheduler, sweep_caches
from coursecontext.state import AppState


def _seed(state: AppState, clock) -> None:
    state.file_cache.set("old|v1|1|markdown", "old content")
    state.discovery_cache.set(
        "101",
        CourseContentIndex(
            course_id="101",
            last_scanned=clock(),
            metadata=IndexMetadata(content_scanned=True),
        ),
    )


class TestSweepCaches:
    def test_removes_only_expired(self, app_state: AppState, clock) -> None:
        _seed(app_state, clock)
        clock.advance(hours=2)
        app_state.file_cache.set("new|v1|1|markdown", "new content")

        assert sweep_caches(app_state) == (0, 1)
        assert len(app_state.file_cache) == 2
        assert len(app_state.discovery_cache) == 0

    def test_file_entries_expire_after_ttl(self, app_state: AppState, clock) -> None:
        _seed(app_state, clock)
        clock.advance(hours=25)
        assert sweep_caches(app_state) == (1, 1)
        assert len(app_state.file_cache) == 0

    def test_nothing_to_do(self, app_state: AppState) -> None:
        assert sweep_caches(app_state) == (0, 0)


class TestSchedulerStdioMode:
    """stdio mode: sweeps once at startup and returns."""

    async def test_stdio_sweeps_once(self, app_state: AppState, clock) -> None:
        _seed(app_state, clock)
        clock.advance(days=2)

        with patch("asyncio.sleep") as mock_sleep:
            await run_cache_sweep_scheduler(app_state)

        mock_sleep.assert_not_called()
        assert len(app_state.file_cache) == 0


class TestSchedulerHttpMode:
    """HTTP mode: sweeps at startup, then on the configured interval."""

    async def test_sleeps_for_interval_between_sweeps(self, app_state: AppState) -> None:
        settings = Settings(
            server={"transport": "http"}, file_cache={"cleanup_interval_minutes": 15}
        )
        state = dataclasses.replace(app_state, settings=settings)
        sleep_durations: list[float] = []

        async def fake_sleep(duration: float) -> None:
            sleep_durations.append(duration)
            if len(sleep_durations) == 2:
                raise asyncio.CancelledError

        with (
            patch("coursecontext.schedulers.sweep_caches", wraps=sweep_caches) as sweep,
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_cache_sweep_scheduler(state)

        assert sleep_durations == [15 * 60, 15 * 60]
        # Startup sweep plus one per completed sleep
        assert sweep.call_count == 2

    async def test_expired_entries_swept_on_later_iteration(
        self, app_state: AppState, clock
    ) -> None:
        state = dataclasses.replace(app_state, settings=Settings(server={"transport": "http"}))
        _seed(state, clock)
        ttl = state.file_cache.config.ttl

        async def fake_sleep(duration: float) -> None:
            if len(state.file_cache) == 0:
                raise asyncio.CancelledError
            clock.advance(seconds=ttl.total_seconds() + timedelta(minutes=1).total_seconds())

        with (
            patch("asyncio.sleep", side_effect=fake_sleep),
            pytest.raises(asyncio.CancelledError),
        ):
            await run_cache_sweep_scheduler(state)

        assert len(state.file_cache) == 0
        assert len(state.discovery_cache) == 0

"""Shared test fixtures for the coursecontext test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from coursecontext.config import SearchSettings, Settings
from coursecontext.discovery_cache import DiscoveryCache
from coursecontext.documents import PlainTextParser
from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.extraction import ContentExtractor
from coursecontext.file_cache import FileCacheConfig, FileContentCache
from coursecontext.models.discovery import ProbeResponse
from coursecontext.prober import EndpointProber, course_api_path
from coursecontext.search import SmartSearch
from coursecontext.state import AppState

BASE_URL = "https://canvas.test"
COURSE_ID = "101"


class FakeClock:
    """Settable wall clock. Call it like ``utc_now``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _missing(what: str) -> CourseContextError:
    return CourseContextError(
        code=ErrorCode.PAGE_NOT_FOUND,
        message=f"HTTP 404 fetching {what}",
        suggestion="",
        status=404,
    )


class FakeCanvasClient:
    """In-memory CanvasClientProtocol.

    Probes default to 200. Every other lookup defaults to 404 except list
    endpoints, which default to an empty list. Stored exceptions are raised.
    """

    def __init__(self, base_url: str = BASE_URL) -> None:
        self.base_url = base_url
        self.probes: dict[str, ProbeResponse] = {}
        self.json: dict[str, Any] = {}
        self.lists: dict[str, Any] = {}
        self.markup: dict[str, Any] = {}
        self.downloads: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []
        self.probe_delay = 0.0

    def restrict(self, name: str, status: int = 403, course_id: str = COURSE_ID) -> None:
        path = {"discussions": "/discussion_topics"}.get(name, f"/{name}")
        self.probes[course_api_path(course_id, path)] = ProbeResponse(
            ok=False, status=status, error="Forbidden" if status == 403 else "Not Found"
        )

    def calls_to(self, kind: str) -> list[str]:
        return [target for k, target in self.calls if k == kind]

    @staticmethod
    def _answer(value: Any) -> Any:
        if isinstance(value, BaseException):
            raise value
        return value

    async def probe(self, path: str) -> ProbeResponse:
        self.calls.append(("probe", path))
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        return self.probes.get(path, ProbeResponse(ok=True, status=200, body=[]))

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        self.calls.append(("json", path))
        if path not in self.json:
            raise _missing(path)
        return self._answer(self.json[path])

    async def get_paginated(
        self, path: str, params: dict[str, Any] | None = None, *, max_pages: int = 10
    ) -> list[Any]:
        self.calls.append(("list", path))
        return self._answer(self.lists.get(path, []))

    async def fetch_markup(self, url: str) -> str:
        self.calls.append(("markup", url))
        if url not in self.markup:
            raise _missing(url)
        return self._answer(self.markup[url])

    async def download(self, url: str) -> bytes:
        self.calls.append(("download", url))
        if url not in self.downloads:
            raise _missing(url)
        return self._answer(self.downloads[url])


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def canvas() -> FakeCanvasClient:
    return FakeCanvasClient()


@pytest.fixture()
def discovery_cache(clock: FakeClock) -> DiscoveryCache:
    return DiscoveryCache(timedelta(hours=1), clock=clock)


@pytest.fixture()
def prober(
    canvas: FakeCanvasClient, discovery_cache: DiscoveryCache, clock: FakeClock
) -> EndpointProber:
    return EndpointProber(canvas, discovery_cache, timeout_seconds=1.0, clock=clock)


@pytest.fixture()
def extractor(
    canvas: FakeCanvasClient,
    prober: EndpointProber,
    discovery_cache: DiscoveryCache,
    clock: FakeClock,
) -> ContentExtractor:
    return ContentExtractor(canvas, prober, discovery_cache, clock=clock)


@pytest.fixture()
def file_cache(clock: FakeClock) -> FileContentCache:
    return FileContentCache(FileCacheConfig(preview_max_chars=40), clock=clock)


@pytest.fixture()
def app_state(
    canvas: FakeCanvasClient,
    discovery_cache: DiscoveryCache,
    file_cache: FileContentCache,
    prober: EndpointProber,
    extractor: ContentExtractor,
    clock: FakeClock,
) -> AppState:
    """Fully wired AppState over the in-memory platform client."""
    settings = Settings(server={"transport": "stdio"}, canvas={"base_url": BASE_URL})
    return AppState(
        settings=settings,
        client=canvas,
        discovery_cache=discovery_cache,
        file_cache=file_cache,
        prober=prober,
        extractor=extractor,
        search=SmartSearch(
            extractor, settings=SearchSettings(use_small_model=False), clock=clock
        ),
        document_parser=PlainTextParser(),
    )

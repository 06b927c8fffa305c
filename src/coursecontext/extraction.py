"""Content extraction orchestrator.

Builds a CourseContentIndex for a course by combining structured API
listings, for the endpoints the prober found available, with markup scraping
of the web interface, for the ones it found restricted. Every source is
fetched independently: a source that fails is recorded as a non-fatal error
and the others carry on. Extraction only fails when no source completed.

Concurrent extractions of the same course share one run.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from coursecontext import markup
from coursecontext.clock import Clock, ms_since, utc_now
from coursecontext.config import DiscoverySettings
from coursecontext.errors import CourseContextError
from coursecontext.models.discovery import (
    ApiRestrictions,
    ContentCounts,
    CourseContentIndex,
    DiscoveredFile,
    DiscoveredLink,
    DiscoveredPage,
    DiscoveryMethod,
    ExtractionResult,
    ExtractionStats,
    ExtractionTiming,
    FileLookup,
    IndexMetadata,
    ProbeReport,
)
from coursecontext.prober import (
    build_report,
    course_api_path,
    get_api_restriction_summary,
    get_suggested_fallbacks,
    is_api_available,
)
from coursecontext.singleflight import SingleFlight

if TYPE_CHECKING:
    from coursecontext.discovery_cache import DiscoveryCache
    from coursecontext.prober import EndpointProber
    from coursecontext.protocols import CanvasClientProtocol

log = structlog.get_logger()

# Endpoints whose availability decides the discovery method
RELEVANT_ENDPOINTS = ("pages", "files", "modules")

# Page slugs commonly used for course material, tried when the pages API is restricted
COMMON_PAGE_SLUGS = (
    "readings-class-notes-and-videos",
    "course-materials",
    "lecture-slides",
    "lecture-notes",
    "resources",
    "course-resources",
    "syllabus",
    "schedule",
    "course-schedule",
    "materials",
    "notes",
    "slides",
    "handouts",
    "documents",
)

_WS_RE = re.compile(r"\s+")

# Raised when a response body does not have the shape a source expects
_PARSE_ERRORS = (AttributeError, TypeError, KeyError)


@dataclass
class _Found:
    """What one source produced."""

    pages: list[DiscoveredPage] = field(default_factory=list)
    files: list[DiscoveredFile] = field(default_factory=list)
    links: list[DiscoveredLink] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def absorb(self, other: _Found) -> None:
        self.pages.extend(other.pages)
        self.files.extend(other.files)
        self.links.extend(other.links)
        self.texts.extend(other.texts)
        self.errors.extend(other.errors)


@dataclass
class _Surface:
    label: str
    url: str
    guessed: bool = False


def choose_method(report: ProbeReport) -> DiscoveryMethod:
    relevant = [name for name in RELEVANT_ENDPOINTS if name in report.availability.endpoints]
    available = [name for name in relevant if is_api_available(report, name)]
    if relevant and len(available) == len(relevant):
        return "api"
    if not available:
        return "web"
    return "hybrid"


def merge_files(
    existing: Iterable[DiscoveredFile], incoming: Iterable[DiscoveredFile]
) -> list[DiscoveredFile]:
    """Merge file records by id.

    The first record seen for an id is kept. Later records only add their
    source labels and fill fields that are still empty.
    """
    merged: dict[str, DiscoveredFile] = {}
    for record in [*existing, *incoming]:
        current = merged.get(record.file_id)
        if current is None:
            merged[record.file_id] = record.model_copy(deep=True)
            continue
        for label in record.sources:
            if label not in current.sources:
                current.sources.append(label)
        if not current.url and record.url:
            current.url = record.url
        if current.content_type is None:
            current.content_type = record.content_type
        if current.size is None:
            current.size = record.size
        if current.updated_at is None:
            current.updated_at = record.updated_at
    return list(merged.values())


def _records(body: Any) -> list[Mapping[str, Any]]:
    """Object records of a JSON array body; anything else is skipped."""
    if not isinstance(body, list):
        if body is not None:
            log.debug("unexpected_listing_shape", type=type(body).__name__)
        return []
    records = [item for item in body if isinstance(item, Mapping)]
    if len(records) < len(body):
        log.debug("listing_items_skipped", skipped=len(body) - len(records))
    return records


def _first_by_url(records: Iterable[Any]) -> list[Any]:
    seen: dict[str, Any] = {}
    for record in records:
        seen.setdefault(record.url, record)
    return list(seen.values())


def merge_pages(
    existing: Iterable[DiscoveredPage], incoming: Iterable[DiscoveredPage]
) -> list[DiscoveredPage]:
    return _first_by_url([*existing, *incoming])


def merge_links(
    existing: Iterable[DiscoveredLink], incoming: Iterable[DiscoveredLink]
) -> list[DiscoveredLink]:
    return _first_by_url([*existing, *incoming])


def build_searchable_content(
    pages: Iterable[DiscoveredPage],
    files: Iterable[DiscoveredFile],
    links: Iterable[DiscoveredLink],
    texts: Iterable[str] = (),
) -> str:
    parts = [
        *(p.name for p in pages),
        *texts,
        *(f.name for f in files),
        *(link.title for link in links),
    ]
    return _WS_RE.sub(" ", " ".join(parts).lower()).strip()


def restrictions_for(report: ProbeReport) -> ApiRestrictions:
    return ApiRestrictions(
        summary=get_api_restriction_summary(report),
        fallbacks=get_suggested_fallbacks(report),
    )


class ContentExtractor:
    def __init__(
        self,
        client: CanvasClientProtocol,
        prober: EndpointProber,
        cache: DiscoveryCache,
        *,
        settings: DiscoverySettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._client = client
        self._prober = prober
        self._cache = cache
        self._settings = settings or DiscoverySettings()
        self._clock = clock
        self._flight: SingleFlight[ExtractionResult] = SingleFlight()

    @property
    def cache(self) -> DiscoveryCache:
        return self._cache

    async def extract(self, course_id: str, *, force_refresh: bool = False) -> ExtractionResult:
        started = time.perf_counter()
        if not force_refresh:
            cached = self._cache.get(course_id)
            if cached is not None and cached.metadata.content_scanned:
                log.info("extraction_cache_hit", course_id=course_id)
                restrictions = None
                if cached.api_availability is not None:
                    restrictions = restrictions_for(
                        build_report(cached.api_availability, 0, from_cache=True)
                    )
                return ExtractionResult(
                    success=True,
                    method="cached",
                    course_index=cached,
                    timing=ExtractionTiming(total_ms=ms_since(started)),
                    api_restrictions=restrictions,
                )

        # A forced run never joins a non-forced one, which may reuse a cached probe
        return await self._flight.run(
            (course_id, force_refresh), lambda: self._run(course_id, force_refresh=force_refresh)
        )

    async def _run(self, course_id: str, *, force_refresh: bool) -> ExtractionResult:
        started = time.perf_counter()
        timing = ExtractionTiming()
        log.info("extraction_started", course_id=course_id, force_refresh=force_refresh)

        report = await self._prober.probe(course_id, use_cache=not force_refresh)
        timing.api_test_ms = ms_since(started)
        method = choose_method(report)
        restrictions = restrictions_for(report)
        log.info("extraction_method_chosen", course_id=course_id, method=method)

        # Sources are gathered concurrently but merged in this fixed order so
        # API-sourced records win over scraped ones.
        completed = 0
        found = _Found()

        api_started = time.perf_counter()
        api_sources: list[tuple[str, Awaitable[_Found]]] = []
        if is_api_available(report, "pages"):
            api_sources.append(("pages", self._from_pages_api(course_id)))
        if is_api_available(report, "files"):
            api_sources.append(("files", self._from_files_api(course_id)))
        if is_api_available(report, "modules"):
            api_sources.append(("modules", self._from_modules_api(course_id)))
        done, partials = await self._collect(course_id, api_sources)
        completed += done
        for partial in partials:
            found.absorb(partial)
        timing.api_extraction_ms = ms_since(api_started)

        if method != "api" or self._settings.cross_check_web:
            web_started = time.perf_counter()
            done, partial = await self._from_web(course_id, report)
            completed += done
            found.absorb(partial)
            timing.web_discovery_ms = ms_since(web_started)

        files = merge_files([], found.files)
        pages = merge_pages([], found.pages)
        links = merge_links([], found.links)

        warnings: list[str] = []
        if method == "web":
            warnings.append("All content APIs restricted; index built from the web interface only")

        success = completed > 0
        index = CourseContentIndex(
            course_id=course_id,
            course_name=await self._course_name(course_id),
            last_scanned=self._clock(),
            api_availability=report.availability,
            pages=pages,
            files=files,
            links=links,
            searchable_content=build_searchable_content(pages, files, links, found.texts),
            metadata=IndexMetadata(
                total_files=len(files),
                total_pages=len(pages),
                total_links=len(links),
                has_restricted_apis=report.summary.has_restricted_apis,
                discovery_method=method,
                content_scanned=True,
            ),
        )

        if success:
            self._cache.set(course_id, index)
        else:
            found.errors.append("No content source could be read for this course")

        timing.total_ms = ms_since(started)
        log.info(
            "extraction_complete",
            course_id=course_id,
            success=success,
            method=method,
            files=len(files),
            pages=len(pages),
            links=len(links),
            errors=len(found.errors),
            duration_ms=timing.total_ms,
        )
        return ExtractionResult(
            success=success,
            method=method,
            course_index=index,
            timing=timing,
            api_restrictions=restrictions,
            errors=found.errors,
            warnings=warnings,
        )

    async def _collect(
        self, course_id: str, sources: list[tuple[str, Awaitable[_Found]]]
    ) -> tuple[int, list[_Found]]:
        """Run sources concurrently. Returns (completed count, results in source order)."""
        outcomes = await asyncio.gather(*(coro for _, coro in sources), return_exceptions=True)
        completed = 0
        results: list[_Found] = []
        for (name, _), outcome in zip(sources, outcomes, strict=True):
            if isinstance(outcome, (CourseContextError, ValueError, TimeoutError)):
                log.warning(
                    "extraction_source_failed", course_id=course_id, source=name, error=str(outcome)
                )
                results.append(_Found(errors=[f"{name}: {outcome}"]))
            elif isinstance(outcome, _PARSE_ERRORS):
                log.warning(
                    "extraction_source_unparseable",
                    course_id=course_id,
                    source=name,
                    error=repr(outcome),
                )
                results.append(_Found(errors=[f"{name}: parse error"]))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                completed += 1
                results.append(outcome)
        return completed, results

    # ------------------------------------------------------------------
    # API sources
    # ------------------------------------------------------------------

    async def _from_pages_api(self, course_id: str) -> _Found:
        base = self._client.base_url
        listing = await self._client.get_paginated(
            course_api_path(course_id, "/pages"), max_pages=self._settings.max_api_pages
        )
        now = self._clock()
        found = _Found()
        for item in _records(listing):
            slug = item.get("url") or ""
            if not slug:
                continue
            found.pages.append(
                DiscoveredPage(
                    name=item.get("title") or slug,
                    url=item.get("html_url") or f"{base}/courses/{course_id}/pages/{slug}",
                    path=slug,
                    source="pages_api",
                    last_checked=now,
                )
            )

        semaphore = asyncio.Semaphore(self._settings.markup_concurrency)

        async def _body(page: DiscoveredPage) -> _Found:
            async with semaphore:
                data = await self._client.get_json(
                    course_api_path(course_id, f"/pages/{page.path}")
                )
            body = data.get("body") if isinstance(data, Mapping) else None
            return self._scan_markup(body if isinstance(body, str) else "", source=page.name)

        bodies = found.pages[: self._settings.max_pages]
        outcomes = await asyncio.gather(*(_body(p) for p in bodies), return_exceptions=True)
        for page, outcome in zip(bodies, outcomes, strict=True):
            if isinstance(outcome, (CourseContextError, ValueError)):
                log.debug("page_body_failed", page=page.path, error=str(outcome))
                found.errors.append(f"page '{page.name}': {outcome}")
            elif isinstance(outcome, _PARSE_ERRORS):
                log.debug("page_body_unparseable", page=page.path, error=repr(outcome))
                found.errors.append(f"page '{page.name}': parse error")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                found.absorb(outcome)
        return found

    async def _from_files_api(self, course_id: str) -> _Found:
        base = self._client.base_url
        listing = await self._client.get_paginated(
            course_api_path(course_id, "/files"), max_pages=self._settings.max_api_pages
        )
        found = _Found()
        for item in _records(listing):
            if item.get("id") is None:
                continue
            file_id = str(item["id"])
            found.files.append(
                DiscoveredFile(
                    file_id=file_id,
                    name=item.get("display_name") or item.get("filename") or f"File {file_id}",
                    url=item.get("url") or f"{base}/courses/{course_id}/files/{file_id}",
                    sources=["files_api"],
                    content_type=item.get("content-type"),
                    size=item.get("size"),
                    updated_at=item.get("updated_at"),
                )
            )
        return found

    async def _from_modules_api(self, course_id: str) -> _Found:
        base = self._client.base_url
        listing = await self._client.get_paginated(
            course_api_path(course_id, "/modules"),
            {"include[]": "items"},
            max_pages=self._settings.max_api_pages,
        )
        now = self._clock()
        found = _Found()
        for module in _records(listing):
            module_name = module.get("name") or "Module"
            source = f"module:{module_name}"
            found.texts.append(module_name)
            for item in _records(module.get("items")):
                title = item.get("title") or ""
                match item.get("type"):
                    case "File" if item.get("content_id") is not None:
                        file_id = str(item["content_id"])
                        found.files.append(
                            DiscoveredFile(
                                file_id=file_id,
                                name=title or f"File {file_id}",
                                url=f"{base}/courses/{course_id}/files/{file_id}",
                                sources=[source],
                            )
                        )
                    case "Page" if item.get("page_url"):
                        found.pages.append(
                            DiscoveredPage(
                                name=title or item["page_url"],
                                url=item.get("html_url")
                                or f"{base}/courses/{course_id}/pages/{item['page_url']}",
                                path=item["page_url"],
                                source=source,
                                last_checked=now,
                            )
                        )
                    case "ExternalUrl" if item.get("external_url"):
                        kind, internal = markup.classify_link(item["external_url"], base)
                        found.links.append(
                            DiscoveredLink(
                                title=title or item["external_url"],
                                url=item["external_url"],
                                kind=kind,
                                internal=internal,
                                source=source,
                            )
                        )
                    case _:
                        if title:
                            found.texts.append(title)
        return found

    # ------------------------------------------------------------------
    # Web interface
    # ------------------------------------------------------------------

    def _scan_markup(self, html: str, *, source: str) -> _Found:
        base = self._client.base_url
        return _Found(
            files=markup.extract_file_refs(html, base, source=source),
            links=markup.extract_links(html, base, source=source),
            texts=[markup.extract_text(html)],
        )

    async def _surfaces(self, course_id: str, report: ProbeReport) -> tuple[list[_Surface], _Found]:
        course_path = f"/courses/{course_id}"
        surfaces = [_Surface("Course Home", course_path)]
        if not is_api_available(report, "modules"):
            surfaces.append(_Surface("Modules", f"{course_path}/modules"))
        if not is_api_available(report, "files"):
            surfaces.append(_Surface("Files", f"{course_path}/files"))

        extra = _Found()
        if is_api_available(report, "tabs"):
            try:
                tabs = await self._client.get_json(course_api_path(course_id, "/tabs"))
            except CourseContextError as exc:
                log.warning("tabs_fetch_failed", course_id=course_id, error=exc.message)
                extra.errors.append(f"tabs: {exc.message}")
            else:
                known = {s.url for s in surfaces}
                for tab in _records(tabs):
                    html_url = tab.get("html_url") or ""
                    if not html_url or tab.get("hidden") or html_url in known:
                        continue
                    surfaces.append(_Surface(tab.get("label") or html_url, html_url))
                    known.add(html_url)

        if not is_api_available(report, "pages"):
            surfaces.extend(
                _Surface(slug, f"{course_path}/pages/{slug}", guessed=True)
                for slug in COMMON_PAGE_SLUGS[: self._settings.max_pages]
            )
        return surfaces, extra

    async def _from_web(self, course_id: str, report: ProbeReport) -> tuple[int, _Found]:
        surfaces, found = await self._surfaces(course_id, report)
        semaphore = asyncio.Semaphore(self._settings.markup_concurrency)

        async def _fetch(surface: _Surface) -> str:
            async with semaphore:
                return await self._client.fetch_markup(surface.url)

        outcomes = await asyncio.gather(*(_fetch(s) for s in surfaces), return_exceptions=True)
        completed = 0
        now = self._clock()
        for surface, outcome in zip(surfaces, outcomes, strict=True):
            if isinstance(outcome, CourseContextError):
                if surface.guessed and outcome.status == 404:
                    log.debug("guessed_page_missing", course_id=course_id, slug=surface.label)
                    continue
                log.warning(
                    "web_surface_failed",
                    course_id=course_id,
                    surface=surface.label,
                    error=outcome.message,
                )
                found.errors.append(f"{surface.label}: {outcome.message}")
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            completed += 1
            # A guessed slug is only a URL; the page's own title names it better
            name = (markup.extract_title(outcome) if surface.guessed else None) or surface.label
            found.pages.append(
                DiscoveredPage(
                    name=name,
                    url=self._absolute(surface.url),
                    path=surface.url,
                    source="web",
                    last_checked=now,
                )
            )
            found.absorb(self._scan_markup(outcome, source=surface.label))

        log.info(
            "web_discovery_complete",
            course_id=course_id,
            surfaces=len(surfaces),
            read=completed,
        )
        return completed, found

    def _absolute(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._client.base_url}{url}"

    async def _course_name(self, course_id: str) -> str | None:
        try:
            course = await self._client.get_json(course_api_path(course_id))
        except CourseContextError as exc:
            log.debug("course_name_unavailable", course_id=course_id, error=exc.message)
            return None
        return (course or {}).get("name")

    # ------------------------------------------------------------------
    # Stats, lookup, maintenance
    # ------------------------------------------------------------------

    async def get_stats(self, course_id: str) -> ExtractionStats:
        cached = self._cache.get(course_id)
        if cached is not None and cached.metadata.content_scanned:
            age = self._clock() - cached.last_scanned
            return ExtractionStats(
                has_cache=True,
                cache_age_ms=int(age.total_seconds() * 1000),
                api_status="restricted" if cached.metadata.has_restricted_apis else "available",
                content_counts=ContentCounts(
                    pages=len(cached.pages), files=len(cached.files), links=len(cached.links)
                ),
                last_update=cached.last_scanned,
            )

        report = await self._prober.probe(course_id)
        if report.summary.total_endpoints == 0:
            status = "unknown"
        elif report.summary.has_restricted_apis:
            status = "restricted"
        else:
            status = "available"
        return ExtractionStats(has_cache=False, api_status=status)

    async def find_file(self, file_id: str, course_id: str | None = None) -> FileLookup:
        """Locate a file directly through the files API, then through course discovery."""
        try:
            data = await self._client.get_json(f"/api/v1/files/{file_id}")
        except CourseContextError as exc:
            log.debug("file_direct_lookup_failed", file_id=file_id, error=exc.message)
            direct_error = exc.message
        else:
            log.info("file_found", file_id=file_id, method="direct")
            return FileLookup(
                found=True,
                file_id=file_id,
                name=data.get("display_name") or data.get("filename"),
                url=data.get("url"),
                source="files_api",
                method="direct",
                version=data.get("updated_at") or data.get("modified_at"),
                size=data.get("size"),
            )

        if course_id is None:
            return FileLookup(found=False, file_id=file_id, method="direct", error=direct_error)

        extraction = await self.extract(course_id)
        for record in extraction.course_index.files:
            if record.file_id == file_id:
                log.info("file_found", file_id=file_id, method="discovery", source=record.source)
                return FileLookup(
                    found=True,
                    file_id=file_id,
                    name=record.name,
                    url=record.url,
                    source=record.source,
                    method="discovery",
                    version=record.updated_at.isoformat() if record.updated_at else None,
                    size=record.size,
                )

        log.warning("file_not_found", file_id=file_id, course_id=course_id)
        return FileLookup(
            found=False,
            file_id=file_id,
            method="discovery",
            error="File not found via API or discovery",
        )

    def clear(self, course_id: str | None = None) -> None:
        self._cache.clear(course_id)

"""Endpoint availability prober.

Courses can disable individual REST endpoints, so before discovery the
prober issues one bounded request per catalog endpoint and records which
ones answered. The advisory functions below turn a ProbeReport into a
human-readable summary and per-endpoint fallback strategies.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from coursecontext.clock import Clock, ms_since, utc_now
from coursecontext.models.discovery import (
    CourseAPIAvailability,
    CourseContentIndex,
    DiscoverySummary,
    EndpointProbeResult,
    EndpointSpec,
    FallbackSuggestion,
    IndexMetadata,
    ProbeReport,
    ProbeTiming,
)

if TYPE_CHECKING:
    from coursecontext.discovery_cache import DiscoveryCache
    from coursecontext.protocols import CanvasClientProtocol

log = structlog.get_logger()

ENDPOINT_CATALOG: tuple[EndpointSpec, ...] = (
    EndpointSpec(name="pages", path="/pages"),
    EndpointSpec(name="files", path="/files"),
    EndpointSpec(name="modules", path="/modules"),
    EndpointSpec(name="assignments", path="/assignments"),
    EndpointSpec(name="discussions", path="/discussion_topics"),
    EndpointSpec(name="announcements", path="/announcements"),
    EndpointSpec(name="tabs", path="/tabs"),
)


def course_api_path(course_id: str, path: str = "") -> str:
    return f"/api/v1/courses/{course_id}{path}"


class EndpointProber:
    def __init__(
        self,
        client: CanvasClientProtocol,
        cache: DiscoveryCache,
        *,
        catalog: Sequence[EndpointSpec] = ENDPOINT_CATALOG,
        timeout_seconds: float = 10.0,
        max_concurrency: int = 4,
        clock: Clock = utc_now,
    ) -> None:
        self._client = client
        self._cache = cache
        self.catalog = tuple(catalog)
        self._timeout = timeout_seconds
        self._max_concurrency = max_concurrency
        self._clock = clock

    async def probe(self, course_id: str, *, use_cache: bool = True) -> ProbeReport:
        started = time.perf_counter()

        if use_cache:
            cached = self._cache.get(course_id)
            if cached is not None and cached.api_availability is not None:
                log.debug("probe_cache_hit", course_id=course_id)
                return build_report(cached.api_availability, ms_since(started), from_cache=True)

        log.info("probe_started", course_id=course_id, endpoints=len(self.catalog))
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(spec: EndpointSpec) -> EndpointProbeResult:
            async with semaphore:
                return await self._probe_endpoint(course_id, spec)

        outcomes = await asyncio.gather(
            *(_bounded(spec) for spec in self.catalog), return_exceptions=True
        )

        endpoints: dict[str, EndpointProbeResult] = {}
        for spec, outcome in zip(self.catalog, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                log.warning("probe_endpoint_crashed", endpoint=spec.name, error=str(outcome))
                outcome = EndpointProbeResult(
                    name=spec.name,
                    path=spec.path,
                    available=False,
                    status=0,
                    error="Test failed",
                    message=str(outcome) or "Unknown error",
                )
            endpoints[spec.name] = outcome

        availability = CourseAPIAvailability(
            course_id=course_id, tested=self._clock(), endpoints=endpoints
        )
        if use_cache:
            self._remember(availability)

        report = build_report(availability, ms_since(started))
        log.info(
            "probe_complete",
            course_id=course_id,
            available=report.summary.available_endpoints,
            restricted=report.summary.restricted_endpoints,
            duration_ms=report.timing.total_ms,
        )
        return report

    async def _probe_endpoint(self, course_id: str, spec: EndpointSpec) -> EndpointProbeResult:
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.probe(course_api_path(course_id, spec.path)), self._timeout
            )
        except TimeoutError:
            log.debug("probe_endpoint_timeout", endpoint=spec.name)
            return EndpointProbeResult(
                name=spec.name,
                path=spec.path,
                available=False,
                status=0,
                error="Request timed out",
                message=f"No response within {self._timeout:g}s",
                response_time_ms=ms_since(started),
            )

        elapsed = ms_since(started)
        if response.ok:
            log.debug("probe_endpoint_available", endpoint=spec.name, status=response.status)
            return EndpointProbeResult(
                name=spec.name,
                path=spec.path,
                available=True,
                status=response.status,
                response_time_ms=elapsed,
            )

        message = response.body if isinstance(response.body, str) else response.error
        log.debug(
            "probe_endpoint_restricted",
            endpoint=spec.name,
            status=response.status,
            message=message,
        )
        return EndpointProbeResult(
            name=spec.name,
            path=spec.path,
            available=False,
            status=response.status,
            error=response.error,
            message=message,
            response_time_ms=elapsed,
        )

    def _remember(self, availability: CourseAPIAvailability) -> None:
        """Attach the availability to the course's index, creating a probe-only one if needed."""
        course_id = availability.course_id
        restricted = any(not e.available for e in availability.endpoints.values())
        existing = self._cache.get(course_id)

        if existing is not None and existing.metadata.content_scanned:
            metadata = existing.metadata.model_copy(update={"has_restricted_apis": restricted})
            index = existing.model_copy(
                update={"api_availability": availability, "metadata": metadata}
            )
        else:
            index = CourseContentIndex(
                course_id=course_id,
                course_name=existing.course_name if existing else None,
                last_scanned=availability.tested,
                api_availability=availability,
                metadata=IndexMetadata(has_restricted_apis=restricted, content_scanned=False),
            )
        self._cache.set(course_id, index)


def build_report(
    availability: CourseAPIAvailability, total_ms: int, *, from_cache: bool = False
) -> ProbeReport:
    endpoints = list(availability.endpoints.values())
    total = len(endpoints)
    available = sum(1 for e in endpoints if e.available)
    restricted = total - available
    average = sum(e.response_time_ms for e in endpoints) / total if total else 0.0

    summary = DiscoverySummary(
        total_endpoints=total,
        available_endpoints=available,
        restricted_endpoints=restricted,
        has_working_apis=available > 0,
        has_restricted_apis=restricted > 0,
        recommend_web_discovery=restricted > 0,
    )
    return ProbeReport(
        course_id=availability.course_id,
        availability=availability,
        summary=summary,
        timing=ProbeTiming(total_ms=total_ms, average_response_ms=round(average, 1)),
        from_cache=from_cache,
    )


def get_api_restriction_summary(report: ProbeReport) -> str:
    summary = report.summary
    total = summary.total_endpoints
    if summary.restricted_endpoints == 0:
        return f"All APIs available ({summary.available_endpoints}/{total})"
    if summary.available_endpoints == 0:
        return f"All APIs restricted (0/{total}) - Web discovery recommended"
    restricted = [e.name for e in report.availability.endpoints.values() if not e.available]
    return (
        f"Partial API access ({summary.available_endpoints}/{total} available). "
        f"Restricted: {', '.join(restricted)}"
    )


def is_api_available(report: ProbeReport, name: str) -> bool:
    endpoint = report.availability.endpoints.get(name)
    return endpoint is not None and endpoint.available


def _fallback_for(endpoint: EndpointProbeResult) -> FallbackSuggestion:
    match endpoint.name:
        case "pages":
            state = "disabled" if endpoint.status == 404 else "restricted"
            return FallbackSuggestion(
                api="pages",
                fallback="Web interface discovery",
                reason=f"Pages API {state} - try direct page URLs",
            )
        case "files":
            state = "unauthorized" if endpoint.status == 403 else "restricted"
            return FallbackSuggestion(
                api="files",
                fallback="Extract from page content",
                reason=f"Files API {state} - search for embedded file links",
            )
        case "modules":
            return FallbackSuggestion(
                api="modules",
                fallback="Course navigation parsing",
                reason="Modules API restricted - check course tabs/navigation",
            )
        case _:
            return FallbackSuggestion(
                api=endpoint.name,
                fallback="Web interface",
                reason=f"{endpoint.name} API restricted - try web discovery",
            )


def get_suggested_fallbacks(report: ProbeReport) -> list[FallbackSuggestion]:
    return [
        _fallback_for(endpoint)
        for endpoint in report.availability.endpoints.values()
        if not endpoint.available
    ]

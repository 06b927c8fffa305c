"""Smart search coordinator.

Ranks a course's discovered files, pages and links against a query. The
heuristic ranking uses the resolver's 0.0–1.0 similarity scale; when a
small-model reranker is available and there are more candidates than the
caller asked for, it replaces the ranking with its own scores, clamped to the
same scale. Classifier and reranker failures are logged and never fail the
search.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections.abc import Sequence
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import structlog

from coursecontext.clock import Clock, ms_since, utc_now
from coursecontext.config import SearchSettings
from coursecontext.errors import CourseContextError
from coursecontext.models.cache import ClearResult
from coursecontext.models.discovery import (
    CourseContentIndex,
    DiscoveredFile,
    DiscoveredLink,
    DiscoveredPage,
)
from coursecontext.models.search import (
    ApiStatus,
    Citation,
    CompactSearchResult,
    ContentOverview,
    ContentSummary,
    CourseInfo,
    FullSearchResult,
    Intent,
    OverviewFile,
    OverviewPage,
    RerankResult,
    ReturnMode,
    SearchBuckets,
    SearchCandidate,
    SearchMetadata,
)
from coursecontext.resolver import score_record

if TYPE_CHECKING:
    from coursecontext.extraction import ContentExtractor
    from coursecontext.protocols import (
        IntentClassifierProtocol,
        RerankerProtocol,
        SimilarityScorer,
    )

log = structlog.get_logger()

TRUNCATION_SUFFIX = "...[truncated]"

# Formats the document conversion service can turn into text
SUPPORTED_EXTENSIONS = frozenset(
    {
        # Documents
        "pdf", "doc", "docx", "docm", "dot", "dotm", "rtf", "txt",
        # Presentations
        "ppt", "pptx", "pptm", "pot", "potm", "potx",
        # Spreadsheets
        "xls", "xlsx", "xlsm", "xlsb", "csv",
        # Images
        "jpg", "jpeg", "png", "gif", "bmp", "svg", "tiff", "webp",
        # Audio
        "mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm",
    }
)  # fmt: skip


def can_process_file(name: str) -> bool:
    return PurePosixPath(name.lower()).suffix.lstrip(".") in SUPPORTED_EXTENSIONS


def enforce_text_budget(text: str, max_chars: int) -> str:
    """Hard-truncate ``text`` so the result, marker included, fits ``max_chars``."""
    if len(text) <= max_chars:
        return text
    keep = max(max_chars - len(TRUNCATION_SUFFIX), 0)
    truncated = text[:keep]
    last_space = truncated.rfind(" ")
    cut = last_space if last_space > keep * 0.8 else keep
    return truncated[:cut] + TRUNCATION_SUFFIX


def file_candidate_id(record: DiscoveredFile) -> str:
    return f"file:{record.file_id}"


def page_candidate_id(record: DiscoveredPage) -> str:
    return f"page:{record.path}"


def link_candidate_id(record: DiscoveredLink) -> str:
    return "link:" + hashlib.sha1(record.url.encode()).hexdigest()[:12]


def format_age(seconds: float) -> str:
    seconds = int(seconds)
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return f"{seconds} second{'s' if seconds != 1 else ''} ago"


def _matches(terms: Sequence[str], *fields: str) -> bool:
    haystack = " ".join(fields).lower()
    return any(term in haystack for term in terms)


def _by_relevance(candidates: list[SearchCandidate]) -> list[SearchCandidate]:
    return sorted(candidates, key=lambda c: c.relevance, reverse=True)


def build_candidates(
    query: str, index: CourseContentIndex, scorer: SimilarityScorer | None = None
) -> SearchBuckets:
    """Select records containing any query term and score them heuristically."""
    terms = query.lower().split()

    files = [
        SearchCandidate(
            id=file_candidate_id(f),
            type="file",
            title=f.name,
            source=f.source,
            url=f.url,
            relevance=score_record(query, f, ("name", "source"), scorer),
            can_process=can_process_file(f.name),
        )
        for f in index.files
        if _matches(terms, f.name, f.source)
    ]
    pages = [
        SearchCandidate(
            id=page_candidate_id(p),
            type="page",
            title=p.name,
            source=p.path,
            url=p.url,
            relevance=score_record(query, p, ("name", "path"), scorer),
        )
        for p in index.pages
        if _matches(terms, p.name, p.path)
    ]
    links = [
        SearchCandidate(
            id=link_candidate_id(link),
            type="link",
            title=link.title,
            source=link.source,
            url=link.url,
            relevance=score_record(query, link, ("title", "source"), scorer),
        )
        for link in index.links
        if _matches(terms, link.title, link.source)
    ]
    return SearchBuckets(
        files=_by_relevance(files), pages=_by_relevance(pages), links=_by_relevance(links)
    )


def apply_rerank(buckets: SearchBuckets, ranked: Sequence[RerankResult]) -> SearchBuckets | None:
    """Rebuild buckets from reranker output, or None if it named no known candidate.

    Candidates the reranker left out are dropped. Scores are clamped to 0.0–1.0.
    """
    by_id = {c.id: c for c in [*buckets.files, *buckets.pages, *buckets.links]}
    result = SearchBuckets()
    seen: set[str] = set()
    for item in ranked:
        candidate = by_id.get(item.id)
        if candidate is None or item.id in seen:
            continue
        seen.add(item.id)
        rescored = candidate.model_copy(update={"relevance": min(max(item.score, 0.0), 1.0)})
        getattr(result, f"{candidate.type}s").append(rescored)
    return result if seen else None


def generate_suggestions(query: str, total_results: int, file_matches: int) -> list[str]:
    suggestions: list[str] = []
    if total_results == 0:
        suggestions.append('Try broader search terms like "lecture", "notes", or "slides"')
        suggestions.append("Check if the course has restricted APIs by viewing course overview")
    if file_matches > 10:
        suggestions.append("Many files found - try more specific terms to narrow results")
    if len(query) < 4:
        suggestions.append('Try specific topics like "uncertainty", "quantum", "optics"')
    return suggestions


class SmartSearch:
    def __init__(
        self,
        extractor: ContentExtractor,
        *,
        classifier: IntentClassifierProtocol | None = None,
        reranker: RerankerProtocol | None = None,
        scorer: SimilarityScorer | None = None,
        settings: SearchSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._extractor = extractor
        self._classifier = classifier
        self._reranker = reranker
        self._scorer = scorer
        self._settings = settings or SearchSettings()
        self._clock = clock

    def _result(
        self,
        *,
        success: bool,
        query: str,
        course_info: CourseInfo,
        buckets: SearchBuckets,
        metadata: SearchMetadata,
        suggestions: list[str],
        error: str | None = None,
    ) -> CompactSearchResult | FullSearchResult:
        suggestions = [
            enforce_text_budget(s, self._settings.suggestion_max_chars) for s in suggestions
        ]
        if error is not None:
            error = enforce_text_budget(error, self._settings.error_max_chars)

        if metadata.mode == "full":
            return FullSearchResult(
                success=success,
                query=query,
                course_info=course_info,
                results=buckets,
                metadata=metadata,
                suggestions=suggestions,
                error=error,
            )

        citations = [
            Citation(
                id=c.id,
                type=c.type,
                title=c.title,
                source=c.source,
                relevance=c.relevance,
                can_process=c.can_process,
            )
            for c in _by_relevance([*buckets.files, *buckets.pages, *buckets.links])
        ]
        return CompactSearchResult(
            success=success,
            query=query,
            course_info=course_info,
            citations=citations,
            metadata=metadata,
            suggestions=suggestions,
            error=error,
        )

    def _failed(
        self,
        query: str,
        course_info: CourseInfo,
        mode: ReturnMode,
        started: float,
        error: str,
        intent: Intent | None = None,
        discovery_method: str = "none",
    ) -> CompactSearchResult | FullSearchResult:
        log.info("search_failed", error=error)
        return self._result(
            success=False,
            query=query,
            course_info=course_info,
            buckets=SearchBuckets(),
            metadata=SearchMetadata(
                search_time_ms=ms_since(started),
                discovery_method=discovery_method,
                mode=mode,
                intent=intent,
            ),
            suggestions=[],
            error=error,
        )

    async def _classify(self, query: str, course_id: str | None) -> Intent | None:
        if self._classifier is None:
            return None
        try:
            return await asyncio.wait_for(
                self._classifier.classify(query, course_id),
                self._settings.collaborator_timeout_seconds,
            )
        except (CourseContextError, TimeoutError) as exc:
            log.warning("intent_classification_failed", error=str(exc) or "timeout")
            return None
        except Exception:
            log.warning("intent_classification_failed", exc_info=True)
            return None

    async def _rerank(self, query: str, buckets: SearchBuckets, limit: int) -> SearchBuckets | None:
        if self._reranker is None:
            return None
        candidates = [*buckets.files, *buckets.pages, *buckets.links]
        try:
            ranked = await asyncio.wait_for(
                self._reranker.rerank(query, candidates, limit),
                self._settings.collaborator_timeout_seconds,
            )
        except (CourseContextError, TimeoutError) as exc:
            log.warning("rerank_failed", error=str(exc) or "timeout")
            return None
        except Exception:
            log.warning("rerank_failed", exc_info=True)
            return None
        return apply_rerank(buckets, ranked)

    async def search(
        self,
        query: str,
        course_id: str | None,
        *,
        max_results: int | None = None,
        return_mode: ReturnMode = "compact",
        use_small_model: bool | None = None,
        force_refresh: bool = False,
        course_name: str | None = None,
    ) -> CompactSearchResult | FullSearchResult:
        started = time.perf_counter()
        limit = max_results or self._settings.default_max_results
        use_model = self._settings.use_small_model if use_small_model is None else use_small_model
        query = (query or "").strip()
        course_info = CourseInfo(course_id=course_id, course_name=course_name)
        log.info(
            "search_started",
            course_id=course_id,
            mode=return_mode,
            max_results=limit,
            small_model=use_model,
        )

        if not query:
            return self._failed(
                query, course_info, return_mode, started, "Search query is required"
            )

        intent = await self._classify(query, course_id) if use_model else None

        if not course_id:
            return self._failed(
                query,
                course_info,
                return_mode,
                started,
                "Course ID is required for smart search",
                intent,
            )

        try:
            extraction = await self._extractor.extract(course_id, force_refresh=force_refresh)
        except CourseContextError as exc:
            return self._failed(
                query,
                course_info,
                return_mode,
                started,
                f"Search failed: {exc.message}",
                intent,
                "failed",
            )

        index = extraction.course_index
        course_info.course_name = course_name or index.course_name
        restriction_summary = (
            extraction.api_restrictions.summary if extraction.api_restrictions else None
        )
        if not extraction.success:
            return self._failed(
                query,
                course_info,
                return_mode,
                started,
                "Content discovery failed: " + "; ".join(extraction.errors),
                intent,
                "failed",
            )

        buckets = build_candidates(query, index, self._scorer)
        original_total = len(buckets.files) + len(buckets.pages) + len(buckets.links)
        file_matches = len(buckets.files)

        reranked = False
        if use_model and original_total > limit:
            rescored = await self._rerank(query, buckets, limit)
            if rescored is not None:
                buckets, reranked = rescored, True

        buckets = SearchBuckets(
            files=buckets.files[:limit], pages=buckets.pages[:limit], links=buckets.links[:limit]
        )
        returned = len(buckets.files) + len(buckets.pages) + len(buckets.links)

        metadata = SearchMetadata(
            total_results=returned,
            search_time_ms=ms_since(started),
            discovery_method=extraction.method,
            api_restrictions=(
                enforce_text_budget(restriction_summary, self._settings.error_max_chars)
                if restriction_summary
                else None
            ),
            truncated=returned < original_total,
            reranked=reranked,
            mode=return_mode,
            intent=intent,
        )
        log.info(
            "search_complete",
            course_id=course_id,
            candidates=original_total,
            returned=returned,
            reranked=reranked,
            duration_ms=metadata.search_time_ms,
        )
        return self._result(
            success=True,
            query=query,
            course_info=course_info,
            buckets=buckets,
            metadata=metadata,
            suggestions=generate_suggestions(query, returned, file_matches),
        )

    async def overview(self, course_id: str, *, force_refresh: bool = False) -> ContentOverview:
        extraction = await self._extractor.extract(course_id, force_refresh=force_refresh)
        index = extraction.course_index

        if not extraction.success:
            return ContentOverview(
                success=False,
                course_id=course_id,
                api_status=ApiStatus(status="unknown"),
                error=enforce_text_budget(
                    "; ".join(extraction.errors) or "Content discovery failed",
                    self._settings.error_max_chars,
                ),
            )

        age = self._clock() - index.last_scanned
        return ContentOverview(
            success=True,
            course_id=course_id,
            content_summary=ContentSummary(
                total_files=index.metadata.total_files,
                total_pages=index.metadata.total_pages,
                total_links=index.metadata.total_links,
                last_scanned=index.last_scanned,
                cache_age=(
                    format_age(age.total_seconds()) if extraction.method == "cached" else None
                ),
            ),
            api_status=ApiStatus(
                status="restricted" if index.metadata.has_restricted_apis else "available",
                restrictions=extraction.api_restrictions,
                recommends_discovery=index.metadata.discovery_method in ("web", "hybrid"),
            ),
            top_files=[
                OverviewFile(file_id=f.file_id, name=f.name, source=f.source)
                for f in index.files[:10]
            ],
            available_pages=[
                OverviewPage(name=p.name, path=p.path, accessible=p.accessible)
                for p in index.pages[:10]
            ],
        )

    def clear_content_cache(self, course_id: str | None = None) -> ClearResult:
        cache = self._extractor.cache
        before = len(cache)
        self._extractor.clear(course_id)
        cleared = before - len(cache)
        message = (
            f"Cleared content cache for course {course_id}"
            if course_id
            else "Cleared content cache for all courses"
        )
        log.info("content_cache_cleared", course_id=course_id, cleared=cleared)
        return ClearResult(cleared=cleared, message=message)

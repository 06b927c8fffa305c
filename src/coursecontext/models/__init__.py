from __future__ import annotations

from coursecontext.models.cache import ClearResult, FileCacheEntry, FileCacheStats
from coursecontext.models.discovery import (
    CourseAPIAvailability,
    CourseContentIndex,
    DiscoveredFile,
    DiscoveredLink,
    DiscoveredPage,
    DiscoverySummary,
    EndpointProbeResult,
    EndpointSpec,
    ExtractionResult,
    FallbackSuggestion,
    ProbeReport,
)
from coursecontext.models.search import (
    Citation,
    CompactSearchResult,
    FullSearchResult,
    Intent,
    RerankResult,
    SearchCandidate,
)
from coursecontext.models.tools import (
    ReadCourseFileInput,
    ReadCourseFileOutput,
    SmartSearchInput,
)

__all__ = [
    # discovery
    "EndpointSpec",
    "EndpointProbeResult",
    "CourseAPIAvailability",
    "DiscoverySummary",
    "ProbeReport",
    "FallbackSuggestion",
    "DiscoveredPage",
    "DiscoveredFile",
    "DiscoveredLink",
    "CourseContentIndex",
    "ExtractionResult",
    # cache
    "FileCacheEntry",
    "FileCacheStats",
    "ClearResult",
    # search
    "Intent",
    "SearchCandidate",
    "RerankResult",
    "Citation",
    "CompactSearchResult",
    "FullSearchResult",
    # tools
    "SmartSearchInput",
    "ReadCourseFileInput",
    "ReadCourseFileOutput",
]

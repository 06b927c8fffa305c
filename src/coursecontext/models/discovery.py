from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DiscoveryMethod = Literal["api", "web", "hybrid"]
LinkKind = Literal["internal", "external", "video", "document"]


class ProbeResponse(BaseModel):
    """Raw outcome of one authenticated probe request."""

    ok: bool
    status: int  # 0 when no HTTP response was received
    body: Any = None
    error: str | None = None


class EndpointSpec(BaseModel):
    """One entry of the probe catalog: a named course-relative API path."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str  # Appended to /api/v1/courses/{course_id}


class EndpointProbeResult(BaseModel):
    """Outcome of probing a single endpoint. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    available: bool
    status: int  # 0 when no HTTP response was received
    error: str | None = None
    message: str | None = None
    response_time_ms: int = 0


class CourseAPIAvailability(BaseModel):
    """All probe results for one course from a single probe run.

    Superseded wholesale by the next run, never merged field by field.
    """

    model_config = ConfigDict(frozen=True)

    course_id: str
    tested: datetime
    endpoints: dict[str, EndpointProbeResult]


class DiscoverySummary(BaseModel):
    total_endpoints: int
    available_endpoints: int
    restricted_endpoints: int
    has_working_apis: bool
    has_restricted_apis: bool
    recommend_web_discovery: bool


class ProbeTiming(BaseModel):
    total_ms: int = 0
    average_response_ms: float = 0.0


class ProbeReport(BaseModel):
    """Availability plus its derived summary, as returned by the prober."""

    course_id: str
    availability: CourseAPIAvailability
    summary: DiscoverySummary
    timing: ProbeTiming = ProbeTiming()
    from_cache: bool = False


class FallbackSuggestion(BaseModel):
    api: str
    fallback: str
    reason: str


class DiscoveredPage(BaseModel):
    name: str
    url: str
    path: str
    accessible: bool = True
    content_type: str = "html"
    source: str = ""
    last_checked: datetime | None = None


class DiscoveredFile(BaseModel):
    """A file reference, deduplicated across discovery paths by ``file_id``."""

    file_id: str
    name: str
    url: str = ""
    sources: list[str] = Field(default_factory=list)
    content_type: str | None = None
    size: int | None = None
    updated_at: datetime | None = None

    @property
    def source(self) -> str:
        return self.sources[0] if self.sources else ""


class DiscoveredLink(BaseModel):
    title: str
    url: str
    kind: LinkKind = "external"
    internal: bool = False
    source: str = ""


class IndexMetadata(BaseModel):
    total_files: int = 0
    total_pages: int = 0
    total_links: int = 0
    has_restricted_apis: bool = False
    discovery_method: DiscoveryMethod = "api"
    # False when the index was written by a probe run and holds no content yet
    content_scanned: bool = False


class CourseContentIndex(BaseModel):
    course_id: str
    course_name: str | None = None
    last_scanned: datetime
    api_availability: CourseAPIAvailability | None = None
    pages: list[DiscoveredPage] = Field(default_factory=list)
    files: list[DiscoveredFile] = Field(default_factory=list)
    links: list[DiscoveredLink] = Field(default_factory=list)
    searchable_content: str = ""
    metadata: IndexMetadata = IndexMetadata()


class ExtractionTiming(BaseModel):
    api_test_ms: int = 0
    api_extraction_ms: int = 0
    web_discovery_ms: int = 0
    total_ms: int = 0


class ApiRestrictions(BaseModel):
    summary: str
    fallbacks: list[FallbackSuggestion] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    success: bool
    method: Literal["api", "web", "hybrid", "cached"]
    course_index: CourseContentIndex
    timing: ExtractionTiming = ExtractionTiming()
    api_restrictions: ApiRestrictions | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ContentCounts(BaseModel):
    pages: int = 0
    files: int = 0
    links: int = 0


class ExtractionStats(BaseModel):
    has_cache: bool
    cache_age_ms: int | None = None
    api_status: Literal["available", "restricted", "unknown"]
    content_counts: ContentCounts = ContentCounts()
    last_update: datetime | None = None


class FileLookup(BaseModel):
    found: bool
    file_id: str
    name: str | None = None
    url: str | None = None
    source: str | None = None
    method: Literal["direct", "discovery"]
    # Upstream version marker (updated_at) and size, when known
    version: str | None = None
    size: int | None = None
    error: str | None = None

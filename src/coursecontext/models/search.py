from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from coursecontext.models.discovery import ApiRestrictions

CandidateType = Literal["file", "page", "link"]
ReturnMode = Literal["compact", "full"]


class Intent(BaseModel):
    """Content types the query is about, as judged by the intent classifier."""

    files: bool = False
    pages: bool = False
    assignments: bool = False
    discussions: bool = False
    grades: bool = False
    calendar: bool = False
    confidence: float = 0.0
    reasoning: str = ""


class SearchCandidate(BaseModel):
    """A ranked search hit. ``relevance`` is on the shared 0.0–1.0 scale."""

    id: str  # "file:<id>" | "page:<path>" | "link:<sha1(url)[:12]>"
    type: CandidateType
    title: str
    source: str
    url: str = ""
    relevance: float = 0.0
    can_process: bool | None = None  # files only


class RerankResult(BaseModel):
    id: str
    score: float
    reasoning: str = ""


class Citation(BaseModel):
    id: str
    type: CandidateType
    title: str
    source: str
    relevance: float
    can_process: bool | None = None


class SearchBuckets(BaseModel):
    files: list[SearchCandidate] = Field(default_factory=list)
    pages: list[SearchCandidate] = Field(default_factory=list)
    links: list[SearchCandidate] = Field(default_factory=list)


class CourseInfo(BaseModel):
    course_id: str | None = None
    course_name: str | None = None


class SearchMetadata(BaseModel):
    total_results: int = 0
    search_time_ms: int = 0
    discovery_method: str = "none"
    api_restrictions: str | None = None
    truncated: bool = False
    reranked: bool = False
    mode: ReturnMode = "compact"
    intent: Intent | None = None


class CompactSearchResult(BaseModel):
    success: bool
    query: str
    course_info: CourseInfo
    citations: list[Citation] = Field(default_factory=list)
    metadata: SearchMetadata
    suggestions: list[str] = Field(default_factory=list)
    error: str | None = None


class FullSearchResult(BaseModel):
    success: bool
    query: str
    course_info: CourseInfo
    results: SearchBuckets = SearchBuckets()
    metadata: SearchMetadata
    suggestions: list[str] = Field(default_factory=list)
    error: str | None = None


class ContentSummary(BaseModel):
    total_files: int = 0
    total_pages: int = 0
    total_links: int = 0
    last_scanned: datetime | None = None
    cache_age: str | None = None


class ApiStatus(BaseModel):
    status: str
    restrictions: ApiRestrictions | None = None
    recommends_discovery: bool = False


class OverviewFile(BaseModel):
    file_id: str
    name: str
    source: str


class OverviewPage(BaseModel):
    name: str
    path: str
    accessible: bool


class ContentOverview(BaseModel):
    success: bool
    course_id: str
    content_summary: ContentSummary = ContentSummary()
    api_status: ApiStatus
    top_files: list[OverviewFile] = Field(default_factory=list)
    available_pages: list[OverviewPage] = Field(default_factory=list)
    error: str | None = None

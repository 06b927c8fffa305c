"""Input and output models for the MCP tool handlers."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_validator

from coursecontext.models.discovery import FallbackSuggestion, ProbeReport

_ID_RE = re.compile(r"^[A-Za-z0-9_:.~-]{1,100}$")


def _validate_id(v: str, field: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError(f"{field} must not be empty")
    if not _ID_RE.match(v):
        raise ValueError(f"Invalid {field}: {v!r}")
    return v


class CourseIdInput(BaseModel):
    course_id: str

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str) -> str:
        return _validate_id(v, "course_id")


class OptionalCourseIdInput(BaseModel):
    course_id: str | None = None

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str | None) -> str | None:
        return None if v is None else _validate_id(v, "course_id")


class OptionalFileIdInput(BaseModel):
    file_id: str | None = None

    @field_validator("file_id")
    @classmethod
    def validate_file_id(cls, v: str | None) -> str | None:
        return None if v is None else _validate_id(v, "file_id")


class SmartSearchInput(BaseModel):
    query: str
    course_id: str | None = None
    course_name: str | None = None
    max_results: int = 5
    return_mode: Literal["compact", "full"] = "compact"
    use_small_model: bool | None = None
    force_refresh: bool = False

    # An empty query is not rejected here: the coordinator reports it as a
    # failed search result.
    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if len(v) > 500:
            raise ValueError("query must not exceed 500 characters")
        return v

    @field_validator("course_name")
    @classmethod
    def validate_course_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if len(v) > 200:
            raise ValueError("course_name must not exceed 200 characters")
        return v or None

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str | None) -> str | None:
        return None if v is None else _validate_id(v, "course_id")

    @field_validator("max_results")
    @classmethod
    def validate_max_results(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError("max_results must be between 1 and 50")
        return v


class ReadCourseFileInput(BaseModel):
    file_id: str
    course_id: str | None = None
    mode: Literal["preview", "full"] = "preview"
    result_format: Literal["markdown", "text"] = "markdown"

    @field_validator("file_id")
    @classmethod
    def validate_file_id(cls, v: str) -> str:
        return _validate_id(v, "file_id")

    @field_validator("course_id")
    @classmethod
    def validate_course_id(cls, v: str | None) -> str | None:
        return None if v is None else _validate_id(v, "course_id")


class ProbeCourseOutput(BaseModel):
    report: ProbeReport
    restriction_summary: str
    fallbacks: list[FallbackSuggestion]


class ReadCourseFileOutput(BaseModel):
    file_id: str
    name: str
    mode: Literal["preview", "full"]
    content: str
    result_format: str
    cached: bool
    cached_at: datetime | None
    stale: bool

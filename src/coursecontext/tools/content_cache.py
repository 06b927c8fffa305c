"""Tool handlers for cache maintenance: course index and file content caches."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.models.tools import OptionalCourseIdInput, OptionalFileIdInput

if TYPE_CHECKING:
    from coursecontext.state import AppState


def _invalid(exc: ValueError, suggestion: str) -> CourseContextError:
    return CourseContextError(
        code=ErrorCode.INVALID_INPUT,
        message=str(exc),
        suggestion=suggestion,
        recoverable=False,
    )


async def handle_clear_content(course_id: str | None, state: AppState) -> dict:
    """Handle a clear_content_cache tool call."""
    log = structlog.get_logger().bind(tool="clear_content_cache", course_id=course_id)
    log.info("handler_called")

    try:
        validated = OptionalCourseIdInput(course_id=course_id)
    except ValueError as exc:
        raise _invalid(exc, "Omit course_id to clear every course.") from exc

    result = state.search.clear_content_cache(validated.course_id)
    return result.model_dump(mode="json")


async def handle_file_stats(state: AppState) -> dict:
    """Handle a file_cache_stats tool call."""
    structlog.get_logger().bind(tool="file_cache_stats").info("handler_called")
    return state.file_cache.stats().model_dump(mode="json")


async def handle_clear_files(file_id: str | None, state: AppState) -> dict:
    """Handle a clear_file_cache tool call."""
    log = structlog.get_logger().bind(tool="clear_file_cache", file_id=file_id)
    log.info("handler_called")

    try:
        validated = OptionalFileIdInput(file_id=file_id)
    except ValueError as exc:
        raise _invalid(exc, "Omit file_id to clear every cached file.") from exc

    result = state.file_cache.clear(validated.file_id)
    log.info("file_cache_cleared", cleared=result.cleared)
    return result.model_dump(mode="json")

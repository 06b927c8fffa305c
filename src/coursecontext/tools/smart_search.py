"""Tool handlers for smart_search and course_content_overview.

A course can be named instead of identified: the name is matched against
the user's courses with the fuzzy resolver before the search runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import structlog

from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.models.tools import CourseIdInput, SmartSearchInput
from coursecontext.resolver import resolve_course

if TYPE_CHECKING:
    from coursecontext.state import AppState

COURSES_PATH = "/api/v1/courses"


async def _resolve_course_id(name: str, state: AppState) -> tuple[str, str | None]:
    courses = await state.client.get_paginated(
        COURSES_PATH,
        {"enrollment_state": "active"},
        max_pages=state.settings.discovery.max_api_pages,
    )
    match = resolve_course(name, courses)
    if match is None:
        raise CourseContextError(
            code=ErrorCode.COURSE_NOT_FOUND,
            message=f'Could not find a course with the name "{name}"',
            suggestion="Check the course name, or pass course_id directly.",
            recoverable=False,
        )
    return str(match["id"]), match.get("name")


async def handle(
    query: str,
    state: AppState,
    *,
    course_id: str | None = None,
    course_name: str | None = None,
    max_results: int = 5,
    return_mode: Literal["compact", "full"] = "compact",
    use_small_model: bool | None = None,
    force_refresh: bool = False,
) -> dict:
    """Handle a smart_search tool call."""
    log = structlog.get_logger().bind(tool="smart_search", course_id=course_id)
    log.info("handler_called", return_mode=return_mode, max_results=max_results)

    try:
        validated = SmartSearchInput(
            query=query,
            course_id=course_id,
            course_name=course_name,
            max_results=max_results,
            return_mode=return_mode,
            use_small_model=use_small_model,
            force_refresh=force_refresh,
        )
    except ValueError as exc:
        raise CourseContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a query (max 500 chars), a course id or name, max_results 1-50.",
            recoverable=False,
        ) from exc

    resolved_id = validated.course_id
    resolved_name = validated.course_name
    if resolved_id is None and validated.course_name:
        resolved_id, matched_name = await _resolve_course_id(validated.course_name, state)
        resolved_name = matched_name or validated.course_name
        log.info("course_resolved", course_id=resolved_id, course_name=resolved_name)

    result = await state.search.search(
        validated.query,
        resolved_id,
        max_results=validated.max_results,
        return_mode=validated.return_mode,
        use_small_model=validated.use_small_model,
        force_refresh=validated.force_refresh,
        course_name=resolved_name,
    )
    log.info(
        "search_returned",
        success=result.success,
        total_results=result.metadata.total_results,
        reranked=result.metadata.reranked,
    )
    return result.model_dump(mode="json")


async def handle_overview(course_id: str, state: AppState, *, force_refresh: bool = False) -> dict:
    """Handle a course_content_overview tool call."""
    log = structlog.get_logger().bind(tool="course_content_overview", course_id=course_id)
    log.info("handler_called", force_refresh=force_refresh)

    try:
        validated = CourseIdInput(course_id=course_id)
    except ValueError as exc:
        raise CourseContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide the numeric course id.",
            recoverable=False,
        ) from exc

    overview = await state.search.overview(validated.course_id, force_refresh=force_refresh)
    return overview.model_dump(mode="json")

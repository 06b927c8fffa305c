"""Tool handler for probe_course_apis.

Receives AppState, runs the endpoint prober and attaches the fallback
advisory. No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.models.tools import CourseIdInput, ProbeCourseOutput
from coursecontext.prober import get_api_restriction_summary, get_suggested_fallbacks

if TYPE_CHECKING:
    from coursecontext.state import AppState


async def handle(course_id: str, state: AppState, *, use_cache: bool = True) -> dict:
    """Handle a probe_course_apis tool call."""
    log = structlog.get_logger().bind(tool="probe_course_apis", course_id=course_id)
    log.info("handler_called", use_cache=use_cache)

    try:
        validated = CourseIdInput(course_id=course_id)
    except ValueError as exc:
        raise CourseContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide the numeric course id (or sis_course_id:<id>).",
            recoverable=False,
        ) from exc

    report = await state.prober.probe(validated.course_id, use_cache=use_cache)
    summary = get_api_restriction_summary(report)
    log.info("probe_reported", summary=summary, from_cache=report.from_cache)

    output = ProbeCourseOutput(
        report=report,
        restriction_summary=summary,
        fallbacks=get_suggested_fallbacks(report),
    )
    return output.model_dump(mode="json")

"""Tool handler for read_course_file.

Receives AppState, orchestrates file lookup / file-cache check / download and
parse / background revalidation, and returns the preview or the full text.
No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Literal

import structlog

from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.file_cache import generate_cache_key
from coursecontext.models.tools import ReadCourseFileInput, ReadCourseFileOutput

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from coursecontext.models.cache import FileCacheEntry
    from coursecontext.models.discovery import FileLookup
    from coursecontext.state import AppState

_FILE_PAGE_RE = re.compile(r"/files/\d+$")


def _download_url(lookup: FileLookup) -> str:
    url = lookup.url or f"/api/v1/files/{lookup.file_id}"
    # Discovered links point at the file's preview page, not its bytes
    if _FILE_PAGE_RE.search(url):
        return url + "/download"
    return url


def _loader(
    lookup: FileLookup, name: str, result_format: str, state: AppState
) -> Callable[[], Awaitable[str]]:
    async def _load() -> str:
        try:
            data = await state.client.download(_download_url(lookup))
        except CourseContextError as exc:
            if exc.code is ErrorCode.URL_NOT_ALLOWED:
                raise
            raise CourseContextError(
                code=ErrorCode.FILE_FETCH_FAILED,
                message=f"Could not download file {lookup.file_id}: {exc.message}",
                suggestion=exc.suggestion,
                recoverable=exc.recoverable,
                status=exc.status,
            ) from exc
        return await state.document_parser.parse(data, name, result_format)

    return _load


async def handle(
    file_id: str,
    state: AppState,
    *,
    course_id: str | None = None,
    mode: Literal["preview", "full"] = "preview",
    result_format: Literal["markdown", "text"] = "markdown",
) -> dict:
    """Handle a read_course_file tool call."""
    log = structlog.get_logger().bind(tool="read_course_file", file_id=file_id)
    log.info("handler_called", mode=mode, result_format=result_format)

    try:
        validated = ReadCourseFileInput(
            file_id=file_id, course_id=course_id, mode=mode, result_format=result_format
        )
    except ValueError as exc:
        raise CourseContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion=(
                "Provide a file id as returned by smart_search (without the 'file:' prefix)."
            ),
            recoverable=False,
        ) from exc

    lookup = await state.extractor.find_file(validated.file_id, validated.course_id)
    if not lookup.found:
        raise CourseContextError(
            code=ErrorCode.FILE_NOT_FOUND,
            message=lookup.error or f"File {validated.file_id} not found",
            suggestion="Pass course_id so the file can be located through course discovery.",
            recoverable=False,
        )

    name = lookup.name or f"file-{validated.file_id}"
    key = generate_cache_key(
        validated.file_id, lookup.version, lookup.size, validated.result_format
    )
    load = _loader(lookup, name, validated.result_format, state)
    cache = state.file_cache

    cached_entry = cache.get(key)
    if cached_entry is not None:
        stale = cache.should_revalidate(cached_entry)
        log.info("cache_hit", stale=stale)
        if stale:
            state.spawn(
                _background_refresh(
                    key=key,
                    load=load,
                    lookup=lookup,
                    result_format=validated.result_format,
                    state=state,
                )
            )
        return _build_output(validated, name, cached_entry, cached=True, stale=stale)

    log.info("cache_miss_fetching")
    entry = await cache.get_or_load(
        key,
        load,
        etag=lookup.version,
        content_length=lookup.size,
        result_format=validated.result_format,
    )
    log.info("fetch_complete", content_length=len(entry.content))
    return _build_output(validated, name, entry, cached=False, stale=False)


def _build_output(
    validated: ReadCourseFileInput,
    name: str,
    entry: FileCacheEntry,
    *,
    cached: bool,
    stale: bool,
) -> dict:
    output = ReadCourseFileOutput(
        file_id=validated.file_id,
        name=name,
        mode=validated.mode,
        content=entry.preview if validated.mode == "preview" else entry.content,
        result_format=entry.result_format,
        cached=cached,
        cached_at=entry.last_modified if cached else None,
        stale=stale,
    )
    return output.model_dump(mode="json")


async def _background_refresh(
    *,
    key: str,
    load: Callable[[], Awaitable[str]],
    lookup: FileLookup,
    result_format: str,
    state: AppState,
) -> None:
    """Reload a file whose cache entry is due for revalidation.

    Fire-and-forget: all exceptions are caught and logged.
    """
    log = structlog.get_logger().bind(tool="read_course_file", file_id=lookup.file_id)
    log.info("stale_refresh_started", key=key)
    try:
        await state.file_cache.get_or_load(
            key,
            load,
            etag=lookup.version,
            content_length=lookup.size,
            result_format=result_format,
        )
        log.info("stale_refresh_complete", key=key)
    except Exception:
        log.warning("stale_refresh_failed", key=key, exc_info=True)

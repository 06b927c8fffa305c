"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Start the correct transport (stdio or HTTP)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import TYPE_CHECKING, Literal

import httpx
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import coursecontext.tools.content_cache as t_cache
import coursecontext.tools.probe_apis as t_probe
import coursecontext.tools.read_course_file as t_read_file
import coursecontext.tools.smart_search as t_search
from coursecontext import __version__
from coursecontext.client import CanvasClient, build_http_client
from coursecontext.config import Settings
from coursecontext.discovery_cache import DiscoveryCache
from coursecontext.documents import PlainTextParser
from coursecontext.errors import CourseContextError
from coursecontext.extraction import ContentExtractor
from coursecontext.file_cache import FileContentCache
from coursecontext.prober import EndpointProber
from coursecontext.schedulers import run_cache_sweep_scheduler
from coursecontext.search import SmartSearch
from coursecontext.small_model import SmallModelClient
from coursecontext.state import AppState
from coursecontext.transport import run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries the MCP JSON-RPC stream in stdio mode
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_state(settings: Settings) -> AppState:
    """Wire every component around one HTTP client and the two shared caches."""
    http_client = build_http_client(settings.canvas)
    client = CanvasClient(http_client, settings.canvas.base_url, settings.canvas.access_token)

    discovery_cache = DiscoveryCache(
        ttl=timedelta(seconds=settings.discovery.ttl_seconds),
        max_entries=settings.discovery.max_courses,
    )
    file_cache = FileContentCache(settings.file_cache.to_config())

    prober = EndpointProber(
        client,
        discovery_cache,
        timeout_seconds=settings.probe.timeout_seconds,
        max_concurrency=settings.probe.max_concurrency,
    )
    extractor = ContentExtractor(client, prober, discovery_cache, settings=settings.discovery)

    model_http_client: httpx.AsyncClient | None = None
    small_model: SmallModelClient | None = None
    if settings.small_model.enabled and settings.small_model.api_key:
        model_http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.small_model.timeout_seconds),
            headers={"User-Agent": settings.canvas.user_agent},
        )
        small_model = SmallModelClient(model_http_client, settings.small_model)
    else:
        log.info("small_model_disabled")

    search = SmartSearch(
        extractor,
        classifier=small_model,
        reranker=small_model,
        settings=settings.search,
    )

    return AppState(
        settings=settings,
        client=client,
        discovery_cache=discovery_cache,
        file_cache=file_cache,
        prober=prober,
        extractor=extractor,
        search=search,
        document_parser=PlainTextParser(),
        http_client=http_client,
        model_http_client=model_http_client,
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, transport=settings.server.transport)
    if not settings.canvas.base_url or not settings.canvas.access_token:
        log.warning(
            "canvas_not_configured",
            message=(
                "Set COURSECONTEXT__CANVAS__BASE_URL and COURSECONTEXT__CANVAS__ACCESS_TOKEN; "
                "every tool call will fail until both are present."
            ),
        )

    state = build_state(settings)
    sweep_task = asyncio.create_task(run_cache_sweep_scheduler(state))

    log.info("server_started", version=__version__, transport=settings.server.transport)

    try:
        yield state
    finally:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
        for task in list(state.background_tasks):
            task.cancel()
        if state.http_client is not None:
            await state.http_client.aclose()
        if state.model_http_client is not None:
            await state.model_http_client.aclose()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("coursecontext", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg; set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: CourseContextError) -> CallToolResult:
    """Convert a CourseContextError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


async def _run_tool(name: str, call: Awaitable[dict]) -> object:
    try:
        return await call
    except CourseContextError as exc:
        log.warning(
            "tool_error",
            tool=name,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=name, exc_info=True)
        raise


def _state(ctx: Context) -> AppState:
    return ctx.request_context.lifespan_context


@mcp.tool()
async def probe_course_apis(course_id: str, ctx: Context, use_cache: bool = True) -> object:
    """Test which course API endpoints the current user can read.

    Returns per-endpoint availability, a one-line restriction summary, and a
    fallback suggestion for every restricted endpoint.
    """
    return await _run_tool(
        "probe_course_apis", t_probe.handle(course_id, _state(ctx), use_cache=use_cache)
    )


@mcp.tool()
async def smart_search(
    query: str,
    ctx: Context,
    course_id: str | None = None,
    course_name: str | None = None,
    max_results: int = 5,
    return_mode: Literal["compact", "full"] = "compact",
    use_small_model: bool | None = None,
    force_refresh: bool = False,
) -> object:
    """Search a course's files, pages and links.

    Discovery falls back from the APIs to the course's web pages when APIs
    are restricted. Identify the course by course_id or by course_name.
    "compact" returns ranked citations; "full" returns results grouped by type.
    Pass a file citation's id (without "file:") to read_course_file.
    """
    return await _run_tool(
        "smart_search",
        t_search.handle(
            query,
            _state(ctx),
            course_id=course_id,
            course_name=course_name,
            max_results=max_results,
            return_mode=return_mode,
            use_small_model=use_small_model,
            force_refresh=force_refresh,
        ),
    )


@mcp.tool()
async def course_content_overview(
    course_id: str, ctx: Context, force_refresh: bool = False
) -> object:
    """Summarise what content a course exposes and how it was discovered."""
    return await _run_tool(
        "course_content_overview",
        t_search.handle_overview(course_id, _state(ctx), force_refresh=force_refresh),
    )


@mcp.tool()
async def clear_content_cache(ctx: Context, course_id: str | None = None) -> object:
    """Drop cached course indexes (one course, or all when course_id is omitted)."""
    return await _run_tool(
        "clear_content_cache", t_cache.handle_clear_content(course_id, _state(ctx))
    )


@mcp.tool()
async def read_course_file(
    file_id: str,
    ctx: Context,
    course_id: str | None = None,
    mode: Literal["preview", "full"] = "preview",
    result_format: Literal["markdown", "text"] = "markdown",
) -> object:
    """Read the text of a course file.

    "preview" returns a compressed excerpt; "full" returns the whole text.
    Extracted content is cached per file version, so repeat reads are cheap.
    """
    return await _run_tool(
        "read_course_file",
        t_read_file.handle(
            file_id, _state(ctx), course_id=course_id, mode=mode, result_format=result_format
        ),
    )


@mcp.tool()
async def file_cache_stats(ctx: Context) -> object:
    """Report the size and age range of the file content cache."""
    return await _run_tool("file_cache_stats", t_cache.handle_file_stats(_state(ctx)))


@mcp.tool()
async def clear_file_cache(ctx: Context, file_id: str | None = None) -> object:
    """Drop cached file content (one file, or all when file_id is omitted)."""
    return await _run_tool("clear_file_cache", t_cache.handle_clear_files(file_id, _state(ctx)))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()

    if settings.server.transport == "http":
        _setup_logging(settings)
        run_http_server(mcp, settings)
        return

    mcp.run()


if __name__ == "__main__":
    main()

"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object.
Both caches live here and are shared by reference with every component.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from coursecontext.config import Settings
    from coursecontext.discovery_cache import DiscoveryCache
    from coursecontext.extraction import ContentExtractor
    from coursecontext.file_cache import FileContentCache
    from coursecontext.prober import EndpointProber
    from coursecontext.protocols import CanvasClientProtocol, DocumentParserProtocol
    from coursecontext.search import SmartSearch


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    client: CanvasClientProtocol
    discovery_cache: DiscoveryCache
    file_cache: FileContentCache
    prober: EndpointProber
    extractor: ContentExtractor
    search: SmartSearch
    document_parser: DocumentParserProtocol

    http_client: httpx.AsyncClient | None = None
    model_http_client: httpx.AsyncClient | None = None

    # Strong references to fire-and-forget refresh tasks
    background_tasks: set[asyncio.Task[None]] = field(default_factory=set)

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

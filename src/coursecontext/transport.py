"""Streamable HTTP transport and its ASGI security layer."""

from __future__ import annotations

import re
import secrets
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.datastructures import Headers
from starlette.responses import JSONResponse

from coursecontext import __version__

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP
    from starlette.types import ASGIApp, Receive, Scope, Send

    from coursecontext.config import Settings

log = structlog.get_logger()

SUPPORTED_PROTOCOL_VERSIONS: frozenset[str] = frozenset({"2025-11-25", "2025-06-18", "2025-03-26"})
HEALTH_PATH = "/healthz"
_LOCALHOST_ORIGIN = re.compile(r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$")


class SecurityMiddleware:
    """Pure ASGI middleware guarding the MCP endpoint.

    Every HTTP request except the health probe must carry the bearer key
    (when one is configured), come from a local or explicitly allowed
    origin, and declare a supported MCP protocol version if it declares one.
    Pure ASGI rather than BaseHTTPMiddleware so SSE streams are not buffered.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        auth_key: str | None = None,
        allowed_origins: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self.auth_key = auth_key
        self.allowed_origins = allowed_origins

    def _origin_allowed(self, origin: str) -> bool:
        return not origin or bool(_LOCALHOST_ORIGIN.match(origin)) or origin in self.allowed_origins

    def _authorised(self, headers: Headers) -> bool:
        if self.auth_key is None:
            return True
        scheme, _, token = headers.get("authorization", "").partition(" ")
        return scheme == "Bearer" and secrets.compare_digest(token, self.auth_key)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["path"] == HEALTH_PATH:
            await JSONResponse({"status": "ok", "version": __version__})(scope, receive, send)
            return

        headers = Headers(scope=scope)

        if not self._authorised(headers):
            response = JSONResponse({"error": "unauthorized"}, status_code=401)
            await response(scope, receive, send)
            return

        origin = headers.get("origin", "")
        if not self._origin_allowed(origin):
            log.warning("http_origin_rejected", origin=origin)
            await JSONResponse({"error": "forbidden origin"}, status_code=403)(scope, receive, send)
            return

        proto_version = headers.get("mcp-protocol-version", "")
        if proto_version and proto_version not in SUPPORTED_PROTOCOL_VERSIONS:
            response = JSONResponse(
                {"error": f"unsupported protocol version: {proto_version}"}, status_code=400
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


def build_http_app(mcp: FastMCP, settings: Settings) -> SecurityMiddleware:
    http_log = log.bind(transport="http")

    auth_key: str | None = None
    if settings.server.auth_enabled:
        auth_key = settings.server.auth_key or secrets.token_urlsafe(32)
        if not settings.server.auth_key:
            http_log.warning("http_auth_key_auto_generated", auth_key=auth_key)
    else:
        http_log.warning("http_auth_disabled")

    return SecurityMiddleware(
        mcp.streamable_http_app(),
        auth_key=auth_key,
        allowed_origins=frozenset(settings.server.allowed_origins),
    )


def run_http_server(mcp: FastMCP, settings: Settings) -> None:
    """Serve the MCP server over Streamable HTTP."""
    uvicorn.run(
        build_http_app(mcp, settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # structlog handles logging
    )

"""Authenticated HTTP client for the learning platform.

All network I/O against the platform goes through a single CanvasClient
instance shared across tool calls. The CanvasClient receives an
httpx.AsyncClient via constructor injection; the lifespan owns the client
lifecycle.

The bearer token is only ever sent to the configured platform host.
Redirects are followed manually, one hop at a time, so every hop is checked
before a request carrying credentials is issued.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

import httpx
import structlog

from coursecontext.errors import ErrorCode, CourseContextError
from coursecontext.models.discovery import ProbeResponse

if TYPE_CHECKING:
    from coursecontext.config import CanvasSettings

log = structlog.get_logger()

_LOGIN_MARKERS = ("sign in to your account", 'id="login_form"', "microsoft corporation")


def build_http_client(settings: CanvasSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def _hostname(url: str) -> str:
    return (urlparse(url).hostname or "").rstrip(".").lower()


def is_url_allowed(url: str, base_url: str) -> bool:
    """Whether credentials may be sent to ``url``: same host as the platform, http(s) only."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return False
    host = _hostname(url)
    return bool(host) and host == _hostname(base_url)


def _error_for_status(status: int, url: str) -> CourseContextError:
    if status in (401, 403):
        return CourseContextError(
            code=ErrorCode.ACCESS_DENIED,
            message=f"HTTP {status} fetching {url}",
            suggestion="This resource is restricted for the current token in this course.",
            recoverable=False,
            status=status,
        )
    if status == 404:
        return CourseContextError(
            code=ErrorCode.PAGE_NOT_FOUND,
            message=f"HTTP 404 fetching {url}",
            suggestion="The resource does not exist or is disabled for this course.",
            recoverable=False,
            status=status,
        )
    return CourseContextError(
        code=ErrorCode.PAGE_FETCH_FAILED,
        message=f"HTTP {status} fetching {url}",
        suggestion="The platform may be temporarily unavailable.",
        recoverable=True,
        status=status,
    )


def _error_message_from(response: httpx.Response) -> str:
    """Best-effort human message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", response.reason_phrase))
        return str(body.get("message") or body.get("error") or response.reason_phrase)
    return response.reason_phrase


class CanvasClient:
    """Platform client implementing CanvasClientProtocol."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, access_token: str) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, accept: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}", "Accept": accept}

    async def probe(self, path: str) -> ProbeResponse:
        """Issue one GET and classify it. Never raises."""
        url = self.url_for(path)
        try:
            response = await self._client.get(url, headers=self._headers("application/json"))
        except httpx.TimeoutException as exc:
            return ProbeResponse(ok=False, status=0, error="Request timed out", body=str(exc))
        except httpx.HTTPError as exc:
            return ProbeResponse(ok=False, status=0, error="Request failed", body=str(exc))

        if response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            return ProbeResponse(ok=True, status=response.status_code, body=body)

        return ProbeResponse(
            ok=False,
            status=response.status_code,
            error=response.reason_phrase or f"HTTP {response.status_code}",
            body=_error_message_from(response),
        )

    async def _get(
        self,
        url: str,
        *,
        accept: str,
        params: dict[str, Any] | None = None,
        max_redirects: int = 3,
        allow_offhost_redirect: bool = False,
    ) -> httpx.Response:
        """GET with per-hop host validation.

        Returns the final non-redirect response whatever its status. Raises
        CourseContextError on disallowed URLs, redirect loops and network errors.
        """
        current_url = url
        send_credentials = True

        try:
            for hop in range(max_redirects + 1):
                if send_credentials and not is_url_allowed(current_url, self.base_url):
                    log.warning("credential_leak_blocked", url=current_url)
                    raise CourseContextError(
                        code=ErrorCode.URL_NOT_ALLOWED,
                        message=f"URL not on the platform host: {current_url}",
                        suggestion="Only URLs on the configured platform host can be fetched.",
                        recoverable=False,
                    )

                headers = self._headers(accept) if send_credentials else {"Accept": accept}
                response = await self._client.get(
                    current_url, headers=headers, params=params if hop == 0 else None
                )

                if response.is_redirect and "location" in response.headers:
                    if hop == max_redirects:
                        raise CourseContextError(
                            code=ErrorCode.PAGE_FETCH_FAILED,
                            message=f"Too many redirects fetching {url}",
                            suggestion="The resource has an unusually long redirect chain.",
                            recoverable=False,
                        )
                    next_url = urljoin(str(response.url), response.headers["location"])
                    if not is_url_allowed(next_url, self.base_url):
                        if not allow_offhost_redirect:
                            log.warning("redirect_off_host_blocked", url=url, location=next_url)
                            raise CourseContextError(
                                code=ErrorCode.URL_NOT_ALLOWED,
                                message=f"Redirected off the platform host: {next_url}",
                                suggestion=(
                                    "The page redirected to another site, often a login page."
                                ),
                                recoverable=False,
                            )
                        # Signed download URLs: follow, but without the bearer token
                        send_credentials = False
                    current_url = next_url
                    continue

                return response

        except CourseContextError:
            raise
        except httpx.TimeoutException as exc:
            raise CourseContextError(
                code=ErrorCode.PAGE_FETCH_FAILED,
                message=f"Timed out fetching {url}",
                suggestion="The platform did not respond in time. Try again later.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise CourseContextError(
                code=ErrorCode.PAGE_FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                suggestion="The platform may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        # Unreachable but satisfies the type checker
        raise CourseContextError(
            code=ErrorCode.PAGE_FETCH_FAILED,
            message="Redirect loop",
            suggestion="",
            recoverable=False,
        )

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = self.url_for(path)
        response = await self._get(url, accept="application/json", params=params)
        if not response.is_success:
            raise _error_for_status(response.status_code, url)
        try:
            return response.json()
        except ValueError as exc:
            raise CourseContextError(
                code=ErrorCode.PARSE_FAILED,
                message=f"Malformed JSON from {url}",
                suggestion="The platform returned an unexpected response.",
                recoverable=True,
            ) from exc

    async def get_paginated(
        self, path: str, params: dict[str, Any] | None = None, *, max_pages: int = 10
    ) -> list[Any]:
        """Collect a list endpoint across ``Link: rel="next"`` pages."""
        url: str | None = self.url_for(path)
        query = {"per_page": 100, **(params or {})}
        items: list[Any] = []

        for _ in range(max_pages):
            if url is None:
                break
            response = await self._get(url, accept="application/json", params=query)
            if not response.is_success:
                raise _error_for_status(response.status_code, url)
            try:
                page = response.json()
            except ValueError as exc:
                raise CourseContextError(
                    code=ErrorCode.PARSE_FAILED,
                    message=f"Malformed JSON from {url}",
                    suggestion="The platform returned an unexpected response.",
                    recoverable=True,
                ) from exc
            if not isinstance(page, list):
                raise CourseContextError(
                    code=ErrorCode.PARSE_FAILED,
                    message=f"Expected a list from {url}",
                    suggestion="The platform returned an unexpected response.",
                    recoverable=True,
                )
            items.extend(page)

            next_url = response.links.get("next", {}).get("url")
            url = next_url if next_url and is_url_allowed(next_url, self.base_url) else None
            query = None  # The next link already carries the query string

        return items

    async def fetch_markup(self, url: str) -> str:
        """Fetch an HTML page from the platform's web interface."""
        full_url = self.url_for(url)
        response = await self._get(full_url, accept="text/html")
        if not response.is_success:
            raise _error_for_status(response.status_code, full_url)

        html = response.text
        lowered = html[:20000].lower()
        if any(marker in lowered for marker in _LOGIN_MARKERS):
            raise CourseContextError(
                code=ErrorCode.ACCESS_DENIED,
                message=f"Login page returned for {full_url}",
                suggestion="The web interface requires an interactive session for this page.",
                recoverable=False,
            )

        log.debug("markup_fetched", url=full_url, content_length=len(html))
        return html

    async def download(self, url: str) -> bytes:
        """Download raw file bytes, following redirects to signed storage URLs."""
        full_url = self.url_for(url)
        response = await self._get(
            full_url,
            accept="*/*",
            max_redirects=5,
            allow_offhost_redirect=True,
        )
        if not response.is_success:
            raise _error_for_status(response.status_code, full_url)
        log.info("download_complete", url=full_url, content_length=len(response.content))
        return response.content

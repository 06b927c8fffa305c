"""Protocol interfaces for swappable components.

The prober, extractor and search coordinator reference these protocols, not
the concrete implementations. This allows:
- Tests to use lightweight in-memory fakes with no network access
- The small-model collaborators to be left out entirely (heuristic-only search)
- Alternative similarity strategies without touching callers
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from coursecontext.models.discovery import ProbeResponse
    from coursecontext.models.search import Intent, RerankResult, SearchCandidate


class CanvasClientProtocol(Protocol):
    """Authenticated access to the learning platform."""

    base_url: str

    async def probe(self, path: str) -> ProbeResponse: ...

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any: ...

    async def get_paginated(
        self, path: str, params: dict[str, Any] | None = None, *, max_pages: int = 10
    ) -> list[Any]: ...

    async def fetch_markup(self, url: str) -> str: ...

    async def download(self, url: str) -> bytes: ...


class SimilarityScorer(Protocol):
    """Scores how well ``text`` matches ``query`` on a 0.0–1.0 scale."""

    def score(self, query: str, text: str) -> float: ...


class IntentClassifierProtocol(Protocol):
    async def classify(self, query: str, course_id: str | None = None) -> Intent: ...


class RerankerProtocol(Protocol):
    async def rerank(
        self, query: str, candidates: list[SearchCandidate], limit: int
    ) -> list[RerankResult]: ...


class DocumentParserProtocol(Protocol):
    """Converts raw file bytes into text in the requested result format."""

    async def parse(self, data: bytes, filename: str, result_format: str) -> str: ...

"""Small-model intent classifier and reranker.

Talks to any OpenAI-compatible chat-completions endpoint. Both operations
raise CourseContextError(MODEL_UNAVAILABLE) when the model cannot be reached;
the search coordinator treats that as non-fatal and falls back to heuristic
ranking. Results are cached in memory for ``cache_ttl_seconds``.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from coursecontext.clock import Clock, utc_now
from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.models.search import Intent, RerankResult, SearchCandidate

if TYPE_CHECKING:
    from coursecontext.config import SmallModelSettings

log = structlog.get_logger()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

_INTENT_PROMPT = """Analyze this course search query and determine what types of content the user is looking for.

Query: "{query}"

Respond with a JSON object with these keys:
  "files": boolean        documents, slides, PDFs, images
  "pages": boolean        course pages, reading materials
  "assignments": boolean  homework, projects, submissions
  "discussions": boolean  forum posts, Q&A
  "grades": boolean       scores, feedback
  "calendar": boolean     due dates, schedule, events
  "confidence": number    0.0-1.0
  "reasoning": string     brief explanation

Respond only with valid JSON."""

_RERANK_PROMPT = """Rank these course search results by relevance to the user's query. Return the top {limit} most relevant items.

Query: "{query}"

Candidates:
{candidates}

Respond with a JSON array of at most {limit} objects:
  {{"id": "<candidate id>", "score": <0.0-1.0 relevance>, "reasoning": "<brief reason>"}}

Respond only with valid JSON array."""


def _keyword_intent(query: str) -> Intent:
    q = query.lower()
    return Intent(
        files=any(w in q for w in ("file", "slide", "pdf")),
        pages=any(w in q for w in ("page", "reading")),
        assignments=any(w in q for w in ("assignment", "homework", "due")),
        discussions=any(w in q for w in ("discussion", "forum")),
        grades=any(w in q for w in ("grade", "score")),
        calendar=any(w in q for w in ("due", "schedule")),
        confidence=0.5,
        reasoning="Fallback keyword-based classification",
    )


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


class SmallModelClient:
    """Implements both IntentClassifierProtocol and RerankerProtocol."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: SmallModelSettings,
        *,
        clock: Clock = utc_now,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._client = client
        self._settings = settings
        self._clock = clock
        self._backoff = backoff_seconds
        self._cache: dict[str, tuple[datetime, Any]] = {}

    @property
    def enabled(self) -> bool:
        return self._settings.enabled and bool(self._settings.api_key)

    def _cached(self, key: str) -> Any:
        hit = self._cache.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if self._clock() >= expires_at:
            del self._cache[key]
            return None
        return value

    def _remember(self, key: str, value: Any) -> None:
        ttl = timedelta(seconds=self._settings.cache_ttl_seconds)
        self._cache[key] = (self._clock() + ttl, value)

    def clear_cache(self) -> int:
        cleared = len(self._cache)
        self._cache.clear()
        return cleared

    async def _complete(self, prompt: str) -> str:
        if not self.enabled:
            raise CourseContextError(
                code=ErrorCode.MODEL_UNAVAILABLE,
                message="Small model disabled or API key missing",
                suggestion="Set COURSECONTEXT__SMALL_MODEL__API_KEY to enable reranking.",
                recoverable=False,
            )

        payload = {
            "model": self._settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1,
            "max_tokens": 1000,
        }
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}
        url = f"{self._settings.base_url.rstrip('/')}/chat/completions"
        last_error = ""

        for attempt in range(self._settings.max_retries + 1):
            try:
                response = await self._client.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self._settings.timeout_seconds,
                )
                response.raise_for_status()
                return response.json()["choices"][0]["message"]["content"].strip()
            except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
                last_error = str(exc) or type(exc).__name__
                log.debug("small_model_attempt_failed", attempt=attempt + 1, error=last_error)
                if attempt < self._settings.max_retries:
                    await asyncio.sleep(self._backoff * 2**attempt)

        raise CourseContextError(
            code=ErrorCode.MODEL_UNAVAILABLE,
            message=(
                f"Small model failed after {self._settings.max_retries + 1} attempts: {last_error}"
            ),
            suggestion="Results fall back to keyword ranking.",
            recoverable=True,
        )

    async def classify(self, query: str, course_id: str | None = None) -> Intent:
        key = f"intent:{course_id or 'global'}:{query.lower().strip()}"
        cached = self._cached(key)
        if cached is not None:
            log.debug("small_model_cache_hit", kind="intent")
            return cached

        raw = await self._complete(_INTENT_PROMPT.format(query=query))
        try:
            intent = Intent.model_validate(json.loads(_strip_fences(raw)))
        except (ValueError, ValidationError):
            log.warning("small_model_intent_unparseable", response=raw[:200])
            intent = _keyword_intent(query)

        self._remember(key, intent)
        log.info("intent_classified", confidence=intent.confidence)
        return intent

    async def rerank(
        self, query: str, candidates: list[SearchCandidate], limit: int
    ) -> list[RerankResult]:
        if not candidates:
            return []

        key = "rerank:" + query.lower().strip() + "|" + "|".join(
            f"{c.id}:{c.title}" for c in candidates
        )
        cached = self._cached(key)
        if cached is not None:
            log.debug("small_model_cache_hit", kind="rerank")
            return cached[:limit]

        listing = "\n\n".join(
            f"{i}. ID: {c.id}\n   Type: {c.type}\n   Title: {c.title}\n   Source: {c.source}"
            for i, c in enumerate(candidates, start=1)
        )
        raw = await self._complete(
            _RERANK_PROMPT.format(limit=limit, query=query, candidates=listing)
        )
        try:
            parsed = json.loads(_strip_fences(raw))
            if not isinstance(parsed, list):
                raise ValueError("rerank response is not a JSON array")
            results = [RerankResult.model_validate(item) for item in parsed]
        except (ValueError, ValidationError) as exc:
            raise CourseContextError(
                code=ErrorCode.PARSE_FAILED,
                message=f"Unparseable rerank response: {exc}",
                suggestion="Results fall back to keyword ranking.",
                recoverable=True,
            ) from exc

        known = {c.id for c in candidates}
        results = [r for r in results if r.id in known][:limit]
        self._remember(key, results)
        log.info("candidates_reranked", returned=len(results), candidates=len(candidates))
        return results

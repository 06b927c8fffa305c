"""Fuzzy matching of free-text queries against records.

Pure business logic: no I/O, no knowledge of AppState or MCP.

All scores are on a single 0.0–1.0 scale shared with search ranking:
  1.0   exact case-insensitive equality
  0.9   the query is a substring of the field
  ≤0.8  token overlap, proportional to the fraction of query tokens found
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from rapidfuzz import fuzz

if TYPE_CHECKING:
    from coursecontext.protocols import SimilarityScorer

T = TypeVar("T")

EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.9
OVERLAP_WEIGHT = 0.8
DEFAULT_THRESHOLD = 0.35

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_WS_RE = re.compile(r"\s+")

COURSE_MATCH_KEYS = ("name", "course_code", "original_name", "nickname")


def normalise(text: str) -> str:
    return _WS_RE.sub(" ", text.lower()).strip()


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _tiered(query: str, text: str) -> float | None:
    """Score for the exact and containment tiers, or None to fall through."""
    if query == text:
        return EXACT_SCORE
    if query in text:
        return CONTAINS_SCORE
    return None


class TokenOverlapScorer:
    """Default scorer: a query token counts as found if it occurs inside any field token."""

    def score(self, query: str, text: str) -> float:
        q, t = normalise(query), normalise(text)
        if not q or not t:
            return 0.0
        tiered = _tiered(q, t)
        if tiered is not None:
            return tiered

        query_tokens = tokenize(q)
        field_tokens = tokenize(t)
        if not query_tokens or not field_tokens:
            return 0.0
        found = sum(1 for qt in query_tokens if any(qt in ft for ft in field_tokens))
        return OVERLAP_WEIGHT * found / len(query_tokens)


class RapidFuzzScorer:
    """Edit-distance variant: the lowest tier uses rapidfuzz's token set ratio."""

    def score(self, query: str, text: str) -> float:
        q, t = normalise(query), normalise(text)
        if not q or not t:
            return 0.0
        tiered = _tiered(q, t)
        if tiered is not None:
            return tiered
        return OVERLAP_WEIGHT * fuzz.token_set_ratio(q, t) / 100


_DEFAULT_SCORER = TokenOverlapScorer()


def lookup(record: Any, path: str) -> Any:
    """Resolve a dotted path through mappings and attributes. Missing → None."""
    current = record
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def _field_texts(record: Any, keys: Iterable[str]) -> Iterable[str]:
    for key in keys:
        value = lookup(record, key)
        if isinstance(value, str):
            yield value
        elif isinstance(value, int | float) and not isinstance(value, bool):
            yield str(value)


def score_record(
    query: str, record: Any, keys: Sequence[str], scorer: SimilarityScorer | None = None
) -> float:
    """Best score of ``query`` over the record's fields."""
    scorer = scorer or _DEFAULT_SCORER
    return max((scorer.score(query, text) for text in _field_texts(record, keys)), default=0.0)


def score_text(query: str, text: str, scorer: SimilarityScorer | None = None) -> float:
    return (scorer or _DEFAULT_SCORER).score(query, text)


def find_best_match(
    query: str,
    candidates: Sequence[T],
    keys: Sequence[str],
    *,
    scorer: SimilarityScorer | None = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> T | None:
    """Return the best-scoring candidate, or None if nothing clears ``threshold``.

    Ties resolve to the earliest candidate.
    """
    if not normalise(query) or not candidates:
        return None

    best: T | None = None
    best_score = -1.0
    for candidate in candidates:
        candidate_score = score_record(query, candidate, keys, scorer)
        if candidate_score > best_score:
            best, best_score = candidate, candidate_score

    return best if best_score >= threshold else None


def resolve_course(
    name: str,
    courses: Sequence[Mapping[str, Any]],
    *,
    scorer: SimilarityScorer | None = None,
) -> Mapping[str, Any] | None:
    """Map a human course name (or code) to one of the user's courses."""
    return find_best_match(name, courses, COURSE_MATCH_KEYS, scorer=scorer)

"""Unit tests for coursecontext.small_model."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from coursecontext.config import SmallModelSettings
from coursecontext.errors import CourseContextError, ErrorCode
from coursecontext.models.search import SearchCandidate
from coursecontext.small_model import SmallModelClient

BASE = "https://llm.test/api/v1"
COMPLETIONS = f"{BASE}/chat/completions"


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _settings(**overrides) -> SmallModelSettings:
    values = {"api_key": "sk-test", "base_url": BASE, "max_retries": 1, "cache_ttl_seconds": 300}
    values.update(overrides)
    return SmallModelSettings(**values)


def _candidates() -> list[SearchCandidate]:
    return [
        SearchCandidate(id="file:1", type="file", title="Lecture 1.pdf", source="files_api"),
        SearchCandidate(id="file:2", type="file", title="Lecture 2.pdf", source="files_api"),
        SearchCandidate(id="page:intro", type="page", title="Intro", source="intro"),
    ]


class TestEnabled:
    async def test_disabled_without_key(self) -> None:
        async with httpx.AsyncClient() as http:
            model = SmallModelClient(http, _settings(api_key=""))
            assert model.enabled is False
            with pytest.raises(CourseContextError) as exc_info:
                await model.classify("slides")
            assert exc_info.value.code == ErrorCode.MODEL_UNAVAILABLE
            assert exc_info.value.recoverable is False

    async def test_disabled_by_flag(self) -> None:
        async with httpx.AsyncClient() as http:
            assert SmallModelClient(http, _settings(enabled=False)).enabled is False


class TestClassify:
    async def test_parses_fenced_json(self, clock) -> None:
        body = '```json\n{"files": true, "confidence": 0.9, "reasoning": "slides"}\n```'
        with respx.mock:
            route = respx.post(COMPLETIONS).mock(return_value=_completion(body))
            async with httpx.AsyncClient() as http:
                intent = await SmallModelClient(http, _settings(), clock=clock).classify("slides")

            assert intent.files is True
            assert intent.pages is False
            assert intent.confidence == pytest.approx(0.9)
            request = route.calls.last.request
            assert request.headers["Authorization"] == "Bearer sk-test"
            payload = json.loads(request.content)
            assert payload["model"] == "google/gemini-2.5-flash"
            assert '"slides"' in payload["messages"][0]["content"]

    async def test_unparseable_falls_back_to_keywords(self, clock) -> None:
        with respx.mock:
            respx.post(COMPLETIONS).mock(return_value=_completion("I think they want homework"))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock)
                intent = await model.classify("homework due friday")

        assert intent.assignments is True
        assert intent.calendar is True
        assert intent.confidence == pytest.approx(0.5)
        assert intent.reasoning == "Fallback keyword-based classification"

    async def test_cached_until_ttl(self, clock) -> None:
        with respx.mock:
            route = respx.post(COMPLETIONS).mock(return_value=_completion('{"pages": true}'))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock)
                await model.classify("Reading list", "101")
                await model.classify("reading list ", "101")
                assert route.call_count == 1

                clock.advance(seconds=301)
                await model.classify("reading list", "101")
                assert route.call_count == 2

                assert model.clear_cache() == 1

    async def test_retries_then_fails(self, clock) -> None:
        with respx.mock:
            route = respx.post(COMPLETIONS).mock(return_value=httpx.Response(503))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock, backoff_seconds=0)
                with pytest.raises(CourseContextError) as exc_info:
                    await model.classify("slides")

            assert route.call_count == 2
            assert exc_info.value.code == ErrorCode.MODEL_UNAVAILABLE
            assert exc_info.value.recoverable is True
            assert "after 2 attempts" in exc_info.value.message

    async def test_recovers_on_retry(self, clock) -> None:
        with respx.mock:
            respx.post(COMPLETIONS).mock(
                side_effect=[
                    httpx.ConnectError("Connection refused"),
                    _completion('{"grades": true}'),
                ]
            )
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock, backoff_seconds=0)
                intent = await model.classify("my grade")
            assert intent.grades is True


class TestRerank:
    async def test_filters_unknown_ids_and_limits(self, clock) -> None:
        body = json.dumps(
            [
                {"id": "page:intro", "score": 0.9, "reasoning": "exact"},
                {"id": "file:99", "score": 0.8},
                {"id": "file:2", "score": 0.7},
                {"id": "file:1", "score": 0.1},
            ]
        )
        with respx.mock:
            route = respx.post(COMPLETIONS).mock(return_value=_completion(body))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock)
                results = await model.rerank("intro", _candidates(), limit=2)

            assert [r.id for r in results] == ["page:intro", "file:2"]
            prompt = json.loads(route.calls.last.request.content)["messages"][0]["content"]
            assert "ID: file:1" in prompt
            assert "top 2 most relevant" in prompt

    async def test_no_candidates_skips_model(self, clock) -> None:
        async with httpx.AsyncClient() as http:
            model = SmallModelClient(http, _settings(), clock=clock)
            assert await model.rerank("anything", [], limit=3) == []

    async def test_cached(self, clock) -> None:
        body = json.dumps([{"id": "file:1", "score": 0.9}])
        with respx.mock:
            route = respx.post(COMPLETIONS).mock(return_value=_completion(body))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock)
                await model.rerank("lecture", _candidates(), limit=2)
                await model.rerank("Lecture", _candidates(), limit=2)
            assert route.call_count == 1

    async def test_non_array_response(self, clock) -> None:
        with respx.mock:
            respx.post(COMPLETIONS).mock(return_value=_completion('{"id": "file:1"}'))
            async with httpx.AsyncClient() as http:
                model = SmallModelClient(http, _settings(), clock=clock)
                with pytest.raises(CourseContextError) as exc_info:
                    await model.rerank("lecture", _candidates(), limit=2)
            assert exc_info.value.code == ErrorCode.PARSE_FAILED

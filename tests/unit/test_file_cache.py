"""Unit tests for coursecontext.file_cache."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from coursecontext.file_cache import (
    TRUNCATION_MARKER,
    FileCacheConfig,
    FileContentCache,
    compress_to_preview,
    generate_cache_key,
)

# ---------------------------------------------------------------------------
# generate_cache_key
# ---------------------------------------------------------------------------


class TestGenerateCacheKey:
    def test_all_fields_present(self) -> None:
        assert generate_cache_key("42", "abc", 100, "markdown") == "42|eabc|100|markdown"

    def test_missing_fields_use_sentinels(self) -> None:
        assert generate_cache_key("42") == "42|no-etag|no-length|markdown"

    def test_etag_equal_to_sentinel_does_not_collide(self) -> None:
        assert generate_cache_key("42", "no-etag") != generate_cache_key("42", None)

    def test_separator_in_field_is_escaped(self) -> None:
        key = generate_cache_key("4|2", "a|b")
        assert key.count("|") == 3
        assert generate_cache_key("4|2", "a|b") != generate_cache_key("4", "2|a|b")

    def test_format_changes_key(self) -> None:
        assert generate_cache_key("42", "v1", 10, "markdown") != generate_cache_key(
            "42", "v1", 10, "text"
        )

    def test_new_version_changes_key(self) -> None:
        assert generate_cache_key("42", "v1", 10) != generate_cache_key("42", "v2", 10)
        assert generate_cache_key("42", "v1", 10) != generate_cache_key("42", "v1", 11)


# ---------------------------------------------------------------------------
# compress_to_preview
# ---------------------------------------------------------------------------


class TestCompressToPreview:
    def test_within_budget_unchanged(self) -> None:
        content = "Short   text\n\n\n\nwith gaps"
        assert compress_to_preview(content, 100) == content

    def test_whitespace_collapse_can_bring_it_under_budget(self) -> None:
        result = compress_to_preview("abc\n\n\n\n\n\ndef", 10)
        assert result == "abc\n\ndef" + TRUNCATION_MARKER

    def test_cuts_at_paragraph_break_in_tail(self) -> None:
        content = "A" * 85 + "\n\n" + "B" * 50
        assert compress_to_preview(content, 100) == "A" * 85 + TRUNCATION_MARKER

    def test_cuts_at_sentence_end_when_no_paragraph_break(self) -> None:
        content = "x" * 80 + ". " + "yyyyy! " + "z" * 50
        assert compress_to_preview(content, 100) == "x" * 80 + ". yyyyy!" + TRUNCATION_MARKER

    def test_paragraph_break_before_tail_is_ignored(self) -> None:
        content = "A" * 10 + "\n\n" + "B" * 200
        result = compress_to_preview(content, 100)
        assert result == ("A" * 10 + "\n\n" + "B" * 88) + TRUNCATION_MARKER

    def test_hard_cut_without_boundaries(self) -> None:
        assert compress_to_preview("z" * 200, 100) == "z" * 100 + TRUNCATION_MARKER

    def test_truncated_body_never_exceeds_budget(self) -> None:
        content = "Lorem ipsum dolor sit amet. " * 200
        result = compress_to_preview(content, 1500)
        assert result.endswith(TRUNCATION_MARKER)
        assert len(result) - len(TRUNCATION_MARKER) <= 1500


# ---------------------------------------------------------------------------
# FileContentCache
# ---------------------------------------------------------------------------


@pytest.fixture()
def cache(clock) -> FileContentCache:
    return FileContentCache(FileCacheConfig(max_entries=3, preview_max_chars=50), clock=clock)


class TestGetSet:
    def test_set_and_get(self, cache: FileContentCache) -> None:
        assert cache.set("k", "hello", etag="v1", content_length=5) is True
        entry = cache.get("k")
        assert entry is not None
        assert entry.content == "hello"
        assert entry.preview == "hello"
        assert entry.etag == "v1"
        assert entry.content_length == 5

    def test_miss_returns_none(self, cache: FileContentCache) -> None:
        assert cache.get("missing") is None

    def test_get_updates_last_accessed(self, cache: FileContentCache, clock) -> None:
        cache.set("k", "hello")
        clock.advance(minutes=5)
        entry = cache.get("k")
        assert entry is not None
        assert entry.last_accessed == clock()
        assert entry.last_modified == clock() - timedelta(minutes=5)

    def test_preview_is_compressed(self, cache: FileContentCache) -> None:
        cache.set("k", "word " * 100)
        entry = cache.get("k")
        assert entry is not None
        assert entry.preview.endswith(TRUNCATION_MARKER)
        assert entry.content == "word " * 100

    def test_disabled_cache_stores_nothing(self, clock) -> None:
        cache = FileContentCache(FileCacheConfig(enabled=False), clock=clock)
        assert cache.set("k", "hello") is False
        assert cache.get("k") is None

    def test_oversize_content_refused(self, clock) -> None:
        cache = FileContentCache(FileCacheConfig(max_content_size=10), clock=clock)
        assert cache.set("k", "x" * 11) is False
        assert len(cache) == 0

    def test_oversize_content_leaves_prior_entry(self, clock) -> None:
        cache = FileContentCache(FileCacheConfig(max_content_size=10), clock=clock)
        assert cache.set("k", "small") is True
        assert cache.set("k", "x" * 11) is False
        entry = cache.get("k")
        assert entry is not None
        assert entry.content == "small"
        assert len(cache) == 1

    def test_lru_eviction(self, cache: FileContentCache) -> None:
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.get("a")
        cache.set("d", "d")
        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert len(cache) == 3


class TestRevalidation:
    def test_not_due_at_threshold(self, cache: FileContentCache, clock) -> None:
        cache.set("k", "hello")
        clock.advance(hours=6)
        entry = cache.get("k")
        assert entry is not None
        assert cache.should_revalidate(entry) is False

    def test_due_after_threshold(self, cache: FileContentCache, clock) -> None:
        cache.set("k", "hello")
        clock.advance(hours=6, seconds=1)
        entry = cache.get("k")
        assert entry is not None
        assert cache.should_revalidate(entry) is True


class TestCleanup:
    def test_cleanup_removes_expired(self, cache: FileContentCache, clock) -> None:
        cache.set("old", "x")
        clock.advance(hours=20)
        cache.set("new", "y")
        clock.advance(hours=5)
        assert cache.cleanup_expired() == 1
        assert cache.get("new") is not None
        assert len(cache) == 1

    def test_get_does_not_enforce_ttl(self, cache: FileContentCache, clock) -> None:
        cache.set("k", "x")
        clock.advance(hours=48)
        assert cache.get("k") is not None


class TestClear:
    def test_clear_all(self, cache: FileContentCache) -> None:
        cache.set(generate_cache_key("1"), "a")
        cache.set(generate_cache_key("2"), "b")
        result = cache.clear()
        assert result.cleared == 2
        assert result.message == "Cleared all 2 cached files"
        assert len(cache) == 0

    def test_clear_one_file_keeps_similar_ids(self, cache: FileContentCache) -> None:
        cache.set(generate_cache_key("42", result_format="markdown"), "a")
        cache.set(generate_cache_key("42", result_format="text"), "b")
        cache.set(generate_cache_key("420"), "c")
        result = cache.clear("42")
        assert result.cleared == 2
        assert result.message == "Cleared 2 cache entries for file 42"
        assert cache.get(generate_cache_key("420")) is not None


class TestStats:
    def test_empty(self, cache: FileContentCache) -> None:
        stats = cache.stats()
        assert stats.size == 0
        assert stats.max_entries == 3
        assert stats.total_content_size == 0
        assert stats.oldest_entry is None
        assert stats.newest_entry is None

    def test_counts_utf8_bytes_of_content_and_preview(self, cache: FileContentCache, clock) -> None:
        cache.set("a", "héllo")  # 6 bytes, preview identical
        first = clock()
        clock.advance(minutes=1)
        cache.set("b", "abc")
        stats = cache.stats()
        assert stats.size == 2
        assert stats.total_content_size == 12 + 6
        assert stats.oldest_entry == first
        assert stats.newest_entry == clock()


class TestGetOrLoad:
    async def test_concurrent_loads_share_one_call(self, cache: FileContentCache) -> None:
        calls = 0
        release = asyncio.Event()

        async def loader() -> str:
            nonlocal calls
            calls += 1
            await release.wait()
            return "loaded"

        first = asyncio.create_task(cache.get_or_load("k", loader))
        second = asyncio.create_task(cache.get_or_load("k", loader))
        await asyncio.sleep(0)
        release.set()
        entries = await asyncio.gather(first, second)

        assert calls == 1
        assert [e.content for e in entries] == ["loaded", "loaded"]
        assert cache.get("k") is not None

    async def test_oversize_load_still_returned(self, clock) -> None:
        cache = FileContentCache(FileCacheConfig(max_content_size=3), clock=clock)

        async def loader() -> str:
            return "too long"

        entry = await cache.get_or_load("k", loader, etag="v1", result_format="text")
        assert entry.content == "too long"
        assert entry.result_format == "text"
        assert len(cache) == 0

    async def test_loader_error_propagates_and_is_not_cached(
        self, cache: FileContentCache
    ) -> None:
        async def loader() -> str:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", loader)
        assert cache.get("k") is None


class TestConfig:
    def test_from_hours(self) -> None:
        config = FileCacheConfig.from_hours(ttl_hours=2, revalidate_after_hours=0.5)
        assert config.ttl == timedelta(hours=2)
        assert config.revalidate_after == timedelta(minutes=30)

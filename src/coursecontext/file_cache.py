"""In-memory cache of extracted file content.

Entries are keyed by ``generate_cache_key`` so a new upstream version
(changed etag or size) or a different output format lands in a new slot and
the old one simply ages out. Reads never enforce the TTL; expired entries
are dropped by ``cleanup_expired``, which the sweep scheduler calls.

Cache failures never cross this class boundary: oversize content is refused
with a warning and the caller still gets its content back.
"""

from __future__ import annotations

import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from datetime import timedelta
from urllib.parse import quote

import structlog
from pydantic import BaseModel

from coursecontext.clock import Clock, ms_since, utc_now
from coursecontext.models.cache import ClearResult, FileCacheEntry, FileCacheStats
from coursecontext.singleflight import SingleFlight

log = structlog.get_logger()

TRUNCATION_MARKER = (
    '\n\n...[Content truncated for preview. Use mode="full" to see complete content]'
)

_NO_ETAG = "no-etag"
_NO_LENGTH = "no-length"
_KEY_SEP = "|"

_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_HORIZONTAL_WS = re.compile(r"[ \t\f\v]+")
_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")


class FileCacheConfig(BaseModel):
    enabled: bool = True
    max_entries: int = 100
    ttl: timedelta = timedelta(hours=24)
    max_content_size: int = 10 * 1024 * 1024  # characters
    revalidate_after: timedelta = timedelta(hours=6)
    preview_max_chars: int = 1500

    @classmethod
    def from_hours(
        cls,
        *,
        enabled: bool = True,
        max_entries: int = 100,
        ttl_hours: float = 24,
        max_content_size: int = 10 * 1024 * 1024,
        revalidate_after_hours: float = 6,
        preview_max_chars: int = 1500,
    ) -> FileCacheConfig:
        return cls(
            enabled=enabled,
            max_entries=max_entries,
            ttl=timedelta(hours=ttl_hours),
            max_content_size=max_content_size,
            revalidate_after=timedelta(hours=revalidate_after_hours),
            preview_max_chars=preview_max_chars,
        )


def generate_cache_key(
    resource_id: str,
    etag: str | None = None,
    content_length: int | None = None,
    result_format: str = "markdown",
) -> str:
    """Build the composite cache key for one version of a file in one format.

    Every field is percent-escaped before joining, so no field value can
    contain the separator. A present etag is tagged with an ``e`` prefix so
    it can never collide with the missing-etag sentinel.
    """
    etag_part = _NO_ETAG if etag is None else "e" + quote(etag, safe="")
    length_part = _NO_LENGTH if content_length is None else str(int(content_length))
    return _KEY_SEP.join(
        (
            quote(resource_id, safe=""),
            etag_part,
            length_part,
            quote(result_format, safe=""),
        )
    )


def _key_prefix(resource_id: str) -> str:
    return quote(resource_id, safe="") + _KEY_SEP


def compress_to_preview(content: str, max_chars: int) -> str:
    """Shrink ``content`` to at most ``max_chars`` plus the truncation marker.

    Content already within budget is returned unchanged. Otherwise excess
    whitespace is collapsed first; if that is still too long the text is cut
    at a paragraph break, then a sentence end, in the last 20% of the window,
    falling back to a hard cut.
    """
    if len(content) <= max_chars:
        return content

    text = _EXCESS_NEWLINES.sub("\n\n", content)
    text = _HORIZONTAL_WS.sub(" ", text)

    if len(text) > max_chars:
        window = text[:max_chars]
        floor = int(max_chars * 0.8)

        cut = window.rfind("\n\n", floor)
        if cut <= 0:
            ends = list(_SENTENCE_END.finditer(window, floor))
            cut = ends[-1].end() if ends else max_chars
        text = window[:cut].rstrip()

    return text + TRUNCATION_MARKER


class FileContentCache:
    """LRU-bounded, TTL-swept store of FileCacheEntry values."""

    def __init__(self, config: FileCacheConfig | None = None, *, clock: Clock = utc_now) -> None:
        self.config = config or FileCacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, FileCacheEntry] = OrderedDict()
        self._loads: SingleFlight[FileCacheEntry] = SingleFlight()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> FileCacheEntry | None:
        """Return the entry for ``key`` and mark it as accessed."""
        if not self.config.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            log.debug("file_cache_miss", key=key)
            return None
        entry.last_accessed = self._clock()
        self._entries.move_to_end(key)
        log.debug("file_cache_hit", key=key)
        return entry

    def build_entry(
        self,
        key: str,
        content: str,
        *,
        etag: str | None = None,
        content_length: int | None = None,
        processing_time_ms: int = 0,
        result_format: str = "markdown",
    ) -> FileCacheEntry:
        now = self._clock()
        return FileCacheEntry(
            key=key,
            content=content,
            preview=compress_to_preview(content, self.config.preview_max_chars),
            etag=etag,
            content_length=content_length,
            last_modified=now,
            last_accessed=now,
            processing_time_ms=processing_time_ms,
            result_format=result_format,
        )

    def set(
        self,
        key: str,
        content: str,
        *,
        etag: str | None = None,
        content_length: int | None = None,
        processing_time_ms: int = 0,
        result_format: str = "markdown",
    ) -> bool:
        """Store content under ``key``. Returns False when the content was refused."""
        entry = self.build_entry(
            key,
            content,
            etag=etag,
            content_length=content_length,
            processing_time_ms=processing_time_ms,
            result_format=result_format,
        )
        return self._store(entry)

    def _store(self, entry: FileCacheEntry) -> bool:
        if not self.config.enabled:
            return False
        if len(entry.content) > self.config.max_content_size:
            log.warning(
                "file_cache_content_too_large",
                key=entry.key,
                content_size=len(entry.content),
                max_content_size=self.config.max_content_size,
            )
            return False

        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self.config.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("file_cache_evicted", key=evicted)
        return True

    def should_revalidate(self, entry: FileCacheEntry) -> bool:
        return self._clock() - entry.last_modified > self.config.revalidate_after

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[str]],
        *,
        etag: str | None = None,
        content_length: int | None = None,
        result_format: str = "markdown",
    ) -> FileCacheEntry:
        """Load and store content for ``key``, coalescing concurrent loads.

        The returned entry is always populated, even when the content was too
        large to be stored.
        """

        async def _load() -> FileCacheEntry:
            started = time.perf_counter()
            content = await loader()
            entry = self.build_entry(
                key,
                content,
                etag=etag,
                content_length=content_length,
                processing_time_ms=ms_since(started),
                result_format=result_format,
            )
            self._store(entry)
            return entry

        return await self._loads.run(key, _load)

    def clear(self, resource_id: str | None = None) -> ClearResult:
        if resource_id is None:
            cleared = len(self._entries)
            self._entries.clear()
            message = f"Cleared all {cleared} cached files"
        else:
            prefix = _key_prefix(resource_id)
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            cleared = len(doomed)
            message = f"Cleared {cleared} cache entries for file {resource_id}"

        log.info("file_cache_cleared", resource_id=resource_id, cleared=cleared)
        return ClearResult(cleared=cleared, message=message)

    def stats(self) -> FileCacheStats:
        entries = list(self._entries.values())
        total = sum(len(e.content.encode()) + len(e.preview.encode()) for e in entries)
        modified = [e.last_modified for e in entries]
        return FileCacheStats(
            size=len(entries),
            max_entries=self.config.max_entries,
            total_content_size=total,
            oldest_entry=min(modified) if modified else None,
            newest_entry=max(modified) if modified else None,
        )

    def cleanup_expired(self) -> int:
        """Drop entries older than the configured TTL. Returns the count removed."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.last_modified > self.config.ttl
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            log.info("file_cache_cleanup_complete", removed=len(expired))
        return len(expired)

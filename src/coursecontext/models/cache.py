from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class FileCacheEntry(BaseModel):
    """Cached extracted content for one file version and output format."""

    key: str
    content: str  # Full extracted content
    preview: str  # compress_to_preview(content)
    etag: str | None = None
    content_length: int | None = None
    last_modified: datetime  # When stored or last refreshed
    last_accessed: datetime
    processing_time_ms: int = 0
    result_format: str = "markdown"


class FileCacheStats(BaseModel):
    size: int
    max_entries: int
    total_content_size: int  # UTF-8 bytes of content + preview, summed
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class ClearResult(BaseModel):
    cleared: int
    message: str

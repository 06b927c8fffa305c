"""Structured extraction from course markup.

Pages are parsed once with selectolax (lexbor backend) and the resulting anchor and
attribute stream is pattern-matched, rather than running regexes over raw
HTML. Pure functions: no I/O, no knowledge of the client or caches.
"""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse

from selectolax.lexbor import LexborHTMLParser, LexborNode

from coursecontext.models.discovery import DiscoveredFile, DiscoveredLink, LinkKind

_FILE_ID_RE = re.compile(r"/files/(\d+)")
_WHITESPACE_RE = re.compile(r"\s+")

_VIDEO_HINTS = ("youtube.com", "youtu.be", "vimeo.com", "mediaspace", "kaltura")
_DOCUMENT_SUFFIXES = (".pdf", ".doc", ".docx", ".ppt", ".pptx", ".xls", ".xlsx")
_SKIPPED_SCHEMES = ("#", "javascript:", "mailto:", "tel:")


def _clean(text: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def _file_id(node: LexborNode) -> str | None:
    for attr in ("href", "data-api-endpoint"):
        match = _FILE_ID_RE.search(node.attributes.get(attr) or "")
        if match:
            return match.group(1)
    return None


def _file_name(node: LexborNode, file_id: str) -> str:
    classes = (node.attributes.get("class") or "").split()
    title = _clean(node.attributes.get("title"))
    if "instructure_file_link" in classes and title:
        return title
    return _clean(node.text()) or title or f"File {file_id}"


def extract_file_refs(html: str, base_url: str, *, source: str) -> list[DiscoveredFile]:
    """File references found in anchors, in document order, one per file id."""
    if not html:
        return []
    tree = LexborHTMLParser(html)
    base = base_url.rstrip("/")
    files: dict[str, DiscoveredFile] = {}

    for node in tree.css("a[href], [data-api-endpoint]"):
        file_id = _file_id(node)
        if file_id is None or file_id in files:
            continue
        files[file_id] = DiscoveredFile(
            file_id=file_id,
            name=_file_name(node, file_id),
            url=f"{base}/files/{file_id}",
            sources=[source],
        )

    return list(files.values())


def classify_link(url: str, base_url: str) -> tuple[LinkKind, bool]:
    """Return ``(kind, internal)`` for an absolute URL."""
    internal = _host(url) == _host(base_url)
    lowered = url.lower()
    if any(hint in lowered for hint in _VIDEO_HINTS):
        return "video", internal
    if urlparse(lowered).path.endswith(_DOCUMENT_SUFFIXES):
        return "document", internal
    return ("internal" if internal else "external"), internal


def extract_links(html: str, base_url: str, *, source: str) -> list[DiscoveredLink]:
    """Outbound links other than file references, deduplicated by URL."""
    if not html:
        return []
    tree = LexborHTMLParser(html)
    links: dict[str, DiscoveredLink] = {}

    for node in tree.css("a[href]"):
        href = (node.attributes.get("href") or "").strip()
        if not href or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        if _file_id(node) is not None:
            continue
        url = urljoin(base_url.rstrip("/") + "/", href)
        if urlparse(url).scheme not in ("http", "https") or url in links:
            continue
        title = _clean(node.text()) or _clean(node.attributes.get("title")) or url
        kind, internal = classify_link(url, base_url)
        links[url] = DiscoveredLink(
            title=title, url=url, kind=kind, internal=internal, source=source
        )

    return list(links.values())


def extract_text(html: str) -> str:
    """Visible text with scripts and styles removed, whitespace collapsed."""
    if not html:
        return ""
    tree = LexborHTMLParser(html)
    tree.strip_tags(["script", "style", "noscript"])
    root = tree.body or tree.root
    if root is None:
        return ""
    return _clean(root.text(separator=" "))


def extract_title(html: str) -> str | None:
    if not html:
        return None
    tree = LexborHTMLParser(html)
    node = tree.css_first("title")
    return _clean(node.text()) if node is not None else None

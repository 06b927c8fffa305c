"""Default document parser.

Decodes text-like files. Formats that need a conversion service (PDF,
Office, images) are rejected with UNSUPPORTED_FILE; a richer parser can be
injected through DocumentParserProtocol.
"""

from __future__ import annotations

import json
from pathlib import PurePosixPath

from coursecontext import markup
from coursecontext.errors import CourseContextError, ErrorCode

TEXT_EXTENSIONS = frozenset({".txt", ".md", ".markdown", ".csv", ".tsv", ".json", ".py", ".rst"})
HTML_EXTENSIONS = frozenset({".html", ".htm"})


def _extension(filename: str) -> str:
    return PurePosixPath(filename.lower()).suffix


class PlainTextParser:
    def supports(self, filename: str) -> bool:
        ext = _extension(filename)
        return ext in TEXT_EXTENSIONS or ext in HTML_EXTENSIONS

    async def parse(self, data: bytes, filename: str, result_format: str) -> str:
        ext = _extension(filename)
        if not self.supports(filename):
            raise CourseContextError(
                code=ErrorCode.UNSUPPORTED_FILE,
                message=f"Cannot extract text from {filename!r}",
                suggestion="Only text, markdown, CSV, JSON and HTML files can be read.",
                recoverable=False,
            )

        text = data.decode("utf-8", errors="replace")
        if ext in HTML_EXTENSIONS:
            return markup.extract_text(text)
        if ext == ".json" and result_format == "markdown":
            try:
                pretty = json.dumps(json.loads(text), indent=2, ensure_ascii=False)
            except ValueError:
                return text
            return f"```json\n{pretty}\n```"
        return text

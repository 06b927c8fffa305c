from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    COURSE_NOT_FOUND = "COURSE_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_FETCH_FAILED = "FILE_FETCH_FAILED"
    UNSUPPORTED_FILE = "UNSUPPORTED_FILE"
    PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
    PAGE_FETCH_FAILED = "PAGE_FETCH_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    URL_NOT_ALLOWED = "URL_NOT_ALLOWED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    INVALID_INPUT = "INVALID_INPUT"


class CourseContextError(Exception):
    """Raised for all expected failure conditions.

    Components that aggregate several sources (prober, extractor, search)
    catch it per source and record it as a non-fatal error. Tool handlers
    let it propagate to server.py, which serialises it into the MCP error
    response so the agent receives a structured error with a suggestion.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.status = status

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }

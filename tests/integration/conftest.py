"""Integration test fixtures.

The wired ``app_state`` fixture comes from tests/conftest.py. This module
seeds the in-memory platform with a small course and provides the
environment for subprocess-based MCP wire tests.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

API = "/api/v1/courses/101"

PAGE_BODY = (
    "<p>Read the manual before lab.</p>"
    '<a class="instructure_file_link" title="Lab Manual.pdf" '
    'href="/courses/101/files/42/download">manual</a>'
)


@pytest.fixture()
def seeded_canvas(canvas):
    """Course 101 ("Physics 101") readable through every content API."""
    canvas.json[API] = {"id": 101, "name": "Physics 101"}
    canvas.lists["/api/v1/courses"] = [
        {"id": 101, "name": "Physics 101", "course_code": "PHYS101"},
        {"id": 202, "name": "Organic Chemistry", "course_code": "CHEM210"},
    ]
    canvas.lists[f"{API}/pages"] = [
        {
            "url": "lab-safety",
            "title": "Lab Safety",
            "html_url": "https://canvas.test/courses/101/pages/lab-safety",
        }
    ]
    canvas.json[f"{API}/pages/lab-safety"] = {"body": PAGE_BODY}
    canvas.lists[f"{API}/files"] = [
        {
            "id": 42,
            "display_name": "lab-manual.pdf",
            "url": "https://canvas.test/files/42/download?verifier=abc",
            "size": 2048,
            "updated_at": "2026-01-01T00:00:00Z",
        },
        {"id": 43, "display_name": "syllabus.txt"},
    ]
    canvas.lists[f"{API}/modules"] = [
        {
            "name": "Week 1",
            "items": [
                {
                    "type": "ExternalUrl",
                    "external_url": "https://youtube.com/watch?v=1",
                    "title": "Lab walkthrough video",
                }
            ],
        }
    ]
    canvas.json[f"{API}/tabs"] = []
    return canvas


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Forces stdio transport, runs from an empty directory so no local
    coursecontext.yaml is picked up, and points the platform at a closed port.
    """
    env = os.environ.copy()
    for key in list(env):
        if key.startswith("COURSECONTEXT__"):
            del env[key]
    env["COURSECONTEXT__SERVER__TRANSPORT"] = "stdio"
    env["COURSECONTEXT__CANVAS__BASE_URL"] = "http://127.0.0.1:1"
    env["COURSECONTEXT__CANVAS__ACCESS_TOKEN"] = "test-token"
    env["COURSECONTEXT__SMALL_MODEL__ENABLED"] = "false"
    env["COURSECONTEXT__PROBE__TIMEOUT_SECONDS"] = "5"
    env["XDG_CONFIG_HOME"] = str(tmp_path / "config")
    return env

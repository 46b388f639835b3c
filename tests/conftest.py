from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, Callable

import httpx
import pytest

from redmine_client import RedmineClient

BASE_URL = "https://redmine.example.com"


def _single_issue_payload(**overrides: Any) -> dict[str, Any]:
    issue: dict[str, Any] = {
        "id": 1,
        "project": {"id": 1, "name": "Test Project"},
        "tracker": {"id": 1, "name": "Bug"},
        "status": {"id": 1, "name": "New"},
        "priority": {"id": 2, "name": "Normal"},
        "author": {"id": 1, "name": "Admin User"},
        "assigned_to": {"id": 3, "name": "Jane Doe"},
        "subject": "Test issue",
        "description": "Test description",
        "start_date": "2024-01-01",
        "due_date": None,
        "done_ratio": 30,
        "is_private": False,
        "estimated_hours": 2.5,
        "custom_fields": [
            {"id": 1, "name": "Severity", "value": "High"},
            {"id": 2, "name": "Platforms", "multiple": True, "value": ["Linux", "macOS"]},
        ],
        "journals": [
            {
                "id": 10,
                "user": {"id": 1, "name": "Admin User"},
                "notes": "Looked into it",
                "created_on": "2024-01-02T10:00:00Z",
                "private_notes": False,
                "details": [
                    {"property": "attr", "name": "status_id", "old_value": "1", "new_value": "2"},
                ],
            }
        ],
        "created_on": "2024-01-01T09:00:00Z",
        "updated_on": "2024-01-02T10:00:00Z",
    }
    issue.update(overrides)
    return {"issue": issue}


class RecordingTransport:
    """Queue of canned responses that remembers every request it served."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responders: list[Callable[[httpx.Request], httpx.Response]] = []

    def reply_json(self, payload: Any, status_code: int = 200) -> None:
        self._responders.append(lambda request: httpx.Response(status_code, json=payload))

    def reply_empty(self, status_code: int = 204) -> None:
        self._responders.append(lambda request: httpx.Response(status_code))

    def reply_errors(self, status_code: int, messages: list[str]) -> None:
        self.reply_json({"errors": messages}, status_code=status_code)

    def fail(self, message: str) -> None:
        def responder(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError(message, request=request)

        self._responders.append(responder)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responders:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        return self._responders.pop(0)(request)

    def body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def client_factory(transport: RecordingTransport):
    @asynccontextmanager
    async def factory():
        client = RedmineClient(BASE_URL, "secret-key", transport=httpx.MockTransport(transport))
        try:
            yield client
        finally:
            await client.close()

    return factory


@pytest.fixture()
def issue_payload():
    return _single_issue_payload


@pytest.fixture()
def base_url() -> str:
    return BASE_URL


@pytest.fixture()
def make_client(transport: RecordingTransport):
    def factory(base_url: str = BASE_URL) -> RedmineClient:
        return RedmineClient(base_url, "secret-key", transport=httpx.MockTransport(transport))

    return factory

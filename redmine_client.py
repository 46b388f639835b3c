"""Utility helpers for interacting with the Redmine REST API."""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

import httpx
from httpx import Response
from httpx._types import QueryParamTypes


def _safe_json(response: Response) -> Any | None:
    try:
        return response.json()
    except ValueError:  # pragma: no cover - defensive fallback
        text = response.text
        return text if text else None


def _extract_messages(response: Response) -> list[str]:
    payload = _safe_json(response)
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            return [str(error) for error in errors]
        if isinstance(errors, str) and errors:
            return [errors]
    return [response.reason_phrase or f"HTTP {response.status_code}"]


def _require_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise RedmineAPIError(["Redmine returned an empty or non-object response"])
    return dict(data)


__all__ = [
    "RedmineAPIError",
    "RedmineClient",
    "RedmineConfigError",
    "RedmineTransportError",
    "get_redmine_client",
]


class RedmineError(RuntimeError):
    """Base class for failures talking to Redmine."""


class RedmineConfigError(RedmineError):
    """Raised when the client cannot be configured from the environment."""


class RedmineAPIError(RedmineError):
    """Raised when the Redmine API responds with an error status."""

    def __init__(self, messages: list[str], *, status_code: int | None = None) -> None:
        self.messages = list(messages) or ["Unknown error"]
        self.status_code = status_code
        super().__init__(self.messages[0])

    def __str__(self) -> str:
        text = "; ".join(self.messages)
        if self.status_code is None:
            return text
        return f"{text} (HTTP {self.status_code})"


class RedmineTransportError(RedmineError):
    """Raised when the request never produced an HTTP response."""


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RedmineConfigError(f"Environment variable {name} must be configured")
    return value


def _timeout_from_env() -> float:
    raw = os.getenv("REDMINE_TIMEOUT")
    if not raw:
        return 30.0
    try:
        return float(raw)
    except ValueError:
        raise RedmineConfigError("REDMINE_TIMEOUT must be a number of seconds") from None


class RedmineClient:
    """Thin async wrapper around Redmine's issue endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        base_url = base_url or _require_env("REDMINE_URL")
        # Normalise base URL to avoid eventual double slashes.
        base_url = base_url.rstrip("/")
        api_key = api_key or _require_env("REDMINE_API_KEY")

        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=_timeout_from_env(),
            headers={
                "Accept": "application/json",
                "X-Redmine-API-Key": api_key,
            },
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParamTypes | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> Any:
        path = path.lstrip("/")
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            raise RedmineTransportError(str(exc) or exc.__class__.__name__) from exc

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RedmineAPIError(
                _extract_messages(exc.response),
                status_code=exc.response.status_code,
            ) from exc
        if response.content:
            try:
                return response.json()
            except ValueError as exc:
                raise RedmineAPIError(
                    ["Redmine returned a response that is not valid JSON"],
                    status_code=response.status_code,
                ) from exc
        return None

    async def get_issue(self, issue_id: int, *, include: str | None = None) -> dict[str, Any]:
        params = {"include": include} if include else None
        data = await self._request("GET", f"/issues/{issue_id}.json", params=params)
        return _require_object(data)

    async def list_issues(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        data = await self._request("GET", "/issues.json", params=dict(params) if params else None)
        return _require_object(data)

    async def create_issue(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/issues.json", json={"issue": dict(payload)})
        return _require_object(data)

    async def update_issue(self, issue_id: int, payload: Mapping[str, Any]) -> None:
        await self._request("PUT", f"/issues/{issue_id}.json", json={"issue": dict(payload)})

    async def delete_issue(self, issue_id: int) -> None:
        await self._request("DELETE", f"/issues/{issue_id}.json")


@asynccontextmanager
async def get_redmine_client() -> AsyncIterator[RedmineClient]:
    client = RedmineClient()
    try:
        yield client
    finally:
        await client.close()

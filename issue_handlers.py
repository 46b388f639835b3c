"""Redmine issue tool handlers.

Each handler accepts the raw tool-call arguments, validates them into a typed
request, performs the Redmine call and returns a ``CallToolResult`` whose text
is an XML document. Failures never escape a handler: they come back as
``isError=True`` results carrying the most specific message available.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mcp.types import CallToolResult, TextContent
from pydantic import ValidationError

from issue_formatters import (
    XML_PROLOGUE,
    format_issue,
    format_issue_deleted,
    format_issue_result,
    format_issues,
)
from redmine_client import (
    RedmineAPIError,
    RedmineClient,
    RedmineConfigError,
    RedmineTransportError,
    get_redmine_client,
)
from redmine_models import Issue, IssueCollection

logger = logging.getLogger(__name__)

__all__ = [
    "FailureKind",
    "IssueCreateParams",
    "IssueDeleteParams",
    "IssueHandlers",
    "IssueListParams",
    "IssueShowParams",
    "IssueUpdateParams",
    "ValidationFailure",
    "validate_create_params",
    "validate_delete_params",
    "validate_list_params",
    "validate_show_params",
    "validate_update_params",
]


# ============================================================================
# Parameter validation
# ============================================================================


class FailureKind(str, Enum):
    INVALID_ARGUMENTS = "InvalidArguments"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    INVALID_NUMBER = "InvalidNumber"


@dataclass(frozen=True)
class ValidationFailure:
    kind: FailureKind
    message: str


@dataclass(frozen=True)
class IssueShowParams:
    id: int
    include: str | None = None


@dataclass(frozen=True)
class IssueListParams:
    query: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IssueCreateParams:
    payload: dict[str, Any]


@dataclass(frozen=True)
class IssueUpdateParams:
    id: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class IssueDeleteParams:
    id: int


class _Invalid(Exception):
    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.failure = ValidationFailure(kind, message)


_INTEGER_RE = re.compile(r"[+-]?\d+")

_NUMERIC_LIST_FILTERS = ("offset", "limit")
_TEXT_LIST_FILTERS = (
    "project_id",
    "tracker_id",
    "status_id",
    "assigned_to_id",
    "sort",
    "include",
    "subject",
)
_INTEGER_ISSUE_FIELDS = (
    "project_id",
    "tracker_id",
    "status_id",
    "priority_id",
    "category_id",
    "fixed_version_id",
    "assigned_to_id",
    "parent_issue_id",
    "done_ratio",
)
_TEXT_ISSUE_FIELDS = ("subject", "description", "start_date", "due_date")
_TEXT_UPDATE_FIELDS = ("notes",)


def _require_mapping(arguments: Any) -> Mapping[str, Any]:
    if not isinstance(arguments, Mapping):
        raise _Invalid(FailureKind.INVALID_ARGUMENTS, "Arguments must be an object")
    return arguments


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise _Invalid(FailureKind.INVALID_NUMBER, f"Invalid number for {name}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        return int(value.strip(), 10)
    raise _Invalid(FailureKind.INVALID_NUMBER, f"Invalid number for {name}: {value!r}")


def _parse_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise _Invalid(FailureKind.INVALID_NUMBER, f"Invalid number for {name}: {value!r}")
    parsed: float | None = None
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            parsed = None
    # NaN and infinities cannot be sent as JSON.
    if parsed is None or not math.isfinite(parsed):
        raise _Invalid(FailureKind.INVALID_NUMBER, f"Invalid number for {name}: {value!r}")
    return parsed


def _parse_text(value: Any, name: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise _Invalid(FailureKind.INVALID_ARGUMENTS, f"{name} must be a string")


def _parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(FailureKind.INVALID_ARGUMENTS, f"{name} must be a boolean")
    return value


def _require_issue_id(arguments: Mapping[str, Any]) -> int:
    value = arguments.get("id")
    if value is None or value == "":
        raise _Invalid(FailureKind.MISSING_REQUIRED_FIELD, "Issue ID is required")
    return _parse_int(value, "issue id")


def _parse_custom_fields(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        raise _Invalid(FailureKind.INVALID_ARGUMENTS, "custom_fields must be a list")
    parsed: list[dict[str, Any]] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            raise _Invalid(FailureKind.INVALID_ARGUMENTS, "custom_fields entries must be objects")
        if entry.get("id") is None:
            raise _Invalid(FailureKind.MISSING_REQUIRED_FIELD, "Custom field ID is required")
        field_value = entry.get("value")
        if isinstance(field_value, list):
            field_value = [_parse_text(item, "custom field value") for item in field_value]
        elif field_value is not None:
            field_value = _parse_text(field_value, "custom field value")
        parsed.append({"id": _parse_int(entry["id"], "custom field id"), "value": field_value})
    return parsed


def _issue_payload(arguments: Mapping[str, Any], *, text_fields: tuple[str, ...]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key, value in arguments.items():
        if value is None:
            continue
        if key in _INTEGER_ISSUE_FIELDS:
            payload[key] = _parse_int(value, key)
        elif key in text_fields:
            payload[key] = _parse_text(value, key)
        elif key == "estimated_hours":
            payload[key] = _parse_float(value, key)
        elif key in ("is_private", "private_notes"):
            payload[key] = _parse_bool(value, key)
        elif key == "custom_fields":
            payload[key] = _parse_custom_fields(value)
    return payload


def validate_show_params(arguments: Any) -> IssueShowParams | ValidationFailure:
    try:
        args = _require_mapping(arguments)
        issue_id = _require_issue_id(args)
        include = args.get("include")
        if include is not None and not isinstance(include, str):
            raise _Invalid(FailureKind.INVALID_ARGUMENTS, "include must be a string")
    except _Invalid as exc:
        return exc.failure
    return IssueShowParams(id=issue_id, include=include or None)


def validate_list_params(arguments: Any) -> IssueListParams | ValidationFailure:
    try:
        args = _require_mapping(arguments)
        query: dict[str, str] = {}
        for key, value in args.items():
            if value is None:
                continue
            if key in _NUMERIC_LIST_FILTERS:
                query[key] = str(_parse_int(value, key))
            elif key in _TEXT_LIST_FILTERS:
                query[key] = _parse_text(value, key)
    except _Invalid as exc:
        return exc.failure
    return IssueListParams(query=query)


def validate_create_params(arguments: Any) -> IssueCreateParams | ValidationFailure:
    try:
        args = _require_mapping(arguments)
        if args.get("project_id") is None:
            raise _Invalid(FailureKind.MISSING_REQUIRED_FIELD, "Project ID is required")
        if not args.get("subject"):
            raise _Invalid(FailureKind.MISSING_REQUIRED_FIELD, "Subject is required")
        payload = _issue_payload(args, text_fields=_TEXT_ISSUE_FIELDS)
    except _Invalid as exc:
        return exc.failure
    return IssueCreateParams(payload=payload)


def validate_update_params(arguments: Any) -> IssueUpdateParams | ValidationFailure:
    try:
        args = _require_mapping(arguments)
        issue_id = _require_issue_id(args)
        payload = _issue_payload(args, text_fields=_TEXT_ISSUE_FIELDS + _TEXT_UPDATE_FIELDS)
        if not payload:
            raise _Invalid(FailureKind.INVALID_ARGUMENTS, "At least one field to update is required")
    except _Invalid as exc:
        return exc.failure
    return IssueUpdateParams(id=issue_id, payload=payload)


def validate_delete_params(arguments: Any) -> IssueDeleteParams | ValidationFailure:
    try:
        args = _require_mapping(arguments)
        issue_id = _require_issue_id(args)
    except _Invalid as exc:
        return exc.failure
    return IssueDeleteParams(id=issue_id)


# ============================================================================
# Handlers
# ============================================================================


ClientFactory = Callable[[], AbstractAsyncContextManager[RedmineClient]]
ClientAction = Callable[[RedmineClient], Awaitable[str]]


def _text_result(text: str, *, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


def _error_result(message: str) -> CallToolResult:
    return _text_result(message, is_error=True)


def _decode_issue(data: Mapping[str, Any]) -> Issue:
    return Issue.model_validate(data.get("issue"))


class IssueHandlers:
    """Issue tools bound to a Redmine client factory."""

    def __init__(self, client_factory: ClientFactory = get_redmine_client) -> None:
        self._client_factory = client_factory

    async def _call(self, description: str, action: ClientAction) -> CallToolResult:
        try:
            async with self._client_factory() as client:
                text = await action(client)
        except RedmineAPIError as exc:
            logger.warning("Redmine API error while trying to %s: %s", description, exc)
            return _error_result(f"Failed to {description}: {exc}")
        except RedmineTransportError as exc:
            logger.warning("Could not reach Redmine while trying to %s: %s", description, exc)
            return _error_result(f"Failed to {description}: {exc}")
        except RedmineConfigError as exc:
            logger.error("Redmine client is not configured: %s", exc)
            return _error_result(f"Failed to {description}: {exc}")
        except ValidationError:
            logger.exception("Unexpected Redmine payload while trying to %s", description)
            return _error_result(f"Failed to {description}: Redmine returned an unexpected payload")
        except Exception:  # pragma: no cover - safety net
            logger.exception("Unexpected error while trying to %s", description)
            return _error_result("Internal server error")
        return _text_result(text)

    async def show_issue(self, arguments: Any) -> CallToolResult:
        params = validate_show_params(arguments)
        if isinstance(params, ValidationFailure):
            return _error_result(params.message)

        async def action(client: RedmineClient) -> str:
            data = await client.get_issue(params.id, include=params.include)
            return f"{XML_PROLOGUE}\n{format_issue(_decode_issue(data))}"

        logger.debug("Fetching issue %s (include=%s)", params.id, params.include)
        return await self._call(f"fetch issue #{params.id}", action)

    async def list_issues(self, arguments: Any) -> CallToolResult:
        params = validate_list_params({} if arguments is None else arguments)
        if isinstance(params, ValidationFailure):
            return _error_result(params.message)

        async def action(client: RedmineClient) -> str:
            data = await client.list_issues(params.query)
            return format_issues(IssueCollection.model_validate(data))

        logger.debug("Listing issues with filters %s", params.query)
        return await self._call("list issues", action)

    async def create_issue(self, arguments: Any) -> CallToolResult:
        params = validate_create_params(arguments)
        if isinstance(params, ValidationFailure):
            return _error_result(params.message)

        async def action(client: RedmineClient) -> str:
            data = await client.create_issue(params.payload)
            issue = _decode_issue(data)
            logger.info("Created issue #%s", issue.id)
            return format_issue_result(issue, "created")

        return await self._call("create issue", action)

    async def update_issue(self, arguments: Any) -> CallToolResult:
        params = validate_update_params(arguments)
        if isinstance(params, ValidationFailure):
            return _error_result(params.message)

        async def action(client: RedmineClient) -> str:
            await client.update_issue(params.id, params.payload)
            # Redmine answers updates with 204, so read the issue back.
            data = await client.get_issue(params.id)
            logger.info("Updated issue #%s", params.id)
            return format_issue_result(_decode_issue(data), "updated")

        return await self._call(f"update issue #{params.id}", action)

    async def delete_issue(self, arguments: Any) -> CallToolResult:
        params = validate_delete_params(arguments)
        if isinstance(params, ValidationFailure):
            return _error_result(params.message)

        async def action(client: RedmineClient) -> str:
            await client.delete_issue(params.id)
            logger.info("Deleted issue #%s", params.id)
            return format_issue_deleted(params.id)

        return await self._call(f"delete issue #{params.id}", action)

"""Typed views of the Redmine issue payloads rendered by the MCP tools."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "CustomField",
    "Issue",
    "IssueCollection",
    "Journal",
    "JournalDetail",
    "NamedReference",
]


class _RedmineModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class NamedReference(_RedmineModel):
    id: int
    name: str = ""


class CustomField(_RedmineModel):
    id: int
    name: str
    value: str | list[str] | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Redmine sends numbers and booleans for some field formats.
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item is not None]
        return str(value)


class JournalDetail(_RedmineModel):
    property: str
    name: str
    old_value: str | None = None
    new_value: str | None = None

    @field_validator("old_value", "new_value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class Journal(_RedmineModel):
    id: int
    user: NamedReference
    notes: str | None = None
    created_on: str
    private_notes: bool = False
    details: list[JournalDetail] = Field(default_factory=list)


class Issue(_RedmineModel):
    id: int
    subject: str
    project: NamedReference
    status: NamedReference
    priority: NamedReference
    tracker: NamedReference | None = None
    author: NamedReference | None = None
    assigned_to: NamedReference | None = None
    category: NamedReference | None = None
    fixed_version: NamedReference | None = None
    description: str | None = None
    start_date: str | None = None
    due_date: str | None = None
    estimated_hours: float | None = None
    done_ratio: int | None = None
    created_on: str | None = None
    updated_on: str | None = None
    custom_fields: list[CustomField] = Field(default_factory=list)
    journals: list[Journal] = Field(default_factory=list)


class IssueCollection(_RedmineModel):
    issues: list[Issue] = Field(default_factory=list)
    total_count: int = 0
    offset: int = 0
    limit: int = 0

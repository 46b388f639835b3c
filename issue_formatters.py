"""XML rendering of Redmine issues for MCP tool responses.

Every function here is a pure transform of the pydantic models in
``redmine_models``. Optional values that are missing or empty never produce an
element, and every piece of text goes through :func:`escape_xml`.
"""

from __future__ import annotations

from typing import Literal, Sequence

from redmine_models import CustomField, Issue, IssueCollection, Journal, JournalDetail

XML_PROLOGUE = '<?xml version="1.0" encoding="UTF-8"?>'
EMPTY_ISSUES_DOCUMENT = (
    XML_PROLOGUE + '\n<issues type="array" total_count="0" limit="0" offset="0" />'
)

IssueAction = Literal["created", "updated"]
_ACTIONS = ("created", "updated")

# Indentation only ever prefixes tag lines; element text is emitted untouched.
_STEP = "  "

_XML_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&apos;",
    }
)


def escape_xml(unsafe: str) -> str:
    """Replace the five XML-reserved characters with their named entities."""
    return unsafe.translate(_XML_ESCAPES)


def _element(tag: str, text: str, pad: str = "") -> str:
    return f"{pad}<{tag}>{escape_xml(text)}</{tag}>"


def _number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_custom_fields(fields: Sequence[CustomField], pad: str = "") -> str:
    inner = pad + _STEP
    leaf = inner + _STEP
    lines = [f"{pad}<custom_fields>"]
    for field in fields:
        if isinstance(field.value, list):
            value = ", ".join(field.value)
        else:
            value = field.value or ""
        lines.extend(
            [
                f"{inner}<field>",
                f"{leaf}<id>{field.id}</id>",
                _element("name", field.name, leaf),
                _element("value", value, leaf),
                f"{inner}</field>",
            ]
        )
    lines.append(f"{pad}</custom_fields>")
    return "\n".join(lines)


def format_journal_details(details: Sequence[JournalDetail], pad: str = "") -> str:
    if not details:
        return ""
    inner = pad + _STEP
    leaf = inner + _STEP
    lines = [f"{pad}<details>"]
    for detail in details:
        lines.extend(
            [
                f"{inner}<detail>",
                _element("property", detail.property, leaf),
                _element("name", detail.name, leaf),
            ]
        )
        if detail.old_value:
            lines.append(_element("old_value", detail.old_value, leaf))
        if detail.new_value:
            lines.append(_element("new_value", detail.new_value, leaf))
        lines.append(f"{inner}</detail>")
    lines.append(f"{pad}</details>")
    return "\n".join(lines)


def format_journals(journals: Sequence[Journal], pad: str = "") -> str:
    inner = pad + _STEP
    leaf = inner + _STEP
    lines = [f"{pad}<journals>"]
    for journal in journals:
        # Journal authors keep their id, unlike the issue-level references.
        lines.extend(
            [
                f"{inner}<journal>",
                f"{leaf}<id>{journal.id}</id>",
                f"{leaf}<user>",
                f"{leaf}{_STEP}<id>{journal.user.id}</id>",
                _element("name", journal.user.name, leaf + _STEP),
                f"{leaf}</user>",
            ]
        )
        if journal.notes:
            lines.append(_element("notes", journal.notes, leaf))
        lines.append(_element("created_on", journal.created_on, leaf))
        lines.append(f"{leaf}<private_notes>{'true' if journal.private_notes else 'false'}</private_notes>")
        if journal.details:
            lines.append(format_journal_details(journal.details, leaf))
        lines.append(f"{inner}</journal>")
    lines.append(f"{pad}</journals>")
    return "\n".join(lines)


def format_issue(issue: Issue, pad: str = "") -> str:
    """Render one issue as an ``<issue>`` fragment without an XML prologue.

    ``pad`` prefixes the structural lines when the fragment is embedded in a
    larger document.
    """
    inner = pad + _STEP
    lines = [
        f"{pad}<issue>",
        f"{inner}<id>{issue.id}</id>",
        _element("subject", issue.subject, inner),
        _element("project", issue.project.name, inner),
        _element("status", issue.status.name, inner),
        _element("priority", issue.priority.name, inner),
    ]
    if issue.assigned_to:
        lines.append(_element("assigned_to", issue.assigned_to.name, inner))
    if issue.category:
        lines.append(_element("category", issue.category.name, inner))
    if issue.fixed_version:
        lines.append(_element("version", issue.fixed_version.name, inner))
    if issue.start_date:
        lines.append(_element("start_date", issue.start_date, inner))
    if issue.due_date:
        lines.append(_element("due_date", issue.due_date, inner))
    if issue.estimated_hours:
        lines.append(f"{inner}<estimated_hours>{_number(issue.estimated_hours)}</estimated_hours>")
    lines.append(f"{inner}<progress>{issue.done_ratio or 0}%</progress>")
    if issue.description:
        lines.append(_element("description", issue.description, inner))
    if issue.custom_fields:
        lines.append(format_custom_fields(issue.custom_fields, inner))
    if issue.journals:
        lines.append(format_journals(issue.journals, inner))
    lines.append(f"{pad}</issue>")
    return "\n".join(lines)


def format_issues(collection: IssueCollection) -> str:
    """Render a page of issues as a complete XML document."""
    if not collection.issues:
        return EMPTY_ISSUES_DOCUMENT

    issues = "\n".join(format_issue(issue) for issue in collection.issues)
    return (
        f"{XML_PROLOGUE}\n"
        f'<issues type="array" total_count="{collection.total_count}" '
        f'offset="{collection.offset}" limit="{collection.limit}">\n'
        f"{issues}\n"
        "</issues>"
    )


def format_issue_result(issue: Issue, action: IssueAction) -> str:
    if action not in _ACTIONS:
        raise ValueError(f"action must be one of {', '.join(_ACTIONS)}")
    return "\n".join(
        [
            XML_PROLOGUE,
            "<response>",
            "  <status>success</status>",
            f"  <message>Issue #{issue.id} was successfully {action}.</message>",
            format_issue(issue, _STEP),
            "</response>",
        ]
    )


def format_issue_deleted(issue_id: int) -> str:
    return "\n".join(
        [
            XML_PROLOGUE,
            "<response>",
            "  <status>success</status>",
            f"  <message>Issue #{issue_id} was successfully deleted.</message>",
            "</response>",
        ]
    )

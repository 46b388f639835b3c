from __future__ import annotations

import pytest
from mcp.types import CallToolResult

import app


@pytest.fixture()
def tool_transport(monkeypatch, client_factory, transport):
    monkeypatch.setattr(app, "get_redmine_client", client_factory)
    return transport


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_show_tool(tool_transport, issue_payload):
    tool_transport.reply_json(issue_payload())

    result = await app.redmine_issues_show(id=1, include="journals")

    assert result.isError is False
    assert "<journals>" in result.content[0].text
    assert dict(tool_transport.requests[0].url.params) == {"include": "journals"}


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_show_tool_rejects_bad_id(tool_transport):
    result = await app.redmine_issues_show(id="abc")

    assert result.isError is True
    assert "Invalid number" in result.content[0].text
    assert tool_transport.requests == []


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_list_tool_skips_unset_filters(tool_transport):
    tool_transport.reply_json({"issues": [], "total_count": 0, "offset": 0, "limit": 25})

    result = await app.redmine_issues_list(status_id="open", limit=10)

    assert result.isError is False
    assert dict(tool_transport.requests[0].url.params) == {"status_id": "open", "limit": "10"}


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_create_tool(tool_transport, issue_payload):
    tool_transport.reply_json(issue_payload(id=77), status_code=201)

    result = await app.redmine_issues_create(
        project_id=1,
        subject="From tool",
        custom_fields=[{"id": 1, "value": "High"}],
    )

    assert "Issue #77 was successfully created." in result.content[0].text
    assert tool_transport.body(0) == {
        "issue": {
            "project_id": 1,
            "subject": "From tool",
            "custom_fields": [{"id": 1, "value": "High"}],
        }
    }


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_update_tool_conflict(tool_transport, issue_payload):
    tool_transport.reply_errors(409, ["Issue was updated by another user"])

    result = await app.redmine_issues_update(id=4, status_id=3)

    assert result.isError is True
    assert "Issue was updated by another user" in result.content[0].text
    assert len(tool_transport.requests) == 1


@pytest.mark.anyio("asyncio")
async def test_redmine_issues_delete_tool(tool_transport, issue_payload):
    tool_transport.reply_empty(204)

    result = await app.redmine_issues_delete(id="9")

    assert result.isError is False
    assert "Issue #9 was successfully deleted." in result.content[0].text


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("tool", ["redmine.issues.show", "redmine.issues.update", "redmine.issues.delete"])
async def test_dispatched_tool_without_id_reports_missing_id(tool_transport, tool):
    result = await app.mcp.call_tool(tool, {})

    assert isinstance(result, CallToolResult)
    assert result.isError is True
    assert "issue id is required" in result.content[0].text.lower()
    assert tool_transport.requests == []


@pytest.mark.anyio("asyncio")
async def test_dispatched_create_without_subject_reports_missing_field(tool_transport):
    result = await app.mcp.call_tool("redmine.issues.create", {"project_id": 1})

    assert isinstance(result, CallToolResult)
    assert result.isError is True
    assert "subject is required" in result.content[0].text.lower()


@pytest.mark.anyio("asyncio")
async def test_dispatched_show_returns_issue(tool_transport, issue_payload):
    tool_transport.reply_json(issue_payload())

    result = await app.mcp.call_tool("redmine.issues.show", {"id": "1", "include": "children,attachments"})

    assert isinstance(result, CallToolResult)
    assert result.isError is False
    assert "<issue>" in result.content[0].text
    assert dict(tool_transport.requests[0].url.params) == {"include": "children,attachments"}

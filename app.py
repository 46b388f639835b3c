import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Mount, Route

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from mcp.types import CallToolResult, ToolAnnotations

from issue_handlers import IssueHandlers
from redmine_client import get_redmine_client

logger = logging.getLogger(__name__)

# Configure allowed hosts for DNS rebinding protection
# This allows the server to accept requests from the reverse proxy
ALLOWED_HOST = os.getenv("ALLOWED_HOST", "localhost")

mcp = FastMCP(
    "Redmine MCP",
    sse_path="/",
    streamable_http_path="/",
    transport_security=TransportSecuritySettings(
        enable_dns_rebinding_protection=True,
        allowed_hosts=[f"{ALLOWED_HOST}:*", "localhost:*", "127.0.0.1:*", "[::1]:*"],
        allowed_origins=[f"https://{ALLOWED_HOST}:*", "http://localhost:*", "http://127.0.0.1:*"],
    ),
)
# Prebuild sub-apps so we can wire their lifespans into the parent Starlette app.
sse_subapp = mcp.sse_app()


@sse_subapp.middleware("http")
async def _normalize_sse_path(request, call_next):
    # Mounted sub-apps may receive an empty path for their root routes.
    if request.scope.get("path") in ("", None):
        request.scope["path"] = "/"
        request.scope["raw_path"] = b"/"
    return await call_next(request)
streamable_http_subapp = mcp.streamable_http_app()
streamable_http_subapp.router.redirect_slashes = False


@streamable_http_subapp.middleware("http")
async def _normalize_blank_path(request, call_next):
    # Starlette mounts strip the trailing slash, leaving an empty path for "/mcp".
    # Ensure the downstream Streamable HTTP route sees the root path.
    if request.scope.get("path") == "":
        request.scope["path"] = "/"
        request.scope["raw_path"] = b"/"
    return await call_next(request)


def _arguments(**kwargs: Any) -> dict[str, Any]:
    return {key: value for key, value in kwargs.items() if value is not None}


def _handlers() -> IssueHandlers:
    # Resolved per call so tests can swap the client factory on this module.
    return IssueHandlers(get_redmine_client)


@mcp.tool(
    name="redmine.issues.show",
    annotations=ToolAnnotations(openWorldHint=True, readOnlyHint=True, idempotentHint=True),
)
async def redmine_issues_show(id: int | str | None = None, include: str | None = None) -> CallToolResult:
    """Fetch one Redmine issue as XML.

    ``include`` is a comma-separated list of related data such as
    ``children,attachments,relations,changesets,journals,watchers``.
    """

    return await _handlers().show_issue(_arguments(id=id, include=include))


@mcp.tool(
    name="redmine.issues.list",
    annotations=ToolAnnotations(openWorldHint=True, readOnlyHint=True, idempotentHint=True),
)
async def redmine_issues_list(
    project_id: int | str | None = None,
    tracker_id: int | str | None = None,
    status_id: int | str | None = None,
    assigned_to_id: int | str | None = None,
    subject: str | None = None,
    sort: str | None = None,
    include: str | None = None,
    offset: int | str | None = None,
    limit: int | str | None = None,
) -> CallToolResult:
    """List Redmine issues as an XML document with pagination attributes."""

    return await _handlers().list_issues(
        _arguments(
            project_id=project_id,
            tracker_id=tracker_id,
            status_id=status_id,
            assigned_to_id=assigned_to_id,
            subject=subject,
            sort=sort,
            include=include,
            offset=offset,
            limit=limit,
        )
    )


@mcp.tool(
    name="redmine.issues.create",
    annotations=ToolAnnotations(openWorldHint=True),
)
async def redmine_issues_create(
    project_id: int | str | None = None,
    subject: str | None = None,
    tracker_id: int | str | None = None,
    status_id: int | str | None = None,
    priority_id: int | str | None = None,
    description: str | None = None,
    category_id: int | str | None = None,
    fixed_version_id: int | str | None = None,
    assigned_to_id: int | str | None = None,
    parent_issue_id: int | str | None = None,
    start_date: str | None = None,
    due_date: str | None = None,
    estimated_hours: float | str | None = None,
    done_ratio: int | str | None = None,
    is_private: bool | None = None,
    custom_fields: list[dict[str, Any]] | None = None,
) -> CallToolResult:
    """Create a Redmine issue and return it wrapped in a success response."""

    return await _handlers().create_issue(
        _arguments(
            project_id=project_id,
            subject=subject,
            tracker_id=tracker_id,
            status_id=status_id,
            priority_id=priority_id,
            description=description,
            category_id=category_id,
            fixed_version_id=fixed_version_id,
            assigned_to_id=assigned_to_id,
            parent_issue_id=parent_issue_id,
            start_date=start_date,
            due_date=due_date,
            estimated_hours=estimated_hours,
            done_ratio=done_ratio,
            is_private=is_private,
            custom_fields=custom_fields,
        )
    )


@mcp.tool(
    name="redmine.issues.update",
    annotations=ToolAnnotations(openWorldHint=True, idempotentHint=True),
)
async def redmine_issues_update(
    id: int | str | None = None,
    subject: str | None = None,
    tracker_id: int | str | None = None,
    status_id: int | str | None = None,
    priority_id: int | str | None = None,
    description: str | None = None,
    category_id: int | str | None = None,
    fixed_version_id: int | str | None = None,
    assigned_to_id: int | str | None = None,
    parent_issue_id: int | str | None = None,
    start_date: str | None = None,
    due_date: str | None = None,
    estimated_hours: float | str | None = None,
    done_ratio: int | str | None = None,
    is_private: bool | None = None,
    custom_fields: list[dict[str, Any]] | None = None,
    notes: str | None = None,
    private_notes: bool | None = None,
) -> CallToolResult:
    """Update a Redmine issue; ``notes`` adds a journal entry."""

    return await _handlers().update_issue(
        _arguments(
            id=id,
            subject=subject,
            tracker_id=tracker_id,
            status_id=status_id,
            priority_id=priority_id,
            description=description,
            category_id=category_id,
            fixed_version_id=fixed_version_id,
            assigned_to_id=assigned_to_id,
            parent_issue_id=parent_issue_id,
            start_date=start_date,
            due_date=due_date,
            estimated_hours=estimated_hours,
            done_ratio=done_ratio,
            is_private=is_private,
            custom_fields=custom_fields,
            notes=notes,
            private_notes=private_notes,
        )
    )


@mcp.tool(
    name="redmine.issues.delete",
    annotations=ToolAnnotations(openWorldHint=True, destructiveHint=True, idempotentHint=True),
)
async def redmine_issues_delete(id: int | str | None = None) -> CallToolResult:
    """Delete a Redmine issue."""

    return await _handlers().delete_issue(_arguments(id=id))


async def healthz(_):
    return PlainTextResponse("ok", status_code=200)


async def root(_):
    return PlainTextResponse("Redmine MCP up", status_code=200)

@asynccontextmanager
async def lifespan(_app):
    # The streamable HTTP transport requires its session manager task group to be running.
    async with mcp.session_manager.run():
        yield


# Mount the MCP streamable app under both /mcp and /mcp/ so proxies that normalize
# paths differently will still carry the session headers through without a redirect.
app = Starlette(
    routes=[
        Route("/", root),
        Route("/healthz", healthz),
        Mount("/sse", app=sse_subapp),
        Mount("/mcp", app=streamable_http_subapp),
    ],
    lifespan=lifespan,
)
app.router.redirect_slashes = False


@app.middleware("http")
async def _rewrite_mcp_path(request, call_next):
    if request.scope.get("path") == "/mcp":
        request.scope["path"] = "/mcp/"
        request.scope["raw_path"] = b"/mcp/"
    return await call_next(request)


@app.middleware("http")
async def _rewrite_sse_path(request, call_next):
    if request.scope.get("path") == "/sse":
        request.scope["path"] = "/sse/"
        request.scope["raw_path"] = b"/sse/"
    return await call_next(request)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))

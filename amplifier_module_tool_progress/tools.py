"""
Progress log tools for AI agents.

Each tool follows the Amplifier Tool protocol:
- name: Tool identifier
- description: Human-readable description
- input_schema: JSON Schema for input validation
- execute(input): Async method that returns ToolResult

Workflow: log_progress after finishing work, search_logs to find earlier
entries, get_context to read one entry's summary (and optionally its
full content).
"""

from typing import Any
import logging

from amplifier_core import ToolResult

from .context import ContextService
from .errors import (
    NotFoundError,
    StorageError,
    ValidationError,
    log_error,
)
from .store import DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT, ProgressStore
from . import validation

logger = logging.getLogger(__name__)


def failure(error: Exception, tool: str) -> ToolResult:
    """Turn an exception into a failed ToolResult, logging it by kind."""
    if isinstance(error, ValidationError):
        log_error(error, "validation", tool=tool)
        kind = "validation"
    elif isinstance(error, NotFoundError):
        log_error(error, "not_found", tool=tool)
        kind = "not_found"
    elif isinstance(error, StorageError):
        # Already logged with its context where it was raised
        kind = "storage"
    else:
        log_error(error, "system", tool=tool)
        kind = "system"
    return ToolResult(success=False, error={"message": str(error), "type": kind})


class LogProgressTool:
    """Tool to record completed work."""

    def __init__(self, store: ProgressStore):
        self.store = store

    @property
    def name(self) -> str:
        return "log_progress"

    @property
    def description(self) -> str:
        return (
            "Log completed work with title, content, and optional tags. Use after finishing "
            "significant tasks, decisions, or milestones. Returns entry ID for future reference."
        )

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "projectId": {
                    "type": "string",
                    "maxLength": validation.MAX_PROJECT_ID_LENGTH,
                    "description": "Project ID, e.g. the repository name (max 100 chars)"
                },
                "title": {
                    "type": "string",
                    "maxLength": validation.MAX_TITLE_LENGTH,
                    "description": "Entry title (max 100 chars)"
                },
                "content": {
                    "type": "string",
                    "maxLength": validation.MAX_CONTENT_LENGTH,
                    "description": "What was done (max 10000 chars)"
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string", "maxLength": validation.MAX_TAG_LENGTH},
                    "maxItems": validation.MAX_TAGS,
                    "description": "Optional tags (max 10 tags, each max 50 chars)"
                },
                "agentId": {
                    "type": "string",
                    "maxLength": validation.MAX_AGENT_ID_LENGTH,
                    "description": "Optional agent ID (max 100 chars)"
                }
            },
            "required": ["projectId", "title", "content"]
        }

    async def execute(self, input: dict[str, Any]) -> ToolResult:
        try:
            project_id = validation.require_string(input, "projectId", validation.MAX_PROJECT_ID_LENGTH)
            title = validation.require_string(input, "title", validation.MAX_TITLE_LENGTH)
            content = validation.require_string(input, "content", validation.MAX_CONTENT_LENGTH)
            tags = validation.optional_tags(input, "tags")
            agent_id = validation.optional_string(input, "agentId", validation.MAX_AGENT_ID_LENGTH)

            self.store.ensure_project(project_id)
            entry = self.store.create_entry(
                project_id=project_id,
                title=title,
                content=content,
                tags=tags,
                agent_id=agent_id,
            )

            return ToolResult(
                success=True,
                output={
                    "id": entry.id,
                    "projectId": entry.project_id,
                    "title": entry.title,
                    "createdAt": entry.created_at,
                    "message": f"Logged: {entry.title} (ID: {entry.id}) in project {entry.project_id}",
                }
            )
        except Exception as e:
            return failure(e, self.name)


class GetContextTool:
    """Tool to get one entry's summary and optionally its full content."""

    def __init__(self, context: ContextService):
        self.context = context

    @property
    def name(self) -> str:
        return "get_context"

    @property
    def description(self) -> str:
        return (
            "Retrieve detailed context and AI-generated summary for a specific entry. "
            "Use search_logs first to find relevant IDs, then get full context with this tool."
        )

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "projectId": {
                    "type": "string",
                    "description": "Project ID"
                },
                "id": {
                    "type": "string",
                    "description": "Entry ID"
                },
                "includeFull": {
                    "type": "boolean",
                    "description": "Include full content in response",
                    "default": False
                }
            },
            "required": ["projectId", "id"]
        }

    async def execute(self, input: dict[str, Any]) -> ToolResult:
        try:
            project_id = validation.require_string(input, "projectId")
            entry_id = validation.require_string(input, "id")
            include_full = validation.optional_bool(input, "includeFull")

            result = await self.context.get_context(project_id, entry_id, include_full=include_full)

            return ToolResult(success=True, output=result.to_dict())
        except Exception as e:
            return failure(e, self.name)


class SearchLogsTool:
    """Tool to find entries by title, tags, or date range."""

    def __init__(self, store: ProgressStore):
        self.store = store

    @property
    def name(self) -> str:
        return "search_logs"

    @property
    def description(self) -> str:
        return (
            "Find relevant progress entries by query, tags, or date range. Use to discover "
            "prior work before starting new tasks or when context is needed."
        )

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "projectId": {
                    "type": "string",
                    "description": "Project ID"
                },
                "query": {
                    "type": "string",
                    "description": "Optional case-insensitive title substring"
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional tags; entries must have all of them"
                },
                "startDate": {
                    "type": "string",
                    "description": "Optional inclusive start date (ISO 8601)"
                },
                "endDate": {
                    "type": "string",
                    "description": "Optional inclusive end date (ISO 8601)"
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_SEARCH_LIMIT,
                    "description": "Maximum number of results (1-100)",
                    "default": DEFAULT_SEARCH_LIMIT
                }
            },
            "required": ["projectId"]
        }

    async def execute(self, input: dict[str, Any]) -> ToolResult:
        try:
            project_id = validation.require_string(input, "projectId")
            query = validation.optional_string(input, "query")
            tags = validation.optional_tags(input, "tags", max_tags=None)
            start_date = validation.optional_timestamp(input, "startDate")
            end_date = validation.optional_timestamp(input, "endDate")
            limit = validation.search_limit(input)

            result = self.store.search(
                project_id=project_id,
                query=query,
                tags=tags,
                start_date=start_date,
                end_date=end_date,
                limit=limit,
            )

            output = result.to_dict()
            output["message"] = self._describe(project_id, query, result.total, output["entries"])
            return ToolResult(success=True, output=output)
        except Exception as e:
            return failure(e, self.name)

    @staticmethod
    def _describe(project_id: str, query: str | None, total: int, entries: list[dict]) -> str:
        matching = f" matching '{query}'" if query else ""
        if total == 0:
            return f"No entries found{matching} in {project_id}"

        noun = "entry" if total == 1 else "entries"
        lines = [f"Found {total} {noun}{matching} in {project_id}:"]
        for i, entry in enumerate(entries, 1):
            lines.append(f"{i}. {entry['id']} - {entry['title']} ({entry['createdAt'][:10]})")
        return "\n".join(lines)

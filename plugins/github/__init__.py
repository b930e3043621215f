"""GitHub plugin for workchat.

Needs a ``github`` credential (an OAuth or personal access token) in the
chat request; without one it contributes no tools.
"""

from __future__ import annotations

import base64
from typing import Any

import httpx

from workchat.agent.prompt import UserContext
from workchat.agent.tools import Tool
from workchat.extensions.base import WorkchatPlugin

API_URL = "https://api.github.com"


class _GitHubTool(Tool):
    def __init__(self, token: str) -> None:
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | list[Any]:
        """GET a GitHub API path. Contents endpoints return a list for directories."""
        async with httpx.AsyncClient(base_url=API_URL, headers=self._headers, timeout=20) as client:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()


class SearchTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "github__search"

    @property
    def description(self) -> str:
        return "Search GitHub issues and pull requests the user can access."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query keywords"},
                "maxResults": {
                    "type": "integer",
                    "description": "Maximum number of results to return (1-100, default: 10)",
                    "minimum": 1,
                    "maximum": 100,
                },
            },
            "required": ["query"],
        }

    async def invoke(self, arguments: dict[str, Any]) -> str:
        query = str(arguments.get("query", "")).strip()
        if not query:
            raise ValueError("query is required")
        per_page = max(1, min(100, int(arguments.get("maxResults", 10))))

        payload = await self._get(
            "/search/issues",
            {"q": query, "per_page": per_page, "sort": "updated", "order": "desc"},
        )
        if not isinstance(payload, dict):
            raise ValueError("Unexpected response from GitHub search")
        items = payload.get("items") or []
        if not items:
            return f"No issues or pull requests found for: {query}"

        lines = [f"{payload.get('total_count', len(items))} results for: {query}"]
        for item in items:
            kind = "PR" if item.get("pull_request") else "Issue"
            lines.append(f"- [{kind}] {item.get('title', '(no title)')} ({item.get('state', '?')})")
            lines.append(f"  {item.get('html_url', '')}  updated {item.get('updated_at', '?')}")
        return "\n".join(lines)


class FileContentTool(_GitHubTool):
    @property
    def name(self) -> str:
        return "github__get_file_content"

    @property
    def description(self) -> str:
        return "Get the full content of a specific file from a GitHub repository."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "owner": {"type": "string", "description": "Repository owner (user or organization)"},
                "repo": {"type": "string", "description": "Repository name"},
                "path": {"type": "string", "description": "File path within the repository"},
                "ref": {"type": "string", "description": "Branch, tag, or commit SHA"},
            },
            "required": ["owner", "repo", "path"],
        }

    async def invoke(self, arguments: dict[str, Any]) -> str:
        owner, repo, path = arguments["owner"], arguments["repo"], arguments["path"]
        params = {"ref": arguments["ref"]} if arguments.get("ref") else None
        payload = await self._get(f"/repos/{owner}/{repo}/contents/{path}", params)
        if isinstance(payload, list):
            raise ValueError(f"{path} is a directory, not a file")
        if payload.get("encoding") != "base64":
            raise ValueError(f"Unsupported encoding for {path}: {payload.get('encoding')}")
        return base64.b64decode(payload.get("content", "")).decode("utf-8", errors="replace")


class GitHubPlugin(WorkchatPlugin):
    @property
    def name(self) -> str:
        return "github"

    @property
    def description(self) -> str:
        return "Search issues and pull requests, and read repository files"

    async def tools(
        self, credentials: dict[str, Any], user_context: UserContext | None = None
    ) -> list[Tool]:
        token = credentials.get("github")
        if not token:
            return []
        return [SearchTool(token), FileContentTool(token)]

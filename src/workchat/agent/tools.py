"""Tool contract and per-request registry.

Platform wrappers (mail, calendar, issue tracker, wiki, chat, source hosting)
all reach the orchestrator as ``Tool`` instances. The core never looks inside
them: it only needs a unique name, a description and JSON schema for the
model, and an ``invoke`` coroutine that returns text or raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable view of a tool as the model sees it."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


class Tool(ABC):
    """Base class for every tool adapter."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Globally unique tool name, e.g. ``slack__search_messages``."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the LLM."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool arguments."""
        ...

    @abstractmethod
    async def invoke(self, arguments: dict[str, Any]) -> str:
        """Run the tool. Raise on failure; the engine turns it into an error result."""
        ...

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.parameters,
        )


class ToolRegistry:
    """The tool catalog of one request."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self.tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool; a later tool with the same name replaces the earlier one."""
        if tool.name in self.tools:
            logger.warning("tool.duplicate", name=tool.name, action="replacing")
        self.tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    def descriptors(self) -> list[ToolDescriptor]:
        return [tool.descriptor() for tool in self.tools.values()]

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return [d.to_openai_tool() for d in self.descriptors()]

    def __len__(self) -> int:
        return len(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self.tools

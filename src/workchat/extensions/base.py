"""Plugin base class — the contract for workchat tool providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from workchat.agent.prompt import UserContext
    from workchat.agent.tools import Tool


class WorkchatPlugin(ABC):
    """Base class for all workchat plugins.

    To create a plugin:
    1. Create a directory in <plugins_dir>/<name>/
    2. Add a plugin.yaml with metadata
    3. Add an __init__.py exporting a class that inherits WorkchatPlugin
    4. Implement tools() to return the tools the caller's credentials unlock
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique plugin name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """What this plugin does."""
        ...

    @property
    def version(self) -> str:
        """Plugin version."""
        return "0.1.0"

    @abstractmethod
    async def tools(
        self,
        credentials: dict[str, Any],
        user_context: UserContext | None = None,
    ) -> list[Tool]:
        """Return the tools available for one request.

        Args:
            credentials: Per-platform tokens supplied by the caller.
            user_context: Who is asking, if known.

        Returns:
            Tools for this request; an empty list when the credentials this
            plugin needs are missing.
        """
        ...

    async def on_unload(self) -> None:
        """Called on shutdown. Clean up resources."""
        pass

    def __repr__(self) -> str:
        return f"<Plugin: {self.name} v{self.version}>"

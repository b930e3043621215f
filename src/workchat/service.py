"""Chat service — the single entrypoint shared by the HTTP API and the CLI."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from workchat.agent.cancellation import CancellationToken
from workchat.agent.engine import TurnEngine, TurnRequest, TurnResult
from workchat.agent.progress import ProgressCallback
from workchat.agent.prompt import UserContext
from workchat.agent.tools import Tool
from workchat.errors import NoToolsAvailableError
from workchat.extensions.base import WorkchatPlugin
from workchat.logging import bind_conversation

logger = structlog.get_logger()


@dataclass
class ChatRequest:
    """One inbound chat message with the caller's credentials."""

    input: str
    conversation_id: str | None = None
    credentials: dict[str, Any] = field(default_factory=dict)
    user_context: UserContext | None = None
    on_progress: ProgressCallback | None = None
    cancel_token: CancellationToken | None = None


class ChatService:
    """Resolves the tools a request may use, then runs the turn engine."""

    def __init__(self, engine: TurnEngine, plugins: Sequence[WorkchatPlugin] = ()) -> None:
        self.engine = engine
        self.plugins = list(plugins)

    async def collect_tools(
        self,
        credentials: dict[str, Any],
        user_context: UserContext | None = None,
    ) -> list[Tool]:
        tools: list[Tool] = []
        for plugin in self.plugins:
            try:
                provided = await plugin.tools(credentials, user_context)
            except Exception as e:
                logger.error("plugins.tools_failed", plugin=plugin.name, error=str(e))
                continue
            tools.extend(provided)
        logger.debug("service.tools_collected", count=len(tools))
        return tools

    async def handle_chat(self, request: ChatRequest) -> TurnResult:
        conversation_id = request.conversation_id or str(uuid.uuid4())
        with bind_conversation(conversation_id):
            tools = await self.collect_tools(request.credentials, request.user_context)
            if not tools:
                logger.warning("service.no_tools", plugins=len(self.plugins))
                raise NoToolsAvailableError()
            return await self.engine.run(
                TurnRequest(
                    input=request.input,
                    conversation_id=conversation_id,
                    tools=tools,
                    user_context=request.user_context,
                    on_progress=request.on_progress,
                    cancel_token=request.cancel_token,
                )
            )

    async def shutdown(self) -> None:
        for plugin in self.plugins:
            try:
                await plugin.on_unload()
            except Exception as e:
                logger.warning("plugins.unload_failed", plugin=plugin.name, error=str(e))

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from workchat.agent.messages import AssistantMessage, Message, ToolCall
from workchat.agent.progress import ProgressEvent
from workchat.agent.store import InMemoryConversationStore
from workchat.agent.tools import Tool
from workchat.extensions.base import WorkchatPlugin


class EchoTool(Tool):
    """Returns a fixed string, or raises when built with ``error``."""

    def __init__(self, name: str, result: str = "ok", error: Exception | None = None) -> None:
        self._name = name
        self._result = result
        self._error = error
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"{self._name} tool"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def invoke(self, arguments: dict[str, Any]) -> str:
        self.calls.append(arguments)
        if self._error is not None:
            raise self._error
        return self._result


class ScriptedGateway:
    """Model gateway that replays scripted assistant messages.

    Each script entry is an ``AssistantMessage``, an exception to raise, or a
    callable taking the history and returning either of those.
    """

    def __init__(self, script: list[Any]) -> None:
        self.script = list(script)
        self.histories: list[list[Message]] = []
        self.bound: list[list[Any]] = []

    def bind_tools(self, tools):
        self.bound.append(list(tools))
        return self

    async def invoke(self, history: list[Message]) -> AssistantMessage:
        self.histories.append(list(history))
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if callable(step):
            step = step(history)
        if isinstance(step, BaseException):
            raise step
        return step


def tool_calls(*specs: tuple[str, str], **arguments: Any) -> AssistantMessage:
    """Assistant message requesting ``(call_id, tool_name)`` pairs."""
    return AssistantMessage(
        content="",
        tool_calls=[ToolCall(id=call_id, name=name, arguments=dict(arguments)) for call_id, name in specs],
    )


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def events() -> list[ProgressEvent]:
    return []


@pytest.fixture
def on_progress(events: list[ProgressEvent]) -> Callable[[ProgressEvent], None]:
    return events.append


class StaticPlugin(WorkchatPlugin):
    def __init__(self, name: str, tools=(), error: Exception | None = None, needs: str | None = None) -> None:
        self._name = name
        self._tools = list(tools)
        self._error = error
        self._needs = needs
        self.unloaded = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "test plugin"

    async def tools(self, credentials, user_context=None):
        if self._error is not None:
            raise self._error
        if self._needs and not credentials.get(self._needs):
            return []
        return self._tools

    async def on_unload(self) -> None:
        self.unloaded = True

"""Progress events pushed to streaming UIs while a turn runs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import structlog

from workchat.agent.messages import TokenUsage

logger = structlog.get_logger()

ProgressType = Literal[
    "status",
    "ai_processing",
    "tool_start",
    "tool_complete",
    "tool_error",
    "token_usage",
]


@dataclass(frozen=True)
class ProgressEvent:
    type: ProgressType
    data: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Fire-and-forget wrapper around an optional progress callback.

    Events are delivered synchronously in emission order. A callback that
    raises is logged and otherwise ignored so a broken sink cannot abort a turn.
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback

    def emit(self, event: ProgressEvent) -> None:
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as e:
            logger.warning("progress.callback_failed", event_type=event.type, error=str(e))

    def status(self, text: str) -> None:
        self.emit(ProgressEvent("status", text))

    def ai_processing(self, text: str = "Processing with AI...") -> None:
        self.emit(ProgressEvent("ai_processing", text))

    def tool_start(self, tool: str, args: dict[str, Any]) -> None:
        self.emit(ProgressEvent("tool_start", {"tool": tool, "args": args}))

    def tool_complete(self, tool: str) -> None:
        self.emit(ProgressEvent("tool_complete", {"tool": tool}))

    def tool_error(self, tool: str, error: str) -> None:
        self.emit(ProgressEvent("tool_error", {"tool": tool, "error": error}))

    def token_usage(self, usage: TokenUsage) -> None:
        self.emit(ProgressEvent("token_usage", usage.to_dict()))

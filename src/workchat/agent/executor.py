"""Tool batch execution with per-call failure containment."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import structlog

from workchat.agent.cancellation import CancellationToken
from workchat.agent.messages import ToolCall, ToolResultMessage
from workchat.agent.progress import ProgressEmitter
from workchat.agent.tools import ToolRegistry
from workchat.errors import TurnCancelledError

logger = structlog.get_logger()

DEFAULT_MAX_RESULT_CHARS = 50_000


@dataclass
class ToolOutcome:
    """What happened to one tool call: text output or an error description."""

    call: ToolCall
    result: str = ""
    error: str | None = None
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_message(self) -> ToolResultMessage:
        if self.error is not None:
            content = f"Error executing {self.call.name}: {self.error}"
        else:
            content = self.result
        return ToolResultMessage(
            tool_call_id=self.call.id,
            name=self.call.name,
            content=content,
            is_error=self.failed,
        )


def truncate_result(text: str, limit: int = DEFAULT_MAX_RESULT_CHARS) -> str:
    """Cut ``text`` to ``limit`` characters and say how much was dropped."""
    if len(text) <= limit:
        return text
    dropped = len(text) - limit
    return f"{text[:limit]}\n\n[truncated {dropped} characters]"


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class ToolExecutor:
    """Runs every tool call of one assistant turn and joins on all of them.

    No single call can fail the batch: a missing tool, malformed arguments or
    an exception from the adapter each become an error outcome for that call
    only. Outcomes come back in call order whatever order they finish in.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        progress: ProgressEmitter,
        *,
        max_result_chars: int = DEFAULT_MAX_RESULT_CHARS,
        parallel: bool = True,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.registry = registry
        self.progress = progress
        self.max_result_chars = max_result_chars
        self.parallel = parallel
        self.cancel_token = cancel_token

    async def execute_batch(self, calls: list[ToolCall]) -> list[ToolOutcome]:
        if self.parallel:
            # Let every sibling settle before surfacing a cancellation
            settled = await asyncio.gather(
                *(self.execute(call) for call in calls),
                return_exceptions=True,
            )
            for item in settled:
                if isinstance(item, BaseException):
                    raise item
            return list(settled)
        outcomes = []
        for call in calls:
            outcomes.append(await self.execute(call))
        return outcomes

    async def execute(self, call: ToolCall) -> ToolOutcome:
        """Execute one call; never raises except on cancellation."""
        self.progress.tool_start(call.name, call.arguments)
        logger.info("tool.call", tool=call.name, call_id=call.id)

        tool = self.registry.get(call.name)
        if tool is None:
            return self._fail(call, f"Tool {call.name} not found")
        if call.invalid_arguments is not None:
            return self._fail(call, f"Invalid JSON arguments: {call.invalid_arguments}")

        start = time.monotonic()
        try:
            if self.cancel_token is not None:
                raw = await self.cancel_token.run(tool.invoke(call.arguments))
            else:
                raw = await tool.invoke(call.arguments)
        except TurnCancelledError:
            raise
        except Exception as e:
            return self._fail(call, _describe(e), start)

        text = raw if isinstance(raw, str) else str(raw)
        result = truncate_result(text, self.max_result_chars)
        duration_ms = int((time.monotonic() - start) * 1000)
        if len(result) != len(text):
            logger.warning(
                "tool.result_truncated",
                tool=call.name,
                original_length=len(text),
                limit=self.max_result_chars,
            )
        self.progress.tool_complete(call.name)
        logger.info(
            "tool.executed",
            tool=call.name,
            result_length=len(result),
            duration_ms=duration_ms,
        )
        return ToolOutcome(call=call, result=result, duration_ms=duration_ms)

    def _fail(self, call: ToolCall, error: str, start: float | None = None) -> ToolOutcome:
        duration_ms = int((time.monotonic() - start) * 1000) if start is not None else 0
        self.progress.tool_error(call.name, error)
        logger.error("tool.error", tool=call.name, call_id=call.id, error=error)
        return ToolOutcome(call=call, error=error, duration_ms=duration_ms)

"""History compaction once a conversation outgrows its token budget.

The older part of the log is condensed into one ``[SUMMARY]`` assistant
message. The system prompt and the most recent messages stay verbatim, and
the cut never lands inside a tool-call/tool-result block.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from workchat.agent.cancellation import CancellationToken
from workchat.agent.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    TokenUsage,
    ToolResultMessage,
    UserMessage,
    validate_history,
)
from workchat.agent.store import ConversationStore
from workchat.config import AgentConfig
from workchat.errors import TurnCancelledError

logger = structlog.get_logger()

SUMMARY_INSTRUCTION = (
    "Condense this conversation, preserving facts needed to continue: names, dates, "
    "decisions, open tasks, and what each tool returned. Reply with the summary only."
)


class SummaryModel(Protocol):
    async def complete(self, history: list[Message]) -> AssistantMessage: ...


def render_transcript(messages: list[Message]) -> str:
    """Plain-text transcript of ``messages`` for the summary prompt."""
    lines: list[str] = []
    for message in messages:
        if isinstance(message, UserMessage):
            lines.append(f"User: {message.content}")
        elif isinstance(message, AssistantMessage):
            if message.content:
                lines.append(f"Assistant: {message.content}")
            for call in message.tool_calls:
                lines.append(f"Assistant called {call.name} with {call.arguments}")
        elif isinstance(message, ToolResultMessage):
            lines.append(f"Tool {message.name} returned: {message.content}")
        else:
            lines.append(f"System: {message.content}")
    return "\n".join(lines)


def find_cutoff(messages: list[Message], keep_recent: int) -> int | None:
    """Index where the verbatim tail starts, or ``None`` if nothing can be cut.

    The tail holds at least ``keep_recent`` messages and never starts with a
    tool result, so each assistant message keeps its results on its own side.
    Index 0 (the system prompt) is never part of the summarized stretch.
    """
    start = 1 if messages and isinstance(messages[0], SystemMessage) else 0
    index = len(messages) - keep_recent
    while index > start and isinstance(messages[index], ToolResultMessage):
        index -= 1
    # Need at least two messages to be worth condensing
    if index - start < 2:
        return None
    return index


class Summarizer:
    """Condenses conversation history with one model call."""

    def __init__(self, model: SummaryModel, config: AgentConfig) -> None:
        self.model = model
        self.config = config

    def should_summarize(self, usage: TokenUsage) -> bool:
        if not self.config.summarization_enabled or usage.total is None:
            return False
        return usage.total > self.config.summarize_token_budget

    async def summarize(
        self,
        messages: list[Message],
        cancel_token: CancellationToken | None = None,
    ) -> list[Message]:
        """Return a shorter equivalent history, or ``messages`` unchanged."""
        if len(messages) <= self.config.summary_min_messages:
            return messages

        cutoff = find_cutoff(messages, self.config.summary_keep_recent)
        if cutoff is None:
            return messages

        has_system = isinstance(messages[0], SystemMessage)
        head = messages[1:cutoff] if has_system else messages[:cutoff]
        tail = messages[cutoff:]

        call = self.model.complete([
            SystemMessage(SUMMARY_INSTRUCTION),
            UserMessage(f"Conversation messages:\n{render_transcript(head)}"),
        ])
        response = await (cancel_token.run(call) if cancel_token is not None else call)
        summary = AssistantMessage(content=f"[SUMMARY]\n{response.content.strip()}\n[/SUMMARY]")

        condensed: list[Message] = [messages[0]] if has_system else []
        condensed.append(summary)
        condensed.extend(tail)

        problems = validate_history(condensed)
        if problems:
            logger.warning("summarizer.invalid_result", problems=problems)
            return messages

        logger.info(
            "summarizer.condensed",
            before=len(messages),
            after=len(condensed),
            summarized=len(head),
        )
        return condensed

    async def maybe_summarize(
        self,
        store: ConversationStore,
        conversation_id: str,
        usage: TokenUsage,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Compact the stored history if ``usage`` is over budget. Returns True if replaced.

        A failed summary call leaves the history as it was. Cancellation
        propagates, also with the history untouched.
        """
        if not self.should_summarize(usage):
            return False

        history = await store.get(conversation_id)
        try:
            condensed = await self.summarize(history, cancel_token)
        except TurnCancelledError:
            raise
        except Exception as e:
            logger.warning("summarizer.failed", conversation_id=conversation_id, error=str(e))
            return False

        if condensed is history:
            return False
        await store.replace(conversation_id, condensed)
        return True

    def describe(self) -> dict[str, Any]:
        return {
            "enabled": self.config.summarization_enabled,
            "token_budget": self.config.summarize_token_budget,
            "keep_recent": self.config.summary_keep_recent,
        }

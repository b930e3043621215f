"""Turn engine — the conversation orchestrator's control loop.

One request runs through these states:

1. Seed:      system prompt on the first turn, then the user message
2. Model:     invoke the tool-bound model with the stored history
3. Decide:    no tool calls means the answer is final
4. Tools:     run every requested call concurrently and join
5. Fold:      append the results in call order and go back to 2

Every append goes straight to the store, so a crash mid-turn leaves a log
that is consistent and can be resumed. The number of model rounds is capped
by the engine itself, independent of whether the model follows the prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from workchat.agent.cancellation import CancellationToken
from workchat.agent.content import flatten_content
from workchat.agent.executor import ToolExecutor, ToolOutcome
from workchat.agent.messages import (
    AssistantMessage,
    Message,
    TokenUsage,
    ToolResultMessage,
    UserMessage,
)
from workchat.agent.progress import ProgressCallback, ProgressEmitter
from workchat.agent.prompt import UserContext, build_system_prompt
from workchat.agent.store import ConversationStore
from workchat.agent.summarizer import Summarizer
from workchat.agent.tools import Tool, ToolDescriptor, ToolRegistry
from workchat.config import AgentConfig
from workchat.errors import (
    ModelGatewayError,
    NoToolsAvailableError,
    ToolBindingError,
    TurnCancelledError,
)

logger = structlog.get_logger()


class BoundModel(Protocol):
    async def invoke(self, history: list[Message]) -> AssistantMessage: ...


class ModelGateway(Protocol):
    def bind_tools(self, tools: list[ToolDescriptor]) -> BoundModel: ...


@dataclass
class TurnRequest:
    """Everything the engine needs for one user turn."""

    input: str
    conversation_id: str
    tools: list[Tool]
    user_context: UserContext | None = None
    on_progress: ProgressCallback | None = None
    cancel_token: CancellationToken | None = None


@dataclass
class TurnResult:
    """Result of one turn."""

    response: str
    conversation_id: str
    finish_reason: str = "stop"
    rounds: int = 0
    tool_calls_made: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage.unknown)
    tool_log: list[dict[str, Any]] = field(default_factory=list)


class TurnEngine:
    """Drives model rounds and tool batches until the model stops asking for tools."""

    def __init__(
        self,
        gateway: ModelGateway,
        store: ConversationStore,
        config: AgentConfig,
        summarizer: Summarizer | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.config = config
        self.summarizer = summarizer

    async def run(self, request: TurnRequest) -> TurnResult:
        """Run one turn and return the final assistant text."""
        if not request.tools:
            raise NoToolsAvailableError()

        registry = ToolRegistry(request.tools)
        descriptors = registry.descriptors()
        progress = ProgressEmitter(request.on_progress)
        token = request.cancel_token
        conversation_id = request.conversation_id
        result = TurnResult(response="", conversation_id=conversation_id)

        model = self._bind(descriptors)

        # --- SEED ---
        history = await self.store.get(conversation_id)
        if not history:
            await self.store.append(
                conversation_id,
                build_system_prompt(
                    descriptors,
                    request.user_context,
                    max_rounds=self.config.max_rounds,
                    broad_tools=self.config.broad_tools,
                ),
            )
            logger.info("engine.conversation_seeded", conversation_id=conversation_id)
        await self.store.append(conversation_id, UserMessage(request.input))
        progress.status("Starting new query...")

        executor = ToolExecutor(
            registry,
            progress,
            max_result_chars=self.config.max_tool_result_chars,
            parallel=self.config.parallel_tool_calls,
            cancel_token=token,
        )

        for round_number in range(1, self.config.max_rounds + 1):
            result.rounds = round_number

            # --- MODEL ---
            if token is not None:
                token.raise_if_cancelled()
            history = await self.store.get(conversation_id)
            logger.info(
                "engine.round",
                conversation_id=conversation_id,
                round=round_number,
                max=self.config.max_rounds,
                messages=len(history),
                tool_calls_so_far=result.tool_calls_made,
            )
            progress.ai_processing()
            assistant = await self._invoke(model, history, token)

            await self.store.append(conversation_id, assistant)
            result.usage = result.usage + assistant.usage

            # From here on the stored log may end in unanswered tool calls, so a
            # cancellation anywhere below answers them before propagating.
            try:
                if self.summarizer is not None:
                    await self.summarizer.maybe_summarize(
                        self.store, conversation_id, assistant.usage, cancel_token=token
                    )
                progress.token_usage(assistant.usage)

                # --- DECIDE ---
                if not assistant.has_tool_calls:
                    result.response = flatten_content(assistant.content)
                    logger.info(
                        "engine.complete",
                        conversation_id=conversation_id,
                        rounds=round_number,
                        tool_calls=result.tool_calls_made,
                    )
                    return result

                if round_number >= self.config.max_rounds:
                    break

                # --- TOOLS ---
                if token is not None:
                    token.raise_if_cancelled()
                outcomes = await executor.execute_batch(assistant.tool_calls)
            except TurnCancelledError:
                if assistant.has_tool_calls:
                    await self._close_open_calls(conversation_id, assistant, "cancelled")
                raise

            result.tool_calls_made += len(outcomes)
            result.tool_log.extend(self._log_entries(outcomes, round_number))

            # --- FOLD ---
            await self.store.extend(conversation_id, [o.to_message() for o in outcomes])

        # Round cap reached with tool calls still pending: answer them as skipped
        # so the log stays valid, and return the model's text as it stands.
        limit = self.config.max_rounds
        logger.warning("engine.max_rounds", conversation_id=conversation_id, limit=limit)
        await self._close_open_calls(conversation_id, assistant, f"tool round limit ({limit}) reached")
        progress.status(f"Stopped after {limit} rounds of tool calling")
        result.response = flatten_content(assistant.content)
        result.finish_reason = "max_rounds"
        return result

    def _bind(self, descriptors: list[ToolDescriptor]) -> BoundModel:
        bind = getattr(self.gateway, "bind_tools", None)
        if not callable(bind):
            raise ToolBindingError("Chat model does not support tool binding")
        try:
            return bind(descriptors)
        except Exception as e:
            raise ToolBindingError(f"Failed to bind tools: {e}") from e

    async def _invoke(
        self,
        model: BoundModel,
        history: list[Message],
        token: CancellationToken | None,
    ) -> AssistantMessage:
        try:
            if token is not None:
                return await token.run(model.invoke(history))
            return await model.invoke(history)
        except TurnCancelledError:
            raise
        except Exception as e:
            logger.error("engine.model_failed", error=str(e))
            raise ModelGatewayError(f"Model invocation failed: {e}") from e

    async def _close_open_calls(
        self,
        conversation_id: str,
        assistant: AssistantMessage,
        reason: str,
    ) -> None:
        await self.store.extend(
            conversation_id,
            [
                ToolResultMessage(
                    tool_call_id=call.id,
                    name=call.name,
                    content=f"Error executing {call.name}: {reason}",
                    is_error=True,
                )
                for call in assistant.tool_calls
            ],
        )

    @staticmethod
    def _log_entries(outcomes: list[ToolOutcome], round_number: int) -> list[dict[str, Any]]:
        return [
            {
                "tool": outcome.call.name,
                "arguments": outcome.call.arguments,
                "result_length": len(outcome.result),
                "error": outcome.failed,
                "duration_ms": outcome.duration_ms,
                "round": round_number,
            }
            for outcome in outcomes
        ]

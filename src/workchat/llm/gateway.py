"""LiteLLM gateway — the model side of the turn engine.

``LLMGateway.bind_tools`` returns a ``BoundLLM`` whose ``invoke`` takes the
conversation log and returns one ``AssistantMessage``. Provider responses are
normalized here, so the engine only ever sees workchat message types.
"""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from typing import Any

import litellm
import structlog

from workchat.agent.content import extract_usage, flatten_content
from workchat.agent.messages import AssistantMessage, Message, ToolCall, to_openai_messages
from workchat.agent.tools import ToolDescriptor
from workchat.config import LLMConfig

logger = structlog.get_logger()

# Suppress litellm's noisy logging
litellm.suppress_debug_info = True
litellm.drop_params = True


def _get(source: Any, key: str) -> Any:
    if isinstance(source, dict):
        return source.get(key)
    return getattr(source, key, None)


def _parse_tool_call(raw: Any, index: int) -> ToolCall:
    function = _get(raw, "function")
    name = _get(function, "name")
    arguments = _get(function, "arguments")
    call_id = _get(raw, "id")

    if isinstance(arguments, dict):
        return ToolCall(id=call_id or f"call_{index}", name=name or "", arguments=arguments)

    text = arguments or "{}"
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        parsed = None
    if isinstance(parsed, dict):
        return ToolCall(id=call_id or f"call_{index}", name=name or "", arguments=parsed)
    return ToolCall(
        id=call_id or f"call_{index}",
        name=name or "",
        invalid_arguments=str(text),
    )


def to_assistant_message(response: Any) -> AssistantMessage:
    """Convert a LiteLLM/OpenAI completion response to an ``AssistantMessage``."""
    message = response.choices[0].message
    raw_calls = getattr(message, "tool_calls", None) or []
    return AssistantMessage(
        content=flatten_content(getattr(message, "content", None)),
        tool_calls=[_parse_tool_call(tc, i) for i, tc in enumerate(raw_calls)],
        usage=extract_usage(response),
    )


class LLMGateway:
    """Async wrapper around LiteLLM for multi-provider model access."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self.total_tokens_used = 0
        self.request_count = 0

    def bind_tools(self, tools: Sequence[ToolDescriptor]) -> BoundLLM:
        """Return a model handle that offers ``tools`` on every call."""
        return BoundLLM(self, [tool.to_openai_tool() for tool in tools])

    async def complete(self, history: list[Message]) -> AssistantMessage:
        """One call without tools (used for summarization)."""
        response = await self.completion(to_openai_messages(history))
        return to_assistant_message(response)

    async def completion(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> Any:
        """Send a completion request through LiteLLM, trying fallbacks on failure."""
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "timeout": self.config.timeout,
            "num_retries": self.config.num_retries,
        }
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        start = time.monotonic()
        self.request_count += 1
        request_id = self.request_count

        logger.info(
            "llm.request",
            request_id=request_id,
            model=self.config.model,
            message_count=len(messages),
            tool_count=len(tools or []),
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.error("llm.error", request_id=request_id, error=str(e), model=self.config.model)

            for fallback in self.config.fallback_models:
                logger.info("llm.fallback", fallback_model=fallback)
                try:
                    kwargs["model"] = fallback
                    response = await litellm.acompletion(**kwargs)
                    logger.info("llm.fallback.success", model=fallback)
                    break
                except Exception as fallback_err:
                    logger.error("llm.fallback.error", model=fallback, error=str(fallback_err))
            else:
                raise

        usage = extract_usage(response)
        if usage.total is not None:
            self.total_tokens_used += usage.total
        logger.info(
            "llm.response",
            request_id=request_id,
            tokens=usage.total,
            duration=f"{time.monotonic() - start:.2f}s",
        )
        return response

    @property
    def stats(self) -> dict[str, Any]:
        """Return usage statistics."""
        return {
            "total_tokens": self.total_tokens_used,
            "request_count": self.request_count,
            "model": self.config.model,
        }


class BoundLLM:
    """An ``LLMGateway`` bound to one request's tool catalog."""

    def __init__(self, gateway: LLMGateway, tools: list[dict[str, Any]]) -> None:
        self.gateway = gateway
        self.tools = tools

    async def invoke(self, history: list[Message]) -> AssistantMessage:
        response = await self.gateway.completion(
            to_openai_messages(history),
            tools=self.tools or None,
        )
        return to_assistant_message(response)

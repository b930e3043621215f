"""Conversation message model.

A conversation is an ordered log of four message variants:

- ``SystemMessage``: the policy prompt, at most once and always first
- ``UserMessage``: end-user input
- ``AssistantMessage``: model output, optionally requesting tool calls
- ``ToolResultMessage``: the outcome of one tool call, linked by ``tool_call_id``

Every tool result must answer a call made by the nearest preceding assistant
message, and the results for one assistant turn form a contiguous block.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

import structlog

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class TokenUsage:
    """Token counts reported by the model gateway. ``None`` means unknown, not zero."""

    input: int | None = None
    output: int | None = None
    total: int | None = None

    @classmethod
    def unknown(cls) -> TokenUsage:
        return cls()

    @property
    def known(self) -> bool:
        return self.total is not None or self.input is not None or self.output is not None

    def __add__(self, other: TokenUsage) -> TokenUsage:
        def _sum(a: int | None, b: int | None) -> int | None:
            if a is None:
                return b
            if b is None:
                return a
            return a + b

        return TokenUsage(
            input=_sum(self.input, other.input),
            output=_sum(self.output, other.output),
            total=_sum(self.total, other.total),
        )

    def to_dict(self) -> dict[str, int | None]:
        return {"input": self.input, "output": self.output, "total": self.total}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TokenUsage:
        if not data:
            return cls.unknown()
        return cls(input=data.get("input"), output=data.get("output"), total=data.get("total"))


@dataclass
class ToolCall:
    """A model-issued request to run a named tool.

    ``invalid_arguments`` keeps the raw text when the model produced arguments
    that are not a JSON object; executing such a call yields an error result.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    invalid_arguments: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name, "arguments": self.arguments}
        if self.invalid_arguments is not None:
            data["invalid_arguments"] = self.invalid_arguments
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=data.get("arguments") or {},
            invalid_arguments=data.get("invalid_arguments"),
        )


@dataclass
class SystemMessage:
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    type: ClassVar[str] = "system"


@dataclass
class UserMessage:
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    type: ClassVar[str] = "user"


@dataclass
class AssistantMessage:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage.unknown)
    timestamp: datetime = field(default_factory=_utcnow)

    type: ClassVar[str] = "assistant"

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ToolResultMessage:
    tool_call_id: str
    name: str
    content: str
    is_error: bool = False
    timestamp: datetime = field(default_factory=_utcnow)

    type: ClassVar[str] = "tool_result"


Message = SystemMessage | UserMessage | AssistantMessage | ToolResultMessage


def message_to_dict(message: Message) -> dict[str, Any]:
    """Serialize a message to a JSON-safe dict tagged by ``type``."""
    data: dict[str, Any] = {
        "type": message.type,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }
    if isinstance(message, AssistantMessage):
        data["tool_calls"] = [tc.to_dict() for tc in message.tool_calls]
        data["usage"] = message.usage.to_dict()
    elif isinstance(message, ToolResultMessage):
        data["tool_call_id"] = message.tool_call_id
        data["name"] = message.name
        data["is_error"] = message.is_error
    return data


def message_from_dict(data: dict[str, Any]) -> Message:
    """Inverse of :func:`message_to_dict`."""
    kind = data.get("type")
    content = data.get("content") or ""
    raw_ts = data.get("timestamp")
    timestamp = datetime.fromisoformat(raw_ts) if raw_ts else _utcnow()

    if kind == SystemMessage.type:
        return SystemMessage(content, timestamp=timestamp)
    if kind == UserMessage.type:
        return UserMessage(content, timestamp=timestamp)
    if kind == AssistantMessage.type:
        return AssistantMessage(
            content=content,
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            usage=TokenUsage.from_dict(data.get("usage")),
            timestamp=timestamp,
        )
    if kind == ToolResultMessage.type:
        return ToolResultMessage(
            tool_call_id=data["tool_call_id"],
            name=data.get("name", ""),
            content=content,
            is_error=bool(data.get("is_error", False)),
            timestamp=timestamp,
        )
    raise ValueError(f"Unknown message type: {kind!r}")


def dumps_history(messages: list[Message]) -> str:
    return json.dumps([message_to_dict(m) for m in messages], ensure_ascii=False)


def loads_history(raw: str) -> list[Message]:
    return [message_from_dict(item) for item in json.loads(raw)]


def validate_history(messages: list[Message], *, allow_pending: bool = True) -> list[str]:
    """Check the log invariants and return a list of violations (empty when valid).

    With ``allow_pending`` the final assistant message may still have
    unanswered tool calls, which is the state between a model response and the
    end of its tool batch.
    """
    problems: list[str] = []
    open_calls: set[str] = set()
    in_result_block = False

    for index, message in enumerate(messages):
        if isinstance(message, SystemMessage):
            if index != 0:
                problems.append(f"system message at position {index}")
        elif isinstance(message, ToolResultMessage):
            if not in_result_block or message.tool_call_id not in open_calls:
                problems.append(
                    f"tool result {message.tool_call_id!r} at position {index} "
                    "has no matching preceding tool call"
                )
            open_calls.discard(message.tool_call_id)
            continue

        if open_calls:
            problems.append(f"unanswered tool calls before position {index}: {sorted(open_calls)}")
            open_calls = set()
        in_result_block = False

        if isinstance(message, AssistantMessage) and message.tool_calls:
            open_calls = {tc.id for tc in message.tool_calls}
            in_result_block = True

    if open_calls and not allow_pending:
        problems.append(f"unanswered tool calls at end of history: {sorted(open_calls)}")
    return problems


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert the log to OpenAI chat format, dropping orphan tool results."""
    converted: list[dict[str, Any]] = []
    valid_tool_call_ids: set[str] = set()

    for message in messages:
        if isinstance(message, SystemMessage):
            converted.append({"role": "system", "content": message.content})
        elif isinstance(message, UserMessage):
            converted.append({"role": "user", "content": message.content})
        elif isinstance(message, AssistantMessage):
            raw: dict[str, Any] = {"role": "assistant", "content": message.content}
            if message.tool_calls:
                raw["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": (
                                tc.invalid_arguments
                                if tc.invalid_arguments is not None
                                else json.dumps(tc.arguments, ensure_ascii=False)
                            ),
                        },
                    }
                    for tc in message.tool_calls
                ]
                valid_tool_call_ids.update(tc.id for tc in message.tool_calls)
            converted.append(raw)
        elif message.tool_call_id in valid_tool_call_ids:
            converted.append(
                {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content}
            )
        else:
            logger.warning("messages.drop_orphan_tool_result", tool_call_id=message.tool_call_id)

    return converted

"""Normalize model output: flatten multi-part content and read token usage."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from workchat.agent.messages import TokenUsage


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, Mapping):
        if part.get("type") == "text":
            return str(part.get("text") or "")
        return ""
    if getattr(part, "type", None) == "text":
        return str(getattr(part, "text", "") or "")
    return ""


def flatten_content(content: Any) -> str:
    """Join the text parts of a message, in order.

    Bedrock-style responses return a list of typed parts (text, tool_use,
    images); only text parts reach the caller. ``None`` and part lists without
    text flatten to ``""``.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        return "".join(_part_text(part) for part in content)
    return _part_text(content)


def _read(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_usage(response: Any) -> TokenUsage:
    """Read token usage off a gateway response, or return an unknown usage.

    Understands the OpenAI/LiteLLM ``usage`` block (``prompt_tokens`` ...) and
    the LangChain ``usage_metadata`` block (``input_tokens`` ...).
    """
    metadata = _read(response, "usage_metadata")
    if metadata:
        usage = TokenUsage(
            input=_as_int(_read(metadata, "input_tokens")),
            output=_as_int(_read(metadata, "output_tokens")),
            total=_as_int(_read(metadata, "total_tokens")),
        )
        if usage.known:
            return _fill_total(usage)

    block = _read(response, "usage")
    if block:
        usage = TokenUsage(
            input=_as_int(_read(block, "prompt_tokens")),
            output=_as_int(_read(block, "completion_tokens")),
            total=_as_int(_read(block, "total_tokens")),
        )
        if usage.known:
            return _fill_total(usage)

    return TokenUsage.unknown()


def _fill_total(usage: TokenUsage) -> TokenUsage:
    if usage.total is None and usage.input is not None and usage.output is not None:
        usage.total = usage.input + usage.output
    return usage

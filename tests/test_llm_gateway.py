from __future__ import annotations

from types import SimpleNamespace

import litellm
import pytest

from workchat.agent.messages import SystemMessage, UserMessage
from workchat.agent.tools import ToolDescriptor
from workchat.config import LLMConfig
from workchat.llm.gateway import LLMGateway, to_assistant_message


def _response(content=None, tool_calls=None, usage=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    choice = SimpleNamespace(message=message, finish_reason="tool_calls" if tool_calls else "stop")
    return SimpleNamespace(choices=[choice], usage=usage)


def _call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def test_response_with_tool_calls_is_parsed() -> None:
    response = _response(
        content=[{"type": "text", "text": "Let me check."}],
        tool_calls=[
            _call("call_1", "jira__search", '{"query": "login bug"}'),
            _call("call_2", "slack__get_latest_messages", None),
        ],
        usage=SimpleNamespace(prompt_tokens=50, completion_tokens=5, total_tokens=55),
    )

    message = to_assistant_message(response)

    assert message.content == "Let me check."
    assert [(c.id, c.name, c.arguments) for c in message.tool_calls] == [
        ("call_1", "jira__search", {"query": "login bug"}),
        ("call_2", "slack__get_latest_messages", {}),
    ]
    assert message.usage.total == 55


def test_non_object_arguments_are_kept_raw() -> None:
    message = to_assistant_message(
        _response(tool_calls=[_call("c1", "a", "[1, 2]"), _call("c2", "b", "{oops")])
    )

    assert message.tool_calls[0].invalid_arguments == "[1, 2]"
    assert message.tool_calls[1].invalid_arguments == "{oops"


def test_missing_usage_stays_unknown() -> None:
    message = to_assistant_message(_response(content="hi"))

    assert message.content == "hi"
    assert message.tool_calls == []
    assert not message.usage.known


@pytest.mark.asyncio
async def test_bound_model_sends_tools_and_history(monkeypatch) -> None:
    seen: list[dict] = []

    async def fake_acompletion(**kwargs):
        seen.append(kwargs)
        return _response(content="done", usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3, total_tokens=10))

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
    gateway = LLMGateway(LLMConfig(model="openai/gpt-4o-mini", num_retries=3))
    bound = gateway.bind_tools([ToolDescriptor("jira__search", "Search Jira", {"type": "object"})])

    message = await bound.invoke([SystemMessage("policy"), UserMessage("hi")])

    assert message.content == "done"
    assert seen[0]["model"] == "openai/gpt-4o-mini"
    assert seen[0]["num_retries"] == 3
    assert seen[0]["tool_choice"] == "auto"
    assert seen[0]["tools"][0]["function"]["name"] == "jira__search"
    assert [m["role"] for m in seen[0]["messages"]] == ["system", "user"]
    assert gateway.stats["total_tokens"] == 10
    assert gateway.stats["request_count"] == 1


@pytest.mark.asyncio
async def test_complete_sends_no_tools(monkeypatch) -> None:
    seen: list[dict] = []

    async def fake_acompletion(**kwargs):
        seen.append(kwargs)
        return _response(content="summary")

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)

    message = await LLMGateway(LLMConfig()).complete([UserMessage("condense")])

    assert message.content == "summary"
    assert "tools" not in seen[0]


@pytest.mark.asyncio
async def test_fallback_model_used_after_failure(monkeypatch) -> None:
    models: list[str] = []

    async def fake_acompletion(**kwargs):
        models.append(kwargs["model"])
        if kwargs["model"] == "primary":
            raise RuntimeError("overloaded")
        return _response(content="from fallback")

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
    gateway = LLMGateway(LLMConfig(model="primary", fallback_models=["backup"]))

    message = await gateway.complete([UserMessage("hi")])

    assert message.content == "from fallback"
    assert models == ["primary", "backup"]


@pytest.mark.asyncio
async def test_error_propagates_when_all_models_fail(monkeypatch) -> None:
    async def fake_acompletion(**kwargs):
        raise RuntimeError(f"{kwargs['model']} down")

    monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
    gateway = LLMGateway(LLMConfig(model="primary", fallback_models=["backup"]))

    with pytest.raises(RuntimeError, match="primary down"):
        await gateway.complete([UserMessage("hi")])

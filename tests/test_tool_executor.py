from __future__ import annotations

import pytest

from conftest import EchoTool
from workchat.agent.executor import ToolExecutor, truncate_result
from workchat.agent.messages import ToolCall
from workchat.agent.progress import ProgressEmitter
from workchat.agent.tools import ToolRegistry


def _executor(tools, on_progress=None, **kwargs) -> ToolExecutor:
    return ToolExecutor(ToolRegistry(tools), ProgressEmitter(on_progress), **kwargs)


def test_truncate_leaves_short_text_alone() -> None:
    assert truncate_result("short", 10) == "short"
    assert truncate_result("x" * 10, 10) == "x" * 10


def test_truncate_reports_dropped_characters() -> None:
    assert truncate_result("abcdefghij", 4) == "abcd\n\n[truncated 6 characters]"


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_outcome(events, on_progress) -> None:
    executor = _executor([EchoTool("known")], on_progress)

    outcome = await executor.execute(ToolCall(id="c1", name="missing"))

    assert outcome.failed
    assert outcome.to_message().content == "Error executing missing: Tool missing not found"
    assert [e.type for e in events] == ["tool_start", "tool_error"]


@pytest.mark.asyncio
async def test_non_object_arguments_are_not_passed_to_tool(events, on_progress) -> None:
    tool = EchoTool("search")
    executor = _executor([tool], on_progress)

    outcome = await executor.execute(ToolCall(id="c1", name="search", invalid_arguments="[1, 2]"))

    assert tool.calls == []
    assert outcome.error == "Invalid JSON arguments: [1, 2]"
    assert events[-1].type == "tool_error"


@pytest.mark.asyncio
async def test_exception_without_message_reports_its_type() -> None:
    executor = _executor([EchoTool("flaky", error=TimeoutError())])

    outcome = await executor.execute(ToolCall(id="c1", name="flaky"))

    assert outcome.error == "TimeoutError"
    message = outcome.to_message()
    assert message.is_error
    assert message.tool_call_id == "c1"
    assert message.name == "flaky"


@pytest.mark.asyncio
async def test_arguments_reach_the_tool() -> None:
    tool = EchoTool("search", result="found")
    executor = _executor([tool])

    outcomes = await executor.execute_batch([ToolCall(id="c1", name="search", arguments={"q": "roadmap"})])

    assert tool.calls == [{"q": "roadmap"}]
    assert len(outcomes) == 1
    assert outcomes[0].result == "found"
    assert not outcomes[0].failed


@pytest.mark.asyncio
async def test_batch_returns_one_outcome_per_call_in_order() -> None:
    executor = _executor([EchoTool("a", result="A"), EchoTool("b", error=ValueError("bad"))])
    calls = [
        ToolCall(id="1", name="b"),
        ToolCall(id="2", name="a"),
        ToolCall(id="3", name="nope"),
        ToolCall(id="4", name="a"),
    ]

    outcomes = await executor.execute_batch(calls)

    assert [o.call.id for o in outcomes] == ["1", "2", "3", "4"]
    assert [o.failed for o in outcomes] == [True, False, True, False]


def test_registry_replaces_duplicates_and_exports_schemas() -> None:
    first, second = EchoTool("search", result="old"), EchoTool("search", result="new")

    registry = ToolRegistry([first, second, EchoTool("other")])

    assert len(registry) == 2
    assert "search" in registry
    assert registry.get("search") is second
    assert [t["function"]["name"] for t in registry.to_openai_tools()] == ["search", "other"]
    assert registry.to_openai_tools()[0]["function"]["parameters"] == {"type": "object", "properties": {}}

from __future__ import annotations

import asyncio

import pytest

from workchat.agent.cancellation import CancellationToken
from workchat.agent.messages import TokenUsage
from workchat.agent.progress import ProgressEmitter, ProgressEvent
from workchat.errors import TurnCancelledError


def test_emitter_builds_event_payloads(events, on_progress) -> None:
    emitter = ProgressEmitter(on_progress)

    emitter.status("Starting new query...")
    emitter.ai_processing()
    emitter.tool_start("jira__search", {"q": "bug"})
    emitter.tool_complete("jira__search")
    emitter.tool_error("slack__search", "timeout")
    emitter.token_usage(TokenUsage(input=1, output=2, total=3))

    assert [e.to_dict() for e in events] == [
        {"type": "status", "data": "Starting new query..."},
        {"type": "ai_processing", "data": "Processing with AI..."},
        {"type": "tool_start", "data": {"tool": "jira__search", "args": {"q": "bug"}}},
        {"type": "tool_complete", "data": {"tool": "jira__search"}},
        {"type": "tool_error", "data": {"tool": "slack__search", "error": "timeout"}},
        {"type": "token_usage", "data": {"input": 1, "output": 2, "total": 3}},
    ]


def test_broken_callback_is_ignored() -> None:
    def explode(event: ProgressEvent) -> None:
        raise RuntimeError("socket closed")

    emitter = ProgressEmitter(explode)

    emitter.status("still fine")


def test_emitter_without_callback_is_silent() -> None:
    ProgressEmitter().status("nobody listening")


@pytest.mark.asyncio
async def test_token_passes_results_through() -> None:
    async def answer() -> int:
        return 42

    assert await CancellationToken().run(answer()) == 42


@pytest.mark.asyncio
async def test_token_interrupts_running_awaitable() -> None:
    token = CancellationToken()
    started = asyncio.Event()
    interrupted = asyncio.Event()

    async def slow() -> None:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            interrupted.set()
            raise

    async def cancel_later() -> None:
        await started.wait()
        token.cancel("stop")

    canceller = asyncio.create_task(cancel_later())
    with pytest.raises(TurnCancelledError, match="stop"):
        await token.run(slow())
    await canceller

    assert token.cancelled
    assert interrupted.is_set()


@pytest.mark.asyncio
async def test_already_cancelled_token_never_starts_work() -> None:
    token = CancellationToken()
    token.cancel()
    ran = False

    async def work() -> None:
        nonlocal ran
        ran = True

    with pytest.raises(TurnCancelledError):
        await token.run(work())
    assert ran is False

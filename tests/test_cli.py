from __future__ import annotations

import json

import httpx
import pytest
import typer
from typer.testing import CliRunner

from workchat.cli import main as cli

runner = CliRunner()


def _sse(*events: tuple[str, dict]) -> bytes:
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events).encode()


@pytest.fixture
def requests(monkeypatch, tmp_path) -> list[httpx.Request]:
    monkeypatch.chdir(tmp_path)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/v1/chat/stream":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_sse(
                    ("progress", {"type": "tool_start", "data": {"tool": "jira__search", "args": {}}}),
                    ("progress", {"type": "tool_complete", "data": {"tool": "jira__search"}}),
                    (
                        "result",
                        {
                            "conversation_id": body.get("conversation_id", "conv-new"),
                            "response": "Two open bugs.",
                            "finish_reason": "stop",
                            "rounds": 2,
                            "tool_calls_made": 1,
                            "usage": {"input": None, "output": None, "total": None},
                        },
                    ),
                ),
            )
        if request.url.path == "/v1/conversations":
            return httpx.Response(200, json=[{"id": "conv-new", "message_count": 4, "updated_at": "2025-01-01T00:00"}])
        return httpx.Response(404)

    def fake_client(base_url: str, api_key: str | None) -> httpx.Client:
        headers = {"X-API-Key": api_key} if api_key else {}
        return httpx.Client(base_url=base_url, headers=headers, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(cli, "_get_client", fake_client)
    return seen


def test_iter_sse_parses_events() -> None:
    lines = ["event: progress", 'data: {"type": "status", "data": "go"}', "", ": comment", "event: result", 'data: {"ok": true}']

    assert list(cli.iter_sse(lines)) == [
        ("progress", {"type": "status", "data": "go"}),
        ("result", {"ok": True}),
    ]


def test_credentials_must_be_key_value() -> None:
    assert cli._parse_credentials(["jira=abc", "slack=x=y"]) == {"jira": "abc", "slack": "x=y"}
    with pytest.raises(typer.BadParameter):
        cli._parse_credentials(["jira"])


def test_chat_streams_and_remembers_conversation(requests, tmp_path) -> None:
    result = runner.invoke(cli.app, ["chat", "open bugs?", "-C", "jira=token", "-k", "secret"])

    assert result.exit_code == 0, result.output
    assert "jira__search" in result.output
    assert "Two open bugs." in result.output
    body = json.loads(requests[0].content)
    assert body["credentials"] == {"jira": "token"}
    assert "conversation_id" not in body
    assert requests[0].headers["X-API-Key"] == "secret"
    assert (tmp_path / ".workchat_last_conversation").read_text() == "conv-new"

    runner.invoke(cli.app, ["chat", "and closed ones?"])
    assert json.loads(requests[1].content)["conversation_id"] == "conv-new"


def test_conversations_lists_ids(requests) -> None:
    result = runner.invoke(cli.app, ["conversations"])

    assert result.exit_code == 0, result.output
    assert "conv-new" in result.output

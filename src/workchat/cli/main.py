"""workchat CLI — talk to a running workchat server."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="workchat",
    help="workchat — chat with your workplace tools",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"

# Remembers the last conversation so follow-ups continue it
_LAST_CONV_FILE = ".workchat_last_conversation"


def _get_client(base_url: str, api_key: str | None) -> httpx.Client:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    return httpx.Client(base_url=base_url, headers=headers, timeout=300.0)


def _save_last_conversation(conv_id: str) -> None:
    try:
        Path(_LAST_CONV_FILE).write_text(conv_id, encoding="utf-8")
    except OSError as e:
        console.print(f"[dim]Could not remember conversation: {e}[/dim]")


def _load_last_conversation() -> str | None:
    path = Path(_LAST_CONV_FILE)
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8").strip() or None


def _parse_credentials(pairs: Iterable[str]) -> dict[str, str]:
    """Turn ``key=value`` options into a credentials mapping."""
    credentials: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        credentials[key.strip()] = value
    return credentials


def iter_sse(lines: Iterable[str]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Parse server-sent event lines into ``(event, data)`` pairs."""
    event = "message"
    data: list[str] = []
    for line in lines:
        if not line:
            if data:
                yield event, json.loads("\n".join(data))
            event, data = "message", []
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())
    if data:
        yield event, json.loads("\n".join(data))


def _render_progress(event: dict[str, Any]) -> None:
    kind = event.get("type")
    data = event.get("data")
    if kind == "tool_start":
        console.print(f"[cyan]→[/cyan] {data['tool']}")
    elif kind == "tool_complete":
        console.print(f"[green]✓[/green] {data['tool']}")
    elif kind == "tool_error":
        console.print(f"[red]✗[/red] {data['tool']}: {data['error']}")
    elif kind == "token_usage":
        total = data.get("total")
        console.print(f"[dim]tokens: {'?' if total is None else total}[/dim]")
    else:
        console.print(f"[dim]{data}[/dim]")


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="WORKCHAT_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="WORKCHAT_API_KEY"),
    conversation_id: str = typer.Option("", "--conversation", "-c", help="Resume a conversation by ID"),
    new: bool = typer.Option(False, "--new", help="Start a new conversation"),
    credential: list[str] = typer.Option(
        [], "--credential", "-C", help="Platform credential as key=value (repeatable)"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide progress events"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON result"),
) -> None:
    """Send a message and stream progress until the answer arrives."""
    client = _get_client(base_url, api_key or None)
    if not conversation_id and not new:
        conversation_id = _load_last_conversation() or ""

    payload: dict[str, Any] = {
        "message": message,
        "credentials": _parse_credentials(credential),
    }
    if conversation_id:
        payload["conversation_id"] = conversation_id

    result: dict[str, Any] | None = None
    try:
        with client.stream("POST", "/v1/chat/stream", json=payload) as resp:
            if resp.status_code >= 400:
                resp.read()
                console.print(f"[red]Error {resp.status_code}:[/red] {resp.text}")
                raise typer.Exit(1)
            for event, data in iter_sse(resp.iter_lines()):
                if event == "progress":
                    if not quiet:
                        _render_progress(data)
                elif event == "error":
                    console.print(f"[red]Error:[/red] {data.get('error')}")
                    raise typer.Exit(1)
                elif event == "result":
                    result = data
    except httpx.ConnectError:
        console.print(f"[red]Error:[/red] Cannot connect to workchat at {base_url}")
        console.print("Is the server running? Start it with: workchat serve")
        raise typer.Exit(1)

    if result is None:
        console.print("[red]Error:[/red] stream ended without a result")
        raise typer.Exit(1)

    if raw:
        console.print_json(json.dumps(result))
    else:
        console.print()
        console.print(Markdown(result["response"] or "_(no content)_"))
        console.print()
        meta = [f"conversation: {result['conversation_id'][:8]}", f"rounds: {result['rounds']}"]
        if result.get("tool_calls_made"):
            meta.append(f"tool calls: {result['tool_calls_made']}")
        if result.get("finish_reason") == "max_rounds":
            meta.append("[yellow]round limit reached[/yellow]")
        console.print(f"[dim]{'  │  '.join(meta)}[/dim]")

    _save_last_conversation(result["conversation_id"])


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="WORKCHAT_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="WORKCHAT_API_KEY"),
) -> None:
    """Check the server's status."""
    client = _get_client(base_url, api_key or None)

    try:
        resp = client.get("/health")
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] workchat is not running at {base_url}")
        raise typer.Exit(1)

    data = resp.json()

    table = Table(title="workchat status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Status", f"[green]{data['status']}[/green]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")
    table.add_row("Model", data.get("model", "?"))
    table.add_row("Store", data.get("store", "?"))
    table.add_row("Plugins", ", ".join(data.get("plugins", [])) or "-")

    stats = data.get("llm_stats", {})
    table.add_row("Requests", str(stats.get("request_count", 0)))
    table.add_row("Tokens Used", str(stats.get("total_tokens", 0)))

    console.print()
    console.print(table)
    console.print()


@app.command()
def conversations(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="WORKCHAT_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="WORKCHAT_API_KEY"),
) -> None:
    """List stored conversations."""
    client = _get_client(base_url, api_key or None)

    try:
        resp = client.get("/v1/conversations")
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] workchat is not running at {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {e.response.text}")
        raise typer.Exit(1)

    data = resp.json()
    if not data:
        console.print("[dim]No conversations yet.[/dim]")
        return

    table = Table(title="Conversations", border_style="blue")
    table.add_column("ID", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")

    for conv in data:
        table.add_row(
            conv["id"],
            str(conv.get("message_count", 0)),
            (conv.get("updated_at") or "")[:16],
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the workchat server."""
    import uvicorn

    console.print(Panel("Starting workchat server...", border_style="blue"))
    uvicorn.run(
        "workchat.main:app",
        host=host,
        port=port,
        reload=reload,
    )


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()

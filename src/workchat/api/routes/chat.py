"""Chat endpoints — one JSON round trip, or an SSE stream of progress events."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from workchat.agent.cancellation import CancellationToken
from workchat.agent.engine import TurnResult
from workchat.agent.progress import ProgressEvent
from workchat.agent.prompt import UserContext
from workchat.api.middleware.auth import verify_api_key
from workchat.errors import (
    ModelGatewayError,
    NoToolsAvailableError,
    StoreError,
    TurnCancelledError,
    WorkchatError,
)
from workchat.service import ChatRequest

logger = structlog.get_logger()

router = APIRouter()


class UserContextBody(BaseModel):
    display_name: str | None = None
    platform_user_id: str | None = None
    timezone: str | None = None


class ChatBody(BaseModel):
    message: str = Field(min_length=1)
    conversation_id: str | None = Field(default=None, description="Resume an existing conversation")
    credentials: dict[str, Any] = Field(
        default_factory=dict,
        description="Per-platform tokens, passed to every plugin",
    )
    user_context: UserContextBody | None = None

    def to_request(self, **kwargs: Any) -> ChatRequest:
        context = None
        if self.user_context is not None:
            context = UserContext(**self.user_context.model_dump())
        return ChatRequest(
            input=self.message,
            conversation_id=self.conversation_id,
            credentials=self.credentials,
            user_context=context,
            **kwargs,
        )


class ChatResponse(BaseModel):
    conversation_id: str
    response: str
    finish_reason: str
    rounds: int
    tool_calls_made: int
    usage: dict[str, int | None]

    @classmethod
    def from_result(cls, result: TurnResult) -> ChatResponse:
        return cls(
            conversation_id=result.conversation_id,
            response=result.response,
            finish_reason=result.finish_reason,
            rounds=result.rounds,
            tool_calls_made=result.tool_calls_made,
            usage=result.usage.to_dict(),
        )


def _status_for(error: WorkchatError) -> int:
    if isinstance(error, NoToolsAvailableError):
        return 400
    if isinstance(error, ModelGatewayError):
        return 502
    if isinstance(error, StoreError):
        return 503
    if isinstance(error, TurnCancelledError):
        return 499
    return 500


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


@router.post("/v1/chat")
async def chat(
    request: Request,
    body: ChatBody,
    _api_key: str | None = Depends(verify_api_key),
) -> ChatResponse:
    """Run one turn and return the final answer."""
    service = request.app.state.service
    try:
        result = await service.handle_chat(body.to_request())
    except WorkchatError as e:
        raise HTTPException(status_code=_status_for(e), detail=str(e)) from e
    return ChatResponse.from_result(result)


@router.post("/v1/chat/stream")
async def chat_stream(
    request: Request,
    body: ChatBody,
    _api_key: str | None = Depends(verify_api_key),
) -> StreamingResponse:
    """Run one turn, streaming progress events as they happen.

    Emits ``progress`` events, then exactly one ``result`` or ``error``.
    Disconnecting cancels the turn.
    """
    service = request.app.state.service
    queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue()
    token = CancellationToken()

    def on_progress(event: ProgressEvent) -> None:
        queue.put_nowait(("progress", event.to_dict()))

    async def run_turn() -> None:
        try:
            result = await service.handle_chat(
                body.to_request(on_progress=on_progress, cancel_token=token)
            )
            queue.put_nowait(("result", ChatResponse.from_result(result).model_dump()))
        except WorkchatError as e:
            queue.put_nowait(("error", {"status": _status_for(e), "error": str(e)}))
        except Exception as e:
            logger.exception("chat.stream_failed", error=str(e))
            queue.put_nowait(("error", {"status": 500, "error": "Internal server error"}))
        finally:
            queue.put_nowait(None)

    async def events() -> AsyncIterator[str]:
        task = asyncio.create_task(run_turn())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _sse(*item)
        finally:
            if not task.done():
                logger.info("chat.client_disconnected")
                token.cancel("client disconnected")

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

"""Conversations API — list, inspect and delete stored conversations."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from workchat.agent.messages import message_to_dict
from workchat.api.middleware.auth import verify_api_key

router = APIRouter()


@router.get("/v1/conversations")
async def list_conversations(
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> list[dict[str, Any]]:
    """List live (unexpired) conversations, most recently updated first."""
    return await request.app.state.store.list_conversations()


@router.get("/v1/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict[str, Any]:
    messages = await request.app.state.store.get(conversation_id)
    if not messages:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return {
        "id": conversation_id,
        "message_count": len(messages),
        "messages": [message_to_dict(m) for m in messages],
    }


@router.delete("/v1/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    request: Request,
    _api_key: str | None = Depends(verify_api_key),
) -> dict[str, str]:
    """Delete a conversation."""
    if await request.app.state.store.delete(conversation_id):
        return {"status": "deleted", "id": conversation_id}
    return {"status": "not_found", "id": conversation_id}

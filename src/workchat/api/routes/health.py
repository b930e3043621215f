"""Health check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from workchat import __version__

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check — returns status, uptime, model and plugin info."""
    state = request.app.state
    config = state.config
    summarizer = getattr(state, "summarizer", None)

    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "model": config.llm.model,
        "llm_stats": state.gateway.stats,
        "store": config.store.backend,
        "plugins": [plugin.name for plugin in state.service.plugins],
        "max_rounds": config.agent.max_rounds,
        "summarization": summarizer.describe() if summarizer else {"enabled": False},
    }

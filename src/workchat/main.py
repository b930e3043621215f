"""workchat — FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from workchat import __version__
from workchat.agent.engine import TurnEngine
from workchat.agent.store import (
    ConversationStore,
    InMemoryConversationStore,
    SQLiteConversationStore,
)
from workchat.agent.summarizer import Summarizer
from workchat.config import StoreConfig, get_config
from workchat.db.engine import Database
from workchat.extensions.loader import load_plugins
from workchat.llm.gateway import LLMGateway
from workchat.logging import setup_logging
from workchat.service import ChatService

logger = structlog.get_logger()


async def open_store(config: StoreConfig) -> ConversationStore:
    """Build and initialize the configured conversation store."""
    if config.backend == "memory":
        return InMemoryConversationStore(ttl_seconds=config.ttl_seconds)
    db = Database(
        config.data_dir,
        journal_mode=config.journal_mode,
        busy_timeout_ms=config.busy_timeout_ms,
    )
    store = SQLiteConversationStore(db, ttl_seconds=config.ttl_seconds)
    await store.initialize()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    logger.info("workchat.starting", version=__version__, model=config.llm.model)

    store = await open_store(config.store)
    gateway = LLMGateway(config.llm)
    summarizer = Summarizer(gateway, config.agent) if config.agent.summarization_enabled else None
    engine = TurnEngine(gateway, store, config.agent, summarizer=summarizer)

    plugins = load_plugins(config.plugins_dir)
    service = ChatService(engine, plugins)

    app.state.config = config
    app.state.store = store
    app.state.gateway = gateway
    app.state.summarizer = summarizer
    app.state.engine = engine
    app.state.service = service

    logger.info(
        "workchat.ready",
        store=config.store.backend,
        plugins=[plugin.name for plugin in plugins],
    )

    yield

    logger.info("workchat.shutting_down")
    await service.shutdown()
    await store.close()
    logger.info("workchat.stopped")


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="workchat",
        version=__version__,
        description="Conversational orchestrator over workplace platform tools.",
        lifespan=lifespan,
    )

    from workchat.api.routes.chat import router as chat_router
    from workchat.api.routes.conversations import router as conversations_router
    from workchat.api.routes.health import router as health_router

    app.include_router(health_router, tags=["health"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(conversations_router, tags=["conversations"])

    return app


app = create_app()


def main() -> None:
    """Run the server directly."""
    config = get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)
    uvicorn.run(
        "workchat.main:app",
        host=config.host,
        port=config.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()

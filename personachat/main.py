"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from langchain_core.language_models import BaseChatModel
from sqlalchemy.orm import Session

from personachat import __version__
from personachat.api import api_router, health_router
from personachat.api.chat import chat_validation_exception_handler
from personachat.config import Settings, get_settings
from personachat.database import SessionLocal, engine, init_db
from personachat.persona import format_persona, load_persona
from personachat.services.context import ContextRetriever
from personachat.services.conversation import ConversationManager, HandleRegistry
from personachat.services.llm import create_llm
from personachat.services.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    message_store: MessageStore
    context_retriever: ContextRetriever
    conversation_manager: ConversationManager


def build_services(
    settings: Settings,
    session_factory: Callable[[], Session] = SessionLocal,
    llm: BaseChatModel | None = None,
) -> ChatServices:
    """Wire the chat services together.

    Raises:
        ConfigurationError: Persona or credential problems; the caller must not serve
    """
    persona = load_persona(settings.persona_path)
    preamble = format_persona(persona)
    logger.info("Personality instructions formatted (%d chars)", len(preamble))

    store = MessageStore(session_factory)
    retriever = ContextRetriever(session_factory, search_limit=settings.SEARCH_LIMIT)
    manager = ConversationManager(
        llm or create_llm(settings),
        preamble,
        registry=HandleRegistry(max_size=settings.HANDLE_REGISTRY_MAX_SIZE),
        context_retriever=retriever,
        context_limit=settings.CONTEXT_LIMIT,
        timeout=settings.generation_timeout,
        user_name=persona.user_name,
        bot_name=persona.name,
    )
    return ChatServices(store, retriever, manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from personachat.logging_config import setup_logging
    setup_logging("Server")

    settings = get_settings()

    # Startup: create tables if they don't exist
    init_db(engine)

    # Configuration errors propagate so the server never starts serving
    services = build_services(settings)
    app.state.message_store = services.message_store
    app.state.context_retriever = services.context_retriever
    app.state.conversation_manager = services.conversation_manager
    logger.info("Chat service ready (provider=%s, model=%s)", settings.LLM_PROVIDER, settings.LLM_MODEL)

    yield


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Persona Chat API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.CORS_ALLOW_ALL_ORIGINS else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(api_router)
    app.add_exception_handler(RequestValidationError, chat_validation_exception_handler)

    # Serve the browser front end, if one is configured
    if settings.STATIC_DIR and Path(settings.STATIC_DIR).is_dir():
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("personachat.main:app", host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()

import asyncio
import logging
from contextlib import asynccontextmanager

import alembic.command
import alembic.config
import openai
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.ai_feature.bridge import StreamBridge
from app.ai_feature.model import OpenAIChatModel
from app.ai_feature.service import ConversationFlow
from app.ai_feature.tools import build_tools
from app.api.router import api_router
from app.core.config import settings
from app.core.database import build_engine, build_session_factory
from app.core.session_store import SessionStore

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def run_migrations():
    """Sync function to run migrations"""
    alembic_cfg = alembic.config.Config("alembic.ini")
    alembic.command.upgrade(alembic_cfg, "head")


# Wire the chat pipeline once and close engines/clients when the app stops
@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is required")

    # Apply any pending migrations automatically when the app starts
    if settings.RUN_MIGRATIONS:
        await asyncio.to_thread(run_migrations)
        logger.info("Migrations applied successfully (or already up-to-date)")

    chat_engine = build_engine(settings.CHAT_DATABASE_URL)
    query_engine = build_engine(settings.QUERY_DATABASE_URL)
    client = openai.AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL
    )

    flow = ConversationFlow(
        store=SessionStore(build_session_factory(chat_engine)),
        model=OpenAIChatModel(
            client, settings.AI_MODEL, max_tool_turns=settings.MAX_TOOL_TURNS
        ),
        tools=build_tools(query_engine),
    )
    app.state.stream_bridge = StreamBridge(flow, timeout=settings.TURN_TIMEOUT_SECONDS)

    yield

    await client.close()
    await query_engine.dispose()
    await chat_engine.dispose()


app = FastAPI(title="Smart Wallet Chat API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://.*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
    expose_headers=["Link"],
    max_age=300,
)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Hello, World!"}

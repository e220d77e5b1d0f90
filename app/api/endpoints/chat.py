import asyncio
from contextlib import aclosing
from typing import Annotated, AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.ai_feature.bridge import Chunk, Done, Error, StreamBridge
from app.core import schemas
from app.core.security import get_current_user_id

router = APIRouter(tags=["Chat"])

DISCONNECT_POLL_SECONDS = 0.5


# The bridge is built once at startup and handed over through app.state
def get_stream_bridge(request: Request) -> StreamBridge:
    return request.app.state.stream_bridge


user_dep = Annotated[str, Depends(get_current_user_id)]
bridge_dep = Annotated[StreamBridge, Depends(get_stream_bridge)]


def format_sse(data: str) -> str:
    """Frame one SSE event; every line of a multi-line payload gets its own data field."""
    lines = data.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


async def watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def stream_events(
    bridge: StreamBridge, chat_input: schemas.ChatInput, request: Request
) -> AsyncIterator[str]:
    """
    Frame one turn as SSE events and cancel it when the client goes away.

    The disconnect watcher cancels the turn even while this generator is
    parked waiting for the server to send the previous event.
    """
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        async with aclosing(bridge.stream_turn(chat_input, cancel_event)) as events:
            async for event in events:
                if isinstance(event, Chunk):
                    yield format_sse(event.text)
                elif isinstance(event, Error):
                    yield format_sse(f"[ERROR] {event.cause}")
                elif isinstance(event, Done):
                    yield format_sse("[DONE]")
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)


@router.post("/chat")
async def chat(
    payload: schemas.ChatRequest,
    request: Request,
    user_id: user_dep,
    bridge: bridge_dep,
):
    """
    Stream the assistant's answer as Server-Sent Events.

    One event per chunk, then either `[DONE]` or `[ERROR] <message>`.
    """
    chat_input = schemas.ChatInput(
        session_id=payload.session_id,
        message=payload.chat_input,
        user_id=user_id,
        full_name=payload.full_name,
        lat=payload.lat,
        long=payload.long,
    )

    return StreamingResponse(
        stream_events(bridge, chat_input, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering for nginx
        },
    )

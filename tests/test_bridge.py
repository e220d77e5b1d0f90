import asyncio

import pytest

from app.ai_feature.bridge import Chunk, Done, Error, StreamBridge
from app.ai_feature.service import ConversationFlow
from app.core.exceptions import GenerationError, SessionStoreError, TurnCancelled
from app.core.schemas import ChatInput
from tests.fakes import FakeModel, InMemoryStore


def _bridge(model, store=None, timeout=None):
    store = store if store is not None else InMemoryStore()
    return StreamBridge(ConversationFlow(store, model, tools=[]), timeout=timeout)


async def _collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_chunks_arrive_in_order_then_done():
    store = InMemoryStore()
    bridge = _bridge(FakeModel(chunks=["a", "b", "c"], final="abc"), store)

    events = await _collect(bridge.stream_turn(ChatInput(session_id="s1", message="hello")))

    assert events == [Chunk("a"), Chunk("b"), Chunk("c"), Done("abc")]
    assert store.save_calls == 1


@pytest.mark.asyncio
async def test_turn_with_no_chunks_still_terminates_once():
    bridge = _bridge(FakeModel(chunks=[], final="quiet answer"))

    events = await _collect(bridge.stream_turn(ChatInput(session_id="s1", message="hello")))

    assert events == [Done("quiet answer")]


@pytest.mark.asyncio
async def test_generation_failure_is_the_terminal_error_event():
    store = InMemoryStore()
    cause = GenerationError("upstream 500")
    bridge = _bridge(FakeModel(chunks=["a", "b"], error=cause), store)

    events = await _collect(bridge.stream_turn(ChatInput(session_id="s1", message="hello")))

    assert events[:2] == [Chunk("a"), Chunk("b")]
    assert events[2] == Error(cause)
    assert len(events) == 3
    assert store.save_calls == 0


@pytest.mark.asyncio
async def test_store_failure_is_reported_after_all_chunks():
    bridge = _bridge(FakeModel(chunks=["a"]), InMemoryStore(fail_on_save=True))

    events = await _collect(bridge.stream_turn(ChatInput(session_id="s1", message="hello")))

    assert events[0] == Chunk("a")
    assert isinstance(events[1], Error)
    assert isinstance(events[1].cause, SessionStoreError)


@pytest.mark.asyncio
async def test_producer_waits_for_the_consumer():
    model = FakeModel(chunks=["a", "b", "c"])
    stream = _bridge(model).stream_turn(ChatInput(session_id="s1", message="hello"))

    first = await stream.__anext__()
    # Give the producer every chance to run ahead
    for _ in range(10):
        await asyncio.sleep(0)

    assert first == Chunk("a")
    assert model.produced == 1

    await stream.aclose()


@pytest.mark.asyncio
async def test_cancel_mid_stream_reports_cancellation_and_skips_persist():
    store = InMemoryStore()
    model = FakeModel(endless=True)
    cancel = asyncio.Event()
    stream = _bridge(model, store).stream_turn(
        ChatInput(session_id="s1", message="hello"), cancel_event=cancel
    )

    received = [await stream.__anext__() for _ in range(3)]
    cancel.set()
    rest = await _collect(stream)

    assert received == [Chunk("chunk-1"), Chunk("chunk-2"), Chunk("chunk-3")]
    assert len(rest) == 1
    assert isinstance(rest[0], Error)
    assert isinstance(rest[0].cause, TurnCancelled)
    assert model.closed
    assert store.save_calls == 0
    assert store.data == {}


@pytest.mark.asyncio
async def test_deadline_cancels_a_stalled_turn():
    store = InMemoryStore()
    model = FakeModel(chunks=["thinking"], hang=True)
    bridge = _bridge(model, store, timeout=0.05)

    events = await _collect(bridge.stream_turn(ChatInput(session_id="s1", message="hello")))

    assert events[0] == Chunk("thinking")
    assert isinstance(events[1].cause, TurnCancelled)
    assert "deadline" in str(events[1].cause)
    assert model.closed
    assert store.save_calls == 0


@pytest.mark.asyncio
async def test_consumer_walking_away_stops_the_producer():
    store = InMemoryStore()
    model = FakeModel(endless=True)
    stream = _bridge(model, store).stream_turn(ChatInput(session_id="s1", message="hello"))

    assert await stream.__anext__() == Chunk("chunk-1")
    await stream.aclose()

    assert model.closed
    assert store.save_calls == 0

"""
Streaming bridge between the conversation flow and the HTTP response.

The flow runs as its own task (the producer) and hands chunks over a one-slot
queue; each send waits until the consumer has taken the chunk and asked for the
next one, so a slow client stalls the model instead of buffering. The
producer task's outcome is the single terminal result: it is checked once,
after every chunk has been yielded.

stream_turn yields Chunk events in emission order and then exactly one Done
or Error event.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from app.ai_feature.service import ConversationFlow
from app.core.exceptions import TurnCancelled
from app.core.schemas import ChatInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Chunk:
    text: str


@dataclass(frozen=True)
class Done:
    final_text: str


@dataclass(frozen=True)
class Error:
    cause: BaseException


StreamEvent = Union[Chunk, Done, Error]


async def _cancel_and_wait(*tasks: Optional[asyncio.Task]) -> None:
    pending = [task for task in tasks if task is not None and not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


class StreamBridge:
    def __init__(self, flow: ConversationFlow, timeout: Optional[float] = None):
        self._flow = flow
        self._timeout = timeout

    async def stream_turn(
        self,
        chat_input: ChatInput,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        handoff: asyncio.Queue[str] = asyncio.Queue(maxsize=1)

        async def send_chunk(text: str) -> None:
            await handoff.put(text)
            # Rendezvous: return only once the consumer released the chunk
            await handoff.join()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout if self._timeout else None

        producer = asyncio.create_task(self._flow.run_turn(chat_input, send_chunk))
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None
        receiver: Optional[asyncio.Task] = None

        # Stop the producer even while this generator is parked at a yield
        def stop_producer(waiter: asyncio.Task) -> None:
            if not waiter.cancelled():
                producer.cancel()

        if cancel_waiter is not None:
            cancel_waiter.add_done_callback(stop_producer)

        try:
            while True:
                reason = None
                if cancel_event is not None and cancel_event.is_set():
                    reason = "client disconnected"
                else:
                    if receiver is None:
                        receiver = asyncio.create_task(handoff.get())

                    waiting = {receiver, producer}
                    if cancel_waiter is not None:
                        waiting.add(cancel_waiter)
                    remaining = None if deadline is None else max(deadline - loop.time(), 0)

                    done, _ = await asyncio.wait(
                        waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                    )

                    # Cancellation wins over a chunk that arrived in the same round
                    if cancel_waiter is not None and cancel_waiter in done:
                        reason = "client disconnected"
                    elif not done:
                        reason = "turn deadline exceeded"
                    elif receiver in done:
                        text = receiver.result()
                        receiver = None
                        yield Chunk(text)
                        handoff.task_done()
                        continue
                    else:
                        break

                logger.info(f"[Session {chat_input.session_id}] Turn cancelled: {reason}")
                await _cancel_and_wait(producer)
                yield Error(TurnCancelled(f"turn cancelled: {reason}"))
                return

            # Every chunk is out; consult the terminal result once
            if producer.cancelled():
                yield Error(TurnCancelled("turn cancelled"))
            elif producer.exception() is not None:
                error = producer.exception()
                logger.error(f"[Session {chat_input.session_id}] Turn failed: {error!r}")
                yield Error(error)
            else:
                yield Done(producer.result())
        finally:
            await _cancel_and_wait(receiver, cancel_waiter, producer)

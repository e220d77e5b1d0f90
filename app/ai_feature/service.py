"""
Conversation flow: one chat turn from session load to persisted history.

LOADING -> COMPOSING -> GENERATING -> PERSISTING -> COMPLETED, or FAILED from
any phase after loading. History is only written once the model has produced
its final response, so a failed or cancelled turn leaves no trace.
"""

import logging
from contextlib import aclosing
from enum import Enum
from typing import Awaitable, Callable, List, Sequence

from app.ai_feature.model import GenerationRequest, ModelClient
from app.ai_feature.prompt import generate_prompt
from app.ai_feature.tools import Tool
from app.core.exceptions import GenerationError
from app.core.schemas import ChatInput, Message, SessionState
from app.core.session_store import SessionStore

logger = logging.getLogger(__name__)

SendChunk = Callable[[str], Awaitable[None]]


class TurnPhase(str, Enum):
    LOADING = "loading"
    COMPOSING = "composing"
    GENERATING = "generating"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationFlow:
    def __init__(self, store: SessionStore, model: ModelClient, tools: Sequence[Tool]):
        self._store = store
        self._model = model
        self._tools: List[Tool] = list(tools)

    async def run_turn(self, chat_input: ChatInput, send_chunk: SendChunk) -> str:
        """
        Run one turn and return the assistant's final text.

        Every partial chunk is awaited through send_chunk before the next one is
        pulled from the model. Raises on failure; nothing is persisted then.
        """
        session_id = chat_input.session_id

        phase = TurnPhase.LOADING
        logger.debug(f"[Session {session_id}] {phase.value}")
        state = await self._store.load(session_id)
        if state is None:
            # Unknown ids start a new conversation
            state = SessionState(history=[])

        try:
            phase = self._advance(session_id, TurnPhase.COMPOSING)
            user_message = Message.user(chat_input.message)
            request = GenerationRequest(
                system_instruction=generate_prompt(
                    chat_input.user_id,
                    chat_input.full_name,
                    chat_input.lat,
                    chat_input.long,
                ),
                messages=[*state.history, user_message],
                tools=self._tools,
            )

            phase = self._advance(session_id, TurnPhase.GENERATING)
            final_text = None
            async with aclosing(self._model.stream(request)) as events:
                async for event in events:
                    if event.is_final:
                        final_text = event.text
                        break
                    await send_chunk(event.text)

            if final_text is None:
                raise GenerationError("model stream ended without a final response")

            phase = self._advance(session_id, TurnPhase.PERSISTING)
            updated = SessionState(
                history=[*state.history, user_message, Message.assistant(final_text)]
            )
            await self._store.save(session_id, updated, user_id=chat_input.user_id)
        except BaseException:
            logger.debug(f"[Session {session_id}] {TurnPhase.FAILED.value} during {phase.value}")
            raise

        self._advance(session_id, TurnPhase.COMPLETED)
        return final_text

    @staticmethod
    def _advance(session_id: str, phase: TurnPhase) -> TurnPhase:
        logger.debug(f"[Session {session_id}] {phase.value}")
        return phase

"""
Durable storage for conversation state.

Sessions are keyed by the caller supplied session id. The whole SessionState is
serialized into one JSON column and replaced on every save.
"""

import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import models
from app.core.exceptions import SessionDecodeError, SessionStoreError
from app.core.schemas import SessionState

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, session_id: str) -> Optional[SessionState]:
        """Return the stored state, or None when the session id is unknown."""
        query = select(models.ChatSession.data).where(
            models.ChatSession.session_id == session_id
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                data = result.scalar_one_or_none()
        except SQLAlchemyError as error:
            raise SessionStoreError(f"session store load: {error}") from error
        except ValueError as error:
            # JSON stored as text (SQLite) is parsed while fetching
            raise SessionDecodeError(
                f"session store load: failed to decode state for {session_id!r}: {error}"
            ) from error

        if data is None:
            return None

        try:
            return SessionState.model_validate(data)
        except ValidationError as error:
            raise SessionDecodeError(
                f"session store load: failed to decode state for {session_id!r}: {error}"
            ) from error

    async def save(
        self, session_id: str, state: SessionState, user_id: Optional[str] = None
    ) -> None:
        """Insert the session or overwrite its stored state (upsert)."""
        data = state.model_dump(mode="json")

        try:
            async with self._session_factory() as session:
                insert = _UPSERT_DIALECTS.get(session.bind.dialect.name)
                if insert is None:
                    raise SessionStoreError(
                        f"session store save: unsupported dialect {session.bind.dialect.name!r}"
                    )

                stmt = insert(models.ChatSession).values(
                    session_id=session_id, user_id=user_id, data=data
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[models.ChatSession.session_id],
                    set_={"data": stmt.excluded.data, "updated_at": func.now()},
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as error:
            raise SessionStoreError(f"session store save: {error}") from error

        logger.debug(f"Saved session {session_id} ({len(state.history)} messages)")

from sqlalchemy import JSON, TIMESTAMP, Column, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from app.core.database import Base


# =========================
# Chat session
# =========================
class ChatSession(Base):
    """
    One row per conversation.

    `data` holds the serialized SessionState (the whole message history).
    It is replaced as a unit on every save, never patched.
    """

    __tablename__ = "chat_sessions"

    session_id = Column(String, primary_key=True)

    # Identity of the caller that first wrote the session
    user_id = Column(String, nullable=True, index=True)

    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

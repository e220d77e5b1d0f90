from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================
# Enums
# =========================
class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# =========================
# CONVERSATION HISTORY
# =========================
class TextPart(BaseModel):
    text: str

    model_config = ConfigDict(frozen=True)


class Message(BaseModel):
    role: Role
    content: List[TextPart]

    model_config = ConfigDict(frozen=True)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=[TextPart(text=text)])

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=[TextPart(text=text)])

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.content)


class SessionState(BaseModel):
    """Everything persisted for one session."""

    history: List[Message] = []


# =========================
# CHAT
# =========================
class ChatRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)
    chat_input: str = Field(alias="chatInput", min_length=1)
    full_name: Optional[str] = Field(default=None, alias="fullName")
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    long: Optional[float] = Field(default=None, ge=-180, le=180)

    model_config = ConfigDict(populate_by_name=True)


@dataclass(frozen=True)
class ChatInput:
    """One turn as handed to the conversation flow."""

    session_id: str
    message: str
    user_id: Optional[str] = None
    full_name: Optional[str] = None
    lat: Optional[float] = None
    long: Optional[float] = None


# =========================
# DATABASE TOOLS
# =========================
class TableInfo(BaseModel):
    schema_name: str = Field(serialization_alias="schema")
    table: str


class ColumnInfo(BaseModel):
    column_name: str = Field(serialization_alias="columnName")
    data_type: str = Field(serialization_alias="dataType")
    is_nullable: str = Field(serialization_alias="isNullable")
    column_default: Optional[str] = Field(default=None, serialization_alias="columnDefault")
    constraint_type: Optional[str] = Field(default=None, serialization_alias="constraintType")
    referenced_table: Optional[str] = Field(default=None, serialization_alias="referencedTable")
    referenced_column: Optional[str] = Field(default=None, serialization_alias="referencedColumn")


class ProcedureInfo(BaseModel):
    schema_name: str = Field(serialization_alias="schemaName")
    function_name: str = Field(serialization_alias="functionName")
    return_type: str = Field(serialization_alias="returnType")
    arguments: str

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["system", "user", "assistant", "tool"]
DisplayRole = Literal["user", "assistant"]


class ToolCallRequest(BaseModel):
    """A structured tool call emitted by the completion service."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    # Raw JSON text; parsing happens in the chat loop so bad JSON becomes data.
    arguments_json: str = "{}"


class Message(BaseModel):
    """One entry of the model context for a single turn (never persisted)."""

    role: MessageRole
    content: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class DisplayMessage(BaseModel):
    """User-facing transcript entry, persisted per session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    role: DisplayRole
    content: str
    timestamp: str
    session_id: str = Field(alias="sessionId")

    @classmethod
    def create(cls, *, role: DisplayRole, content: str, session_id: str) -> "DisplayMessage":
        return cls(
            id=f"{role}-{uuid.uuid4().hex}",
            role=role,
            content=content,
            timestamp=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_response: Optional[str] = Field(default=None, alias="assistantResponse")
    updated_conversation: List[DisplayMessage] = Field(default_factory=list, alias="updatedConversation")


class DeleteHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    keys_deleted: int = Field(default=0, alias="keysDeleted")

"""Wire models shared by the HTTP client and the conversation state."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class MessageMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    token_count: Optional[int] = None
    processing_time: Optional[int] = None
    model: Optional[str] = None
    error: Optional[str] = None
    edited: Optional[bool] = None
    edited_at: Optional[datetime] = None
    # client-only, never persisted
    retry: Optional[bool] = None
    failed: Optional[bool] = None
    pending: Optional[bool] = None


class ChatMessage(CamelModel):
    id: Optional[str] = None
    sender_id: str = ""
    content: str
    timestamp: datetime
    role: Literal["user", "ai", "system"]
    metadata: Optional[MessageMetadata] = None

    @property
    def is_pending(self) -> bool:
        return bool(self.metadata and self.metadata.pending)

    @property
    def is_failed(self) -> bool:
        return bool(self.metadata and self.metadata.failed)


class User(CamelModel):
    id: str
    email: str
    name: str
    username: str


class ChatStats(CamelModel):
    total_messages: int = 0
    total_tokens: int = 0
    last_activity: Optional[datetime] = None
    ai_model: Optional[str] = None
    title: Optional[str] = None


class AIHealth(CamelModel):
    status: Literal["healthy", "unhealthy"]
    service: str
    model: Optional[str] = None
    timestamp: datetime
    error: Optional[str] = None


class SendMessageResult(CamelModel):
    user_message: ChatMessage
    ai_message: ChatMessage
    chat_id: str
    processing_time: int


class HistoryPage(CamelModel):
    messages: List[ChatMessage]
    total_count: int
    has_more: bool
    chat_metadata: Optional[ChatStats] = None

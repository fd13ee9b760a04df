from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

MessageRole = Literal["user", "ai", "system"]


class CamelModel(BaseModel):
    # wire format is camelCase, python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageOut(CamelModel):
    id: str
    sender_id: str
    content: str
    timestamp: datetime
    role: MessageRole
    metadata: Optional[Dict[str, Any]] = None


class SendMessageRequest(CamelModel):
    content: Optional[str] = None
    role: MessageRole = "user"
    metadata: Optional[Dict[str, Any]] = None


class SendMessageResponse(CamelModel):
    user_message: MessageOut
    ai_message: MessageOut
    chat_id: str
    processing_time: int       # ms


class ChatStats(CamelModel):
    total_messages: int = 0
    total_tokens: int = 0
    last_activity: Optional[datetime] = None
    ai_model: str
    title: Optional[str] = None


class ChatHistoryResponse(CamelModel):
    messages: List[MessageOut]
    total_count: int
    has_more: bool
    chat_metadata: Optional[ChatStats] = None


class AIHealthOut(CamelModel):
    status: Literal["healthy", "unhealthy"]
    service: str = "ollama"
    model: str
    timestamp: datetime
    error: Optional[str] = None


class MessageEdit(CamelModel):
    content: str


class TitleUpdate(CamelModel):
    title: str


class Detail(CamelModel):
    message: str

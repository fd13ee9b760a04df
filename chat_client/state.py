"""Conversation state and the pure reducer that drives it.

Per send, a message moves through: compose -> optimistic-pending ->
resolved-success (replaced by the confirmed pair) or resolved-failure
(kept, marked failed, draft restored). A retry is a new send.
"""
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict

from chat_client.models import AIHealth, ChatMessage, ChatStats, MessageMetadata, User


class AppState(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: Optional[User] = None
    is_authenticated: bool = False
    is_loading: bool = True
    messages: List[ChatMessage] = []
    draft: str = ""
    is_loading_messages: bool = False
    sending_count: int = 0
    error: Optional[str] = None
    error_seq: int = 0
    has_more_messages: bool = False
    chat_stats: Optional[ChatStats] = None
    ai_health: Optional[AIHealth] = None

    @property
    def is_sending_message(self) -> bool:
        return self.sending_count > 0


# --- Events

class Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class LoadingSet(Event):
    value: bool


class UserSet(Event):
    user: Optional[User] = None


class DraftChanged(Event):
    text: str


class SendStarted(Event):
    message: ChatMessage


class SendSucceeded(Event):
    temp_id: str
    user_message: ChatMessage
    ai_message: ChatMessage


class SendFailed(Event):
    temp_id: str
    content: str
    error: str


class MessagesLoading(Event):
    value: bool


class HistoryLoaded(Event):
    messages: List[ChatMessage]
    has_more: bool


class OlderMessagesLoaded(Event):
    messages: List[ChatMessage]
    has_more: bool


class MessagesCleared(Event):
    pass


class ErrorRaised(Event):
    message: str


class ErrorCleared(Event):
    pass


class ErrorExpired(Event):
    seq: int


class StatsLoaded(Event):
    stats: ChatStats


class HealthLoaded(Event):
    health: AIHealth


AnyEvent = Union[
    LoadingSet, UserSet, DraftChanged, SendStarted, SendSucceeded, SendFailed,
    MessagesLoading, HistoryLoaded, OlderMessagesLoaded, MessagesCleared,
    ErrorRaised, ErrorCleared, ErrorExpired, StatsLoaded, HealthLoaded,
]


def _mark_failed(message: ChatMessage) -> ChatMessage:
    base = message.metadata or MessageMetadata()
    return message.model_copy(update={
        "metadata": base.model_copy(update={"failed": True, "pending": False}),
    })


def reduce(state: AppState, event: AnyEvent) -> AppState:
    if isinstance(event, LoadingSet):
        return state.model_copy(update={"is_loading": event.value})

    if isinstance(event, UserSet):
        return state.model_copy(update={
            "user": event.user,
            "is_authenticated": event.user is not None,
            "is_loading": False,
        })

    if isinstance(event, DraftChanged):
        return state.model_copy(update={"draft": event.text})

    if isinstance(event, SendStarted):
        return state.model_copy(update={
            "messages": [*state.messages, event.message],
            "draft": "",
            "sending_count": state.sending_count + 1,
            "error": None,
        })

    if isinstance(event, SendSucceeded):
        kept = [m for m in state.messages if m.id != event.temp_id]
        return state.model_copy(update={
            "messages": [*kept, event.user_message, event.ai_message],
            "sending_count": max(state.sending_count - 1, 0),
        })

    if isinstance(event, SendFailed):
        return state.model_copy(update={
            "messages": [_mark_failed(m) if m.id == event.temp_id else m for m in state.messages],
            "draft": event.content,
            "sending_count": max(state.sending_count - 1, 0),
            "error": event.error,
            "error_seq": state.error_seq + 1,
        })

    if isinstance(event, MessagesLoading):
        return state.model_copy(update={"is_loading_messages": event.value})

    if isinstance(event, HistoryLoaded):
        return state.model_copy(update={
            "messages": list(event.messages),
            "has_more_messages": event.has_more,
        })

    if isinstance(event, OlderMessagesLoaded):
        # older pages go on top; newest stays at the bottom
        return state.model_copy(update={
            "messages": [*event.messages, *state.messages],
            "has_more_messages": event.has_more,
        })

    if isinstance(event, MessagesCleared):
        return state.model_copy(update={"messages": [], "has_more_messages": False})

    if isinstance(event, ErrorRaised):
        return state.model_copy(update={
            "error": event.message,
            "error_seq": state.error_seq + 1,
            "is_loading": False,
        })

    if isinstance(event, ErrorCleared):
        return state.model_copy(update={"error": None})

    if isinstance(event, ErrorExpired):
        if event.seq != state.error_seq:
            return state
        return state.model_copy(update={"error": None})

    if isinstance(event, StatsLoaded):
        return state.model_copy(update={"chat_stats": event.stats})

    if isinstance(event, HealthLoaded):
        return state.model_copy(update={"ai_health": event.health})

    return state

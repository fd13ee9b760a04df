import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from api.schemas import (
    AIHealthOut,
    ChatHistoryResponse,
    ChatStats,
    MessageOut,
    SendMessageResponse,
)
from api.session_cache import SessionCache
from db.history_store import DEFAULT_TITLE, HistoryStore, MessageDraft, StorageUnavailable
from db.models import Conversation, Message
from services.ai_responder import AIResponder, CONTEXT_MESSAGES

logger = logging.getLogger(__name__)

# sender id stamped on every assistant reply
AI_SENDER_ID = "000000000000000000000000"

FALLBACK_REPLY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again in a moment."
)

# optimistic-UI flags that only ever live on the client copy
CLIENT_ONLY_FLAGS = ("pending", "failed", "retry")


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=str(m.id),
        sender_id=m.sender_id,
        content=m.content,
        timestamp=m.created_at,
        role=m.role,
        metadata=m.meta,
    )


def stats_out(conv: Conversation) -> ChatStats:
    return ChatStats(
        total_messages=conv.total_messages,
        total_tokens=conv.total_tokens,
        last_activity=conv.last_activity,
        ai_model=conv.ai_model,
        title=conv.title,
    )


def derive_title(user_text: str, max_len: int = 60) -> str:
    base = (user_text or "").strip()
    if not base:
        return DEFAULT_TITLE
    first = re.split(r"(?<=[.!?])\s+", base, maxsplit=1)[0].strip()
    cand = (first or base).lstrip("-• ").rstrip(" .!?")
    if len(cand) > max_len:
        cand = cand[:max_len].rstrip() + "…"
    return cand[:1].upper() + cand[1:]


class ChatService:
    """One user's chat operations: history store + session cache + AI responder."""

    def __init__(self, db: Session, responder: AIResponder, cache: SessionCache):
        self.store = HistoryStore(db, ai_model=responder.model)
        self.responder = responder
        self.cache = cache

    def send_message(
        self,
        user_id: str,
        content: Optional[str],
        role: str = "user",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SendMessageResponse:
        started = time.monotonic()
        text = (content or "").strip()
        if not text:
            raise ValueError("Message content is required")

        # context is read before this exchange is written
        recent, _ = self.store.fetch_window(user_id, CONTEXT_MESSAGES)

        user_meta = {k: v for k, v in (metadata or {}).items() if k not in CLIENT_ONLY_FLAGS}
        user_meta["tokenCount"] = len(text)

        ai_meta: Dict[str, Any] = {"model": self.responder.model}
        try:
            ai_started = time.monotonic()
            reply = self.responder.generate(text, recent)
            ai_meta["processingTime"] = _ms_since(ai_started)
            ai_meta["tokenCount"] = len(reply)
        except Exception as e:
            logger.warning("AI generation failed for user %s: %s", user_id, e)
            reply = FALLBACK_REPLY
            ai_meta["error"] = str(e) or type(e).__name__

        user_row, ai_row = self.store.append_exchange(
            user_id,
            MessageDraft(sender_id=user_id, role=role, content=text, meta=user_meta),
            MessageDraft(sender_id=AI_SENDER_ID, role="ai", content=reply, meta=ai_meta),
        )
        user_msg, ai_msg = message_out(user_row), message_out(ai_row)
        self.cache.extend([user_msg, ai_msg])
        self._auto_title(user_id, text)

        return SendMessageResponse(
            user_message=user_msg,
            ai_message=ai_msg,
            chat_id=user_row.conversation_id,
            processing_time=_ms_since(started),
        )

    def _auto_title(self, user_id: str, user_text: str) -> None:
        """Name the conversation after its first message."""
        try:
            conv = self.store.stats(user_id)
            if conv is None or conv.title != DEFAULT_TITLE or conv.total_messages > 2:
                return
            title = derive_title(user_text)
            if title != DEFAULT_TITLE:
                self.store.set_title(user_id, title)
        except StorageUnavailable:
            logger.warning("Could not auto-title conversation for user %s", user_id)

    def get_history(self, user_id: str, limit: int = 50, offset: int = 0) -> ChatHistoryResponse:
        cached = self.cache.get() if offset == 0 else None
        if cached is not None and limit >= len(cached):
            return ChatHistoryResponse(messages=cached, total_count=len(cached), has_more=False)

        rows, total = self.store.fetch_window(user_id, limit, offset)
        messages = [message_out(m) for m in rows]

        if offset == 0:
            if len(messages) <= self.cache.max_size:
                self.cache.replace(messages)
            else:
                self.cache.invalidate()

        conv = self.store.stats(user_id)
        return ChatHistoryResponse(
            messages=messages,
            total_count=total,
            has_more=total > offset + len(messages),
            chat_metadata=stats_out(conv) if conv is not None else None,
        )

    def clear(self, user_id: str) -> bool:
        cleared = self.store.clear(user_id)
        self.cache.clear()
        return cleared

    def stats(self, user_id: str) -> ChatStats:
        conv = self.store.stats(user_id)
        if conv is None:
            return ChatStats(ai_model=self.responder.model)
        return stats_out(conv)

    def rename(self, user_id: str, title: str) -> bool:
        return self.store.set_title(user_id, title.strip() or DEFAULT_TITLE)

    def edit_message(self, user_id: str, message_id: int, content: str) -> bool:
        text = (content or "").strip()
        if not text:
            raise ValueError("Message content is required")
        applied = self.store.edit_message(user_id, message_id, text)
        if applied:
            self.cache.invalidate()
        return applied

    def delete_message(self, user_id: str, message_id: int) -> bool:
        applied = self.store.delete_message(user_id, message_id)
        if applied:
            self.cache.invalidate()
        return applied

    def ai_health(self) -> AIHealthOut:
        healthy, error = self.responder.test_connection()
        return AIHealthOut(
            status="healthy" if healthy else "unhealthy",
            model=self.responder.model,
            timestamp=datetime.now(timezone.utc),
            error=error,
        )

"""Authoritative per-user conversation history.

One conversation per user, created lazily on the first append. Messages are
only ever appended, rewritten in place or removed; the aggregate counters on
the conversation row move in the same transaction as the message rows.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Conversation, Message, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New chat"


class StorageUnavailable(Exception):
    """The database could not complete a history operation."""

    def __init__(self, message: str, op: str = ""):
        super().__init__(message)
        self.op = op


class MessageDraft(BaseModel):
    sender_id: str
    role: str
    content: str
    meta: Dict[str, Any] = Field(default_factory=dict)

    @property
    def token_count(self) -> int:
        return int(self.meta.get("tokenCount") or 0)


class HistoryStore:
    def __init__(self, db: Session, ai_model: str = "mistral"):
        self.db = db
        self.ai_model = ai_model

    @contextmanager
    def _storage(self, op: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("History %s failed", op)
            raise StorageUnavailable(f"Storage unavailable ({op})", op=op) from e

    # --- internals

    def _get(self, user_id: str) -> Optional[Conversation]:
        return self.db.query(Conversation).filter(Conversation.user_id == user_id).first()

    def _get_or_create(self, user_id: str) -> Conversation:
        conv = self._get(user_id)
        if conv is None:
            conv = Conversation(
                id=str(uuid.uuid4()),
                user_id=user_id,
                title=DEFAULT_TITLE,
                total_messages=0,
                total_tokens=0,
                ai_model=self.ai_model,
            )
            self.db.add(conv)
            # must be persistent before the counters take SQL expressions
            self.db.flush()
        return conv

    def _add(self, conv: Conversation, draft: MessageDraft) -> Message:
        now = utcnow()
        row = Message(
            conversation_id=conv.id,
            sender_id=draft.sender_id,
            role=draft.role,
            content=draft.content,
            meta=dict(draft.meta) or None,
            created_at=now,
        )
        self.db.add(row)
        conv.total_messages = Conversation.total_messages + 1
        conv.total_tokens = Conversation.total_tokens + draft.token_count
        conv.last_activity = now
        conv.updated_at = now
        self.db.flush()
        return row

    # --- operations

    def append(self, user_id: str, draft: MessageDraft) -> Message:
        with self._storage("append"):
            conv = self._get_or_create(user_id)
            row = self._add(conv, draft)
            self.db.commit()
            self.db.refresh(row)
            return row

    def append_exchange(self, user_id: str, user_draft: MessageDraft, ai_draft: MessageDraft) -> Tuple[Message, Message]:
        """Append a user message and its reply in one transaction."""
        with self._storage("append"):
            conv = self._get_or_create(user_id)
            user_row = self._add(conv, user_draft)
            ai_row = self._add(conv, ai_draft)
            self.db.commit()
            self.db.refresh(user_row)
            self.db.refresh(ai_row)
            return user_row, ai_row

    def fetch_window(self, user_id: str, limit: int, offset: int = 0) -> Tuple[List[Message], int]:
        """Return up to ``limit`` messages after skipping ``offset`` from the newest end.

        The window comes back oldest first, together with the conversation's
        total message count.
        """
        with self._storage("fetch"):
            conv = self._get(user_id)
            if conv is None:
                return [], 0
            total = (
                self.db.query(func.count(Message.id))
                .filter(Message.conversation_id == conv.id)
                .scalar()
            ) or 0
            if limit <= 0 or offset >= total:
                return [], total
            rows = (
                self.db.query(Message)
                .filter(Message.conversation_id == conv.id)
                .order_by(Message.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            rows.reverse()
            return rows, total

    def clear(self, user_id: str) -> bool:
        with self._storage("clear"):
            conv = self._get(user_id)
            if conv is None:
                return False
            self.db.query(Message).filter(Message.conversation_id == conv.id).delete(synchronize_session=False)
            now = utcnow()
            conv.total_messages = 0
            conv.total_tokens = 0
            conv.last_activity = now
            conv.updated_at = now
            self.db.commit()
            return True

    def stats(self, user_id: str) -> Optional[Conversation]:
        with self._storage("stats"):
            return self._get(user_id)

    def set_title(self, user_id: str, title: str) -> bool:
        with self._storage("rename"):
            conv = self._get(user_id)
            if conv is None:
                return False
            conv.title = title
            conv.updated_at = utcnow()
            self.db.commit()
            return True

    def _find(self, conv: Conversation, message_id: int) -> Optional[Message]:
        return (
            self.db.query(Message)
            .filter(Message.id == message_id, Message.conversation_id == conv.id)
            .first()
        )

    def edit_message(self, user_id: str, message_id: int, content: str) -> bool:
        with self._storage("edit"):
            conv = self._get(user_id)
            row = self._find(conv, message_id) if conv is not None else None
            if row is None:
                return False
            now = utcnow()
            row.content = content
            row.meta = {**(row.meta or {}), "edited": True, "editedAt": now.isoformat()}
            conv.updated_at = now
            self.db.commit()
            return True

    def delete_message(self, user_id: str, message_id: int) -> bool:
        with self._storage("delete"):
            conv = self._get(user_id)
            row = self._find(conv, message_id) if conv is not None else None
            if row is None:
                return False
            tokens = int((row.meta or {}).get("tokenCount") or 0)
            self.db.delete(row)
            conv.total_messages = Conversation.total_messages - 1
            conv.total_tokens = Conversation.total_tokens - tokens
            conv.updated_at = utcnow()
            self.db.commit()
            return True

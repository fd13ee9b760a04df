import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

import requests

from chat_client.api import ApiError, AuthAPI, ChatAPI
from chat_client.models import ChatMessage, MessageMetadata, SendMessageResult
from chat_client.state import (
    AnyEvent,
    AppState,
    DraftChanged,
    ErrorCleared,
    ErrorExpired,
    ErrorRaised,
    HealthLoaded,
    HistoryLoaded,
    LoadingSet,
    MessagesCleared,
    MessagesLoading,
    OlderMessagesLoaded,
    SendFailed,
    SendStarted,
    SendSucceeded,
    StatsLoaded,
    UserSet,
    reduce,
)

logger = logging.getLogger(__name__)

ERROR_TIMEOUT = 5.0   # seconds an error stays visible
PAGE_SIZE = 20

Listener = Callable[[AppState], None]
Scheduler = Callable[[float, Callable[[], None]], None]


def _start_timer(delay: float, fn: Callable[[], None]) -> None:
    t = threading.Timer(delay, fn)
    t.daemon = True
    t.start()


class ConversationStore:
    """Effect layer: issues the network calls and feeds results to ``reduce``."""

    def __init__(
        self,
        api: Optional[ChatAPI] = None,
        auth: Optional[AuthAPI] = None,
        error_timeout: float = ERROR_TIMEOUT,
        schedule: Optional[Scheduler] = None,
    ):
        http = requests.Session()
        self.api = api or ChatAPI(session=http)
        self.auth = auth or AuthAPI(session=http)
        self.error_timeout = error_timeout
        self._schedule = schedule or _start_timer
        self._state = AppState()
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: AnyEvent) -> AppState:
        with self._lock:
            before = self._state
            self._state = state = reduce(before, event)
            for listener in list(self._listeners):
                listener(state)
        if state.error is not None and state.error_seq != before.error_seq:
            seq = state.error_seq
            self._schedule(self.error_timeout, lambda: self.dispatch(ErrorExpired(seq=seq)))
        return state

    # --- compose

    def set_draft(self, text: str) -> None:
        self.dispatch(DraftChanged(text=text))

    def clear_error(self) -> None:
        self.dispatch(ErrorCleared())

    # --- sending

    def _optimistic(self, content: str, retry: bool) -> ChatMessage:
        user = self._state.user
        return ChatMessage(
            id=f"temp-{uuid.uuid4().hex[:12]}",
            sender_id=user.id if user else "",
            content=content,
            timestamp=datetime.now(timezone.utc),
            role="user",
            metadata=MessageMetadata(pending=True, retry=True if retry else None),
        )

    def _send(self, content: str, retry: bool) -> SendMessageResult:
        if not content or not content.strip():
            raise ValueError("Message content is required")

        temp = self._optimistic(content, retry)
        self.dispatch(SendStarted(message=temp))
        try:
            if retry:
                result = self.api.retry_message(content)
            else:
                result = self.api.send_message(content)
        except ApiError as e:
            self.dispatch(SendFailed(temp_id=temp.id, content=content, error=e.message or "Failed to send message"))
            raise

        self.dispatch(SendSucceeded(temp_id=temp.id, user_message=result.user_message, ai_message=result.ai_message))
        self.load_stats()
        return result

    def send_message(self, content: str) -> SendMessageResult:
        return self._send(content, retry=False)

    def retry_message(self, content: str) -> SendMessageResult:
        """Send ``content`` again as a fresh message; the failed copy is left as is."""
        return self._send(content, retry=True)

    # --- history

    def load_history(self) -> None:
        self.dispatch(MessagesLoading(value=True))
        self.dispatch(ErrorCleared())
        try:
            page = self.api.get_chat_history()
            self.dispatch(HistoryLoaded(messages=page.messages, has_more=page.has_more))
        except ApiError as e:
            self.dispatch(ErrorRaised(message=e.message or "Failed to load chat history"))
        finally:
            self.dispatch(MessagesLoading(value=False))

    def load_more(self) -> bool:
        """Prepend the next older page. Returns False when nothing was requested."""
        with self._lock:
            state = self._state
            if not state.has_more_messages or state.is_loading_messages:
                return False
            self.dispatch(MessagesLoading(value=True))
            loaded = len(state.messages)

        try:
            page = self.api.load_more_messages(loaded, limit=PAGE_SIZE)
            self.dispatch(OlderMessagesLoaded(messages=page.messages, has_more=page.has_more))
        except ApiError as e:
            self.dispatch(ErrorRaised(message=e.message or "Failed to load more messages"))
        finally:
            self.dispatch(MessagesLoading(value=False))
        return True

    def clear_chat(self) -> None:
        try:
            self.api.clear_chat_history()
        except ApiError as e:
            self.dispatch(ErrorRaised(message=e.message or "Failed to clear chat"))
            return
        self.dispatch(MessagesCleared())
        self.load_stats()

    def load_stats(self) -> None:
        try:
            self.dispatch(StatsLoaded(stats=self.api.get_chat_stats()))
        except ApiError as e:
            logger.error("Failed to load chat stats: %s", e)

    def check_ai_health(self) -> None:
        try:
            self.dispatch(HealthLoaded(health=self.api.check_ai_health()))
        except ApiError as e:
            logger.error("Failed to check AI health: %s", e)

    # --- auth

    def _on_authenticated(self) -> None:
        if not self._state.messages:
            self.load_history()
            self.load_stats()
            self.check_ai_health()

    def check_auth(self) -> None:
        try:
            user = self.auth.me()
        except ApiError:
            self.dispatch(UserSet(user=None))
            return
        self.dispatch(UserSet(user=user))
        self._on_authenticated()

    def login(self, email: str, password: str) -> None:
        self.dispatch(LoadingSet(value=True))
        self.dispatch(ErrorCleared())
        try:
            user = self.auth.login(email, password)
        except ApiError as e:
            self.dispatch(ErrorRaised(message=e.message or "Login failed"))
            raise
        self.dispatch(UserSet(user=user))
        self._on_authenticated()

    def register(self, name: str, username: str, email: str, password: str) -> None:
        self.dispatch(LoadingSet(value=True))
        self.dispatch(ErrorCleared())
        try:
            user = self.auth.register(name, username, email, password)
        except ApiError as e:
            self.dispatch(ErrorRaised(message=e.message or "Registration failed"))
            raise
        self.dispatch(UserSet(user=user))
        self._on_authenticated()

    def logout(self) -> None:
        try:
            self.auth.logout()
        except ApiError as e:
            logger.error("Logout error: %s", e)
            return
        self.dispatch(UserSet(user=None))
        self.dispatch(MessagesCleared())

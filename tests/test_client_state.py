from datetime import datetime, timezone

from chat_client.models import ChatMessage, MessageMetadata
from chat_client.state import (
    AppState,
    ErrorExpired,
    ErrorRaised,
    HistoryLoaded,
    MessagesCleared,
    OlderMessagesLoaded,
    SendFailed,
    SendStarted,
    SendSucceeded,
    UserSet,
    reduce,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def msg(id, content=None, role="user", **meta):
    return ChatMessage(
        id=id,
        sender_id="u1",
        content=content or id,
        timestamp=NOW,
        role=role,
        metadata=MessageMetadata(**meta) if meta else None,
    )


def test_initial_state():
    state = AppState()
    assert state.is_loading is True
    assert state.is_authenticated is False
    assert state.messages == []
    assert state.is_sending_message is False


def test_user_set_toggles_authentication():
    state = reduce(AppState(), UserSet(user={"id": "u1", "email": "a@b.c", "name": "A", "username": "a"}))
    assert state.is_authenticated is True
    assert state.is_loading is False

    state = reduce(state, UserSet(user=None))
    assert state.is_authenticated is False


def test_send_started_appends_pending_and_clears_draft():
    state = AppState(draft="hello", error="old")
    temp = msg("temp-1", "hello", pending=True)

    state = reduce(state, SendStarted(message=temp))

    assert state.messages[-1].is_pending
    assert state.draft == ""
    assert state.error is None
    assert state.is_sending_message


def test_send_succeeded_replaces_only_its_temp_message():
    state = AppState(messages=[msg("1"), msg("2", role="ai")])
    state = reduce(state, SendStarted(message=msg("temp-a", "a", pending=True)))
    state = reduce(state, SendStarted(message=msg("temp-b", "b", pending=True)))

    state = reduce(state, SendSucceeded(temp_id="temp-a", user_message=msg("3", "a"), ai_message=msg("4", role="ai")))

    assert [m.id for m in state.messages] == ["1", "2", "temp-b", "3", "4"]
    assert state.sending_count == 1


def test_send_failed_marks_message_and_restores_draft():
    state = reduce(AppState(), SendStarted(message=msg("temp-1", "hello", pending=True)))

    state = reduce(state, SendFailed(temp_id="temp-1", content="hello", error="boom"))

    failed = state.messages[0]
    assert failed.is_failed
    assert not failed.is_pending
    assert state.draft == "hello"
    assert state.error == "boom"
    assert state.error_seq == 1
    assert not state.is_sending_message


def test_older_messages_are_prepended():
    state = reduce(AppState(), HistoryLoaded(messages=[msg("A"), msg("B")], has_more=True))

    state = reduce(state, OlderMessagesLoaded(messages=[msg("Z")], has_more=False))

    assert [m.id for m in state.messages] == ["Z", "A", "B"]
    assert state.has_more_messages is False


def test_messages_cleared():
    state = reduce(AppState(), HistoryLoaded(messages=[msg("A")], has_more=True))
    state = reduce(state, MessagesCleared())
    assert state.messages == []
    assert state.has_more_messages is False


def test_error_expiry_ignores_superseded_errors():
    state = reduce(AppState(), ErrorRaised(message="first"))
    first_seq = state.error_seq
    state = reduce(state, ErrorRaised(message="second"))

    state = reduce(state, ErrorExpired(seq=first_seq))
    assert state.error == "second"

    state = reduce(state, ErrorExpired(seq=state.error_seq))
    assert state.error is None

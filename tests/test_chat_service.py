from unittest.mock import MagicMock

import pytest

from api.session_cache import SessionCache
from db.history_store import StorageUnavailable
from services.ai_responder import AIResponderError
from services.chat_service import AI_SENDER_ID, FALLBACK_REPLY, ChatService, derive_title

USER = "user-1"


@pytest.fixture
def cache():
    return SessionCache()


@pytest.fixture
def service(db, responder, cache):
    return ChatService(db, responder, cache)


def test_send_persists_user_then_ai(service):
    result = service.send_message(USER, "  hello  ")

    assert result.user_message.content == "hello"
    assert result.user_message.role == "user"
    assert result.user_message.sender_id == USER
    assert result.user_message.metadata["tokenCount"] == 5
    assert result.ai_message.content == "Hi there!"
    assert result.ai_message.role == "ai"
    assert result.ai_message.sender_id == AI_SENDER_ID
    assert result.ai_message.metadata["model"] == "test-model"
    assert "error" not in result.ai_message.metadata
    assert int(result.user_message.id) < int(result.ai_message.id)
    assert result.processing_time >= 0

    page = service.get_history(USER)
    assert [m.id for m in page.messages] == [result.user_message.id, result.ai_message.id]


def test_send_rejects_blank_content_without_side_effects(service, responder):
    for blank in ("", "   ", "\n\t", None):
        with pytest.raises(ValueError, match="Message content is required"):
            service.send_message(USER, blank)

    assert responder.calls == []
    assert service.stats(USER).total_messages == 0


def test_send_passes_prior_history_as_context(service, responder):
    service.send_message(USER, "first")
    service.send_message(USER, "second")

    message, history = responder.calls[-1]
    assert message == "second"
    assert [m.content for m in history] == ["first", "Hi there!"]


def test_ai_failure_still_persists_with_fallback(service, responder):
    responder.error = AIResponderError("Failed to generate AI response: timeout")

    result = service.send_message(USER, "are you there?")

    assert result.ai_message.content == FALLBACK_REPLY
    assert "timeout" in result.ai_message.metadata["error"]
    rows, total = service.store.fetch_window(USER, limit=10)
    assert total == 2
    assert [r.role for r in rows] == ["user", "ai"]


def test_client_only_flags_are_stripped(service):
    result = service.send_message(USER, "again", metadata={"retry": True, "pending": True, "failed": False, "source": "web"})

    assert result.user_message.metadata == {"source": "web", "tokenCount": 5}


def test_storage_failure_propagates(service):
    service.store.append_exchange = MagicMock(side_effect=StorageUnavailable("down"))
    with pytest.raises(StorageUnavailable):
        service.send_message(USER, "hello")


def test_history_miss_populates_cache(service, cache):
    service.send_message(USER, "one")
    assert cache.get() is None

    page = service.get_history(USER, limit=50)

    assert page.total_count == 2
    assert page.has_more is False
    assert page.chat_metadata.total_messages == 2
    assert [m.content for m in cache.get()] == ["one", "Hi there!"]


def test_history_hit_skips_store(service, cache):
    service.send_message(USER, "one")
    service.get_history(USER, limit=50)
    service.store.fetch_window = MagicMock(wraps=service.store.fetch_window)

    page = service.get_history(USER, limit=50)

    service.store.fetch_window.assert_not_called()
    assert page.total_count == 2
    assert page.has_more is False
    assert page.chat_metadata is None


def test_history_with_offset_bypasses_cache(service, cache):
    for i in range(3):
        service.send_message(USER, f"m{i}")
    service.get_history(USER, limit=50)
    cached = cache.get()

    page = service.get_history(USER, limit=2, offset=2)

    assert [m.content for m in page.messages] == ["m1", "Hi there!"]
    assert page.total_count == 6
    assert page.has_more is True
    assert cache.get() == cached


def test_history_limit_below_cached_window_queries_store(service, cache):
    for i in range(3):
        service.send_message(USER, f"m{i}")
    service.get_history(USER, limit=50)

    page = service.get_history(USER, limit=2)

    assert [m.content for m in page.messages] == ["m2", "Hi there!"]
    assert page.has_more is True
    assert len(cache.get()) == 2


def test_send_writes_through_populated_cache(service, cache):
    service.get_history(USER)
    assert cache.get() == []

    service.send_message(USER, "hello")

    assert [m.content for m in cache.get()] == ["hello", "Hi there!"]


def test_clear_empties_store_and_cache(service, cache):
    service.send_message(USER, "hello")
    service.get_history(USER)

    service.clear(USER)

    stats = service.stats(USER)
    assert stats.total_messages == 0
    assert stats.total_tokens == 0
    assert cache.get() == []
    page = service.get_history(USER, limit=10, offset=0)
    assert page.messages == []
    assert page.has_more is False


def test_stats_without_conversation(service):
    stats = service.stats("nobody")
    assert stats.total_messages == 0
    assert stats.total_tokens == 0
    assert stats.last_activity is None
    assert stats.ai_model == "test-model"


def test_edit_and_delete_invalidate_cache(service, cache):
    result = service.send_message(USER, "hello")
    service.get_history(USER)

    assert service.edit_message(USER, int(result.user_message.id), "hello there") is True
    assert cache.get() is None

    service.get_history(USER)
    assert service.delete_message(USER, int(result.ai_message.id)) is True
    assert cache.get() is None

    page = service.get_history(USER)
    assert [m.content for m in page.messages] == ["hello there"]
    assert page.messages[0].metadata["edited"] is True


def test_edit_delete_unknown_message_leave_cache(service, cache):
    service.get_history(USER)
    assert service.edit_message(USER, 404, "x") is False
    assert service.delete_message(USER, 404) is False
    assert cache.get() == []


def test_first_exchange_names_conversation(service):
    service.send_message(USER, "How do I bake bread? Asking for a friend.")
    assert service.stats(USER).title == "How do I bake bread"

    service.send_message(USER, "Something else entirely")
    assert service.stats(USER).title == "How do I bake bread"


def test_derive_title():
    assert derive_title("") == "New chat"
    assert derive_title("hello world!") == "Hello world"
    long = derive_title("x" * 100)
    assert len(long) == 61
    assert long.endswith("…")


def test_ai_health(service):
    health = service.ai_health()
    assert health.status == "healthy"
    assert health.model == "test-model"
    assert health.error is None

"""
Tests for ChatHistoryService: the end-to-end behaviour the chat page relies on.
"""

import pytest
from unittest.mock import AsyncMock

from chat_history.core import ChatHistoryService, SessionCache
from chat_history.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
)
from chat_history.models import ChatHistoryFilter, PaginationOptions
from chat_history.storage import QuerySpec

from conftest import make_message


async def _create_many(service, owner, count, language="en"):
    ids = []
    for i in range(count):
        ids.append(await service.create_session(owner, language, make_message(f"Question number {i}")))
    return ids


class TestCreateAndAppend:
    """Session creation, appends and the invariants they maintain."""

    @pytest.mark.asyncio
    async def test_create_empty_session(self, service):
        session_id = await service.create_session("u1", "en")
        session = await service.get_session(session_id, "u1")

        assert session.title == "New Conversation"
        assert session.message_count == 0
        assert session.messages == []
        assert session.is_active is True
        assert session.tags == []
        assert session.metadata.average_response_time == 0

    @pytest.mark.asyncio
    async def test_create_empty_arabic_session_uses_arabic_title(self, service):
        session_id = await service.create_session("u1", "ar")
        session = await service.get_session(session_id, "u1")
        assert session.title == "محادثة جديدة"
        assert session.language == "ar"

    @pytest.mark.asyncio
    async def test_create_with_first_message(self, service):
        first = make_message("Tell me about the Hajj pilgrimage rules today please", processing_time=50)
        session_id = await service.create_session("u1", "en", first)
        session = await service.get_session(session_id, "u1")

        assert session.title == "Tell me about the Hajj pilgrimage"
        assert session.message_count == 1
        assert session.messages[0].id == first.id
        assert session.tags == ["hajj"]
        assert session.metadata.total_processing_time == 50
        assert session.metadata.average_response_time == 50

    @pytest.mark.asyncio
    async def test_zakat_scenario(self, service):
        session_id = await service.create_session("U1", "en")
        await service.append_message(session_id, make_message("What is Zakat?"), "U1")

        session = await service.get_session(session_id, "U1")
        assert session.title == "What is Zakat?"
        assert "zakat" in session.tags

    @pytest.mark.asyncio
    async def test_renamed_empty_session_keeps_its_title(self, service):
        session_id = await service.create_session("u1", "en")
        await service.rename_session(session_id, "My notes", "u1")
        await service.append_message(session_id, make_message("What is Zakat?"), "u1")

        session = await service.get_session(session_id, "u1")
        assert session.title == "My notes"

    @pytest.mark.asyncio
    async def test_session_renamed_to_default_title_keeps_it(self, service):
        session_id = await service.create_session("u1", "en")
        await service.rename_session(session_id, "New Conversation", "u1")
        await service.append_message(session_id, make_message("What is Zakat?"), "u1")

        session = await service.get_session(session_id, "u1")
        assert session.title == "New Conversation"

    @pytest.mark.asyncio
    async def test_only_first_message_names_empty_session(self, service):
        session_id = await service.create_session("u1", "en")
        await service.append_message(session_id, make_message("What is Zakat?"), "u1")
        await service.append_message(session_id, make_message("And what about Hajj?"), "u1")

        session = await service.get_session(session_id, "u1")
        assert session.title == "What is Zakat?"

    @pytest.mark.asyncio
    async def test_unsupported_language_rejected(self, service, store):
        with pytest.raises(InvalidArgumentError):
            await service.create_session("u1", "fr", make_message("Bonjour"))

        assert await store.query("chat_sessions", QuerySpec()) == []
        result = await service.list_sessions("u1")
        assert result.sessions == []

    @pytest.mark.asyncio
    async def test_message_count_matches_messages(self, service):
        session_id = await service.create_session("u1", "en", make_message("Salaam"))
        for i in range(5):
            session = await service.append_message(session_id, make_message(f"msg {i}", is_user=i % 2 == 0), "u1")
            assert session.message_count == len(session.messages)

        session = await service.get_session(session_id, "u1")
        assert session.message_count == 6 == len(session.messages)
        assert [m.content for m in session.messages][-1] == "msg 4"

    @pytest.mark.asyncio
    async def test_running_average(self, service):
        session_id = await service.create_session("u1", "en")
        for ms in (100, 200, 300):
            await service.append_message(session_id, make_message("reply", is_user=False, processing_time=ms), "u1")

        session = await service.get_session(session_id, "u1")
        assert session.metadata.average_response_time == pytest.approx(200)
        assert session.metadata.total_processing_time == pytest.approx(600)

    @pytest.mark.asyncio
    async def test_tags_capped_at_ten(self, service):
        session_id = await service.create_session("u1", "en")
        await service.append_message(
            session_id,
            make_message("prayer salah quran hadith prophet muhammad allah islam muslim ramadan hajj zakat"),
            "u1",
        )
        await service.append_message(session_id, make_message("fasting in the mosque"), "u1")

        session = await service.get_session(session_id, "u1")
        assert len(session.tags) == 10
        assert "fasting" not in session.tags
        assert "mosque" not in session.tags

    @pytest.mark.asyncio
    async def test_duplicate_message_id_rejected(self, service):
        message = make_message("hello")
        session_id = await service.create_session("u1", "en", message)
        with pytest.raises(InvalidArgumentError):
            await service.append_message(session_id, message, "u1")

    @pytest.mark.asyncio
    async def test_last_activity_advances_on_append(self, service):
        session_id = await service.create_session("u1", "en")
        before = (await service.get_session(session_id, "u1")).last_activity
        await service.append_message(session_id, make_message("hi"), "u1")
        after = (await service.get_session(session_id, "u1")).last_activity
        assert after > before


class TestAuthorization:
    """Ownership checks on every single-session operation."""

    @pytest.mark.asyncio
    async def test_get_foreign_session_denied(self, service, store):
        session_id = await service.create_session("ownerB", "en", make_message("secret question"))
        before = await store.get("chat_sessions", session_id)

        with pytest.raises(PermissionDeniedError) as exc_info:
            await service.get_session(session_id, "ownerA")

        assert "ownerB" not in str(exc_info.value)
        assert await store.get("chat_sessions", session_id) == before

    @pytest.mark.asyncio
    async def test_mutations_on_foreign_session_leave_it_unchanged(self, service, store):
        session_id = await service.create_session("ownerB", "en", make_message("hello"))
        before = await store.get("chat_sessions", session_id)

        with pytest.raises(PermissionDeniedError):
            await service.append_message(session_id, make_message("intrusion"), "ownerA")
        with pytest.raises(PermissionDeniedError):
            await service.rename_session(session_id, "hijacked", "ownerA")
        with pytest.raises(PermissionDeniedError):
            await service.deactivate_session(session_id, "ownerA")
        with pytest.raises(PermissionDeniedError):
            await service.delete_session(session_id, "ownerA")

        assert await store.get("chat_sessions", session_id) == before

    @pytest.mark.asyncio
    async def test_unknown_session_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.get_session("does-not-exist", "u1")
        with pytest.raises(NotFoundError):
            await service.delete_session("does-not-exist", "u1")

    @pytest.mark.asyncio
    async def test_invalid_session_id_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.get_session("../escape", "u1")


class TestListSessions:
    """Pagination, filtering and caching of session lists."""

    @pytest.mark.asyncio
    async def test_paginates_25_sessions(self, service):
        await _create_many(service, "u1", 25)

        first = await service.list_sessions("u1", PaginationOptions(page_size=10))
        assert len(first.sessions) == 10
        assert first.has_more is True

        second = await service.list_sessions("u1", PaginationOptions(page_size=10, cursor=first.next_cursor))
        assert len(second.sessions) == 10
        assert second.has_more is True

        third = await service.list_sessions("u1", PaginationOptions(page_size=10, cursor=second.next_cursor))
        assert len(third.sessions) == 5
        assert third.has_more is False
        assert third.next_cursor is None

        seen = [s.id for page in (first, second, third) for s in page.sessions]
        assert len(set(seen)) == 25

    @pytest.mark.asyncio
    async def test_newest_activity_first(self, service):
        ids = await _create_many(service, "u1", 3)
        await service.append_message(ids[0], make_message("bump"), "u1")

        result = await service.list_sessions("u1")
        assert [s.id for s in result.sessions] == [ids[0], ids[2], ids[1]]

    @pytest.mark.asyncio
    async def test_only_owner_sessions_listed(self, service):
        await _create_many(service, "u1", 2)
        await _create_many(service, "u2", 3)

        result = await service.list_sessions("u1")
        assert len(result.sessions) == 2
        assert all(s.user_id == "u1" for s in result.sessions)

    @pytest.mark.asyncio
    async def test_residual_filter_applies_after_page_cut(self, service):
        # Two older sessions beyond the first page, then ten newer ones of which three match
        await _create_many(service, "u1", 2)
        for i in range(10):
            content = "How long is fasting in winter?" if i in (1, 4, 7) else f"Other topic {i}"
            await service.create_session("u1", "en", make_message(content))

        result = await service.list_sessions(
            "u1",
            PaginationOptions(page_size=10),
            ChatHistoryFilter(search_query="FASTING"),
        )
        assert len(result.sessions) == 3
        assert result.has_more is True
        assert result.next_cursor is not None

    @pytest.mark.asyncio
    async def test_language_filter_pushed_to_store(self, service):
        await _create_many(service, "u1", 3, language="en")
        await _create_many(service, "u1", 2, language="ar")

        result = await service.list_sessions("u1", history_filter=ChatHistoryFilter(language="ar"))
        assert len(result.sessions) == 2
        assert result.has_more is False

    @pytest.mark.asyncio
    async def test_message_type_and_tag_filters(self, service):
        islamic = await service.create_session("u1", "en", make_message("What is salah?"))
        await service.append_message(
            islamic, make_message("Salah is prayer", is_user=False, message_type="islamic"), "u1"
        )
        await service.create_session("u1", "en", make_message("Weather today?"))

        by_type = await service.list_sessions("u1", history_filter=ChatHistoryFilter(message_type="islamic"))
        assert [s.id for s in by_type.sessions] == [islamic]

        by_tag = await service.list_sessions("u1", history_filter=ChatHistoryFilter(tags=["prayer", "hajj"]))
        assert [s.id for s in by_tag.sessions] == [islamic]

    @pytest.mark.asyncio
    async def test_page_size_above_maximum_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.list_sessions("u1", PaginationOptions(page_size=service.max_page_size + 1))

    @pytest.mark.asyncio
    async def test_malformed_cursor_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.list_sessions("u1", PaginationOptions(page_size=10, cursor="not-a-cursor"))


class TestCacheConsistency:
    """Cached pages are served until a write or the TTL ends them."""

    @pytest.mark.asyncio
    async def test_repeated_list_served_from_cache(self, service, store):
        await _create_many(service, "u1", 2)
        await service.list_sessions("u1")

        store.query = AsyncMock(side_effect=AssertionError("store should not be queried"))
        result = await service.list_sessions("u1")
        assert len(result.sessions) == 2

    @pytest.mark.asyncio
    async def test_write_invalidates_cached_page(self, service):
        await _create_many(service, "u1", 2)
        assert len((await service.list_sessions("u1")).sessions) == 2

        await service.create_session("u1", "en")
        assert len((await service.list_sessions("u1")).sessions) == 3

    @pytest.mark.asyncio
    async def test_append_visible_on_next_list(self, service):
        session_id = await service.create_session("u1", "en", make_message("first"))
        await service.list_sessions("u1")

        await service.append_message(session_id, make_message("second"), "u1")
        result = await service.list_sessions("u1")
        assert result.sessions[0].message_count == 2

    @pytest.mark.asyncio
    async def test_other_owner_cache_untouched_by_write(self, service):
        await _create_many(service, "u1", 1)
        await _create_many(service, "u10", 1)
        await service.list_sessions("u1")
        await service.list_sessions("u10")
        assert len(service.cache) == 2

        await service.create_session("u1", "en")
        assert len(service.cache) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, service, store, clock):
        await _create_many(service, "u1", 1)
        await service.list_sessions("u1")

        # Written behind the service's back, so only expiry reveals it
        await store.put("chat_sessions", "external", {
            "user_id": "u1", "title": "External", "messages": [], "message_count": 0,
            "last_activity": store.clock.stamp(), "start_time": store.clock.stamp(),
        })
        assert len((await service.list_sessions("u1")).sessions) == 1

        clock.advance(301)
        assert len((await service.list_sessions("u1")).sessions) == 2

    @pytest.mark.asyncio
    async def test_cache_hit_keeps_has_more_and_cursor(self, service):
        await _create_many(service, "u1", 3)
        first = await service.list_sessions("u1", PaginationOptions(page_size=2))
        again = await service.list_sessions("u1", PaginationOptions(page_size=2))
        assert again.has_more is True
        assert again.next_cursor == first.next_cursor


class TestSearchSessions:

    @pytest.mark.asyncio
    async def test_search_title_and_content(self, service):
        by_title = await service.create_session("u1", "en", make_message("Ramadan timetable"))
        by_content = await service.create_session("u1", "en", make_message("Hello"))
        await service.append_message(by_content, make_message("When does ramadan start?", is_user=False), "u1")
        await service.create_session("u1", "en", make_message("Unrelated"))

        result = await service.search_sessions("u1", "RAMADAN")
        assert {s.id for s in result.sessions} == {by_title, by_content}
        assert result.total_count == 2
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_search_pages_matches(self, service):
        for i in range(5):
            await service.create_session("u1", "en", make_message(f"quran lesson {i}"))

        first = await service.search_sessions("u1", "quran", PaginationOptions(page_size=2))
        assert len(first.sessions) == 2 and first.has_more
        second = await service.search_sessions("u1", "quran", PaginationOptions(page_size=2, cursor=first.next_cursor))
        third = await service.search_sessions("u1", "quran", PaginationOptions(page_size=2, cursor=second.next_cursor))
        assert len(third.sessions) == 1
        assert third.has_more is False

    @pytest.mark.asyncio
    async def test_search_reports_partial_window(self, store, clock):
        service = ChatHistoryService(store, cache=SessionCache(clock=clock), search_window=3)
        await _create_many(service, "u1", 5)

        result = await service.search_sessions("u1", "question")
        assert result.total_count == 3
        assert result.partial is True

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.search_sessions("u1", "   ")


class TestMutations:

    @pytest.mark.asyncio
    async def test_rename(self, service):
        session_id = await service.create_session("u1", "en", make_message("hello"))
        await service.rename_session(session_id, "  Fiqh questions ", "u1")
        assert (await service.get_session(session_id, "u1")).title == "Fiqh questions"

    @pytest.mark.asyncio
    async def test_rename_rejects_bad_titles(self, service):
        session_id = await service.create_session("u1", "en")
        with pytest.raises(InvalidArgumentError):
            await service.rename_session(session_id, "   ", "u1")
        with pytest.raises(InvalidArgumentError):
            await service.rename_session(session_id, "x" * 51, "u1")

    @pytest.mark.asyncio
    async def test_deactivate(self, service):
        session_id = await service.create_session("u1", "en")
        await service.deactivate_session(session_id, "u1")

        session = await service.get_session(session_id, "u1")
        assert session.is_active is False
        assert session.end_time is not None

    @pytest.mark.asyncio
    async def test_delete(self, service):
        session_id = await service.create_session("u1", "en")
        await service.delete_session(session_id, "u1")
        with pytest.raises(NotFoundError):
            await service.get_session(session_id, "u1")

    @pytest.mark.asyncio
    async def test_delete_sessions(self, service):
        ids = await _create_many(service, "u1", 3)
        deleted = await service.delete_sessions(ids + [ids[0]], "u1")
        assert deleted == 3
        assert (await service.list_sessions("u1")).sessions == []

    @pytest.mark.asyncio
    async def test_delete_sessions_empty_list(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.delete_sessions([], "u1")

    @pytest.mark.asyncio
    async def test_delete_sessions_attempts_all_then_raises(self, service):
        mine = await _create_many(service, "u1", 2)
        foreign = await service.create_session("u2", "en")

        with pytest.raises(PermissionDeniedError):
            await service.delete_sessions([mine[0], foreign, mine[1]], "u1")

        assert (await service.list_sessions("u1")).sessions == []
        assert (await service.get_session(foreign, "u2")).id == foreign


class TestStoreFailures:
    """Store outages surface as StoreUnavailableError, except best-effort saves."""

    @pytest.mark.asyncio
    async def test_best_effort_save_swallows_outage(self, service, store):
        session_id = await service.create_session("u1", "en")
        store.put = AsyncMock(side_effect=StoreUnavailableError("backend down"))

        saved = await service.save_message(session_id, make_message("hello"), "u1")
        assert saved is False

    @pytest.mark.asyncio
    async def test_best_effort_save_still_checks_owner(self, service):
        session_id = await service.create_session("u2", "en")
        with pytest.raises(PermissionDeniedError):
            await service.save_message(session_id, make_message("hello"), "u1")

    @pytest.mark.asyncio
    async def test_best_effort_save_success(self, service):
        session_id = await service.create_session("u1", "en")
        assert await service.save_message(session_id, make_message("hello"), "u1") is True

    @pytest.mark.asyncio
    async def test_foreground_append_raises(self, service, store):
        session_id = await service.create_session("u1", "en")
        store.put = AsyncMock(side_effect=StoreUnavailableError("backend down"))
        with pytest.raises(StoreUnavailableError):
            await service.append_message(session_id, make_message("hello"), "u1")

    @pytest.mark.asyncio
    async def test_unexpected_backend_error_wrapped(self, service, store):
        store.query = AsyncMock(side_effect=ConnectionError("network unreachable"))
        with pytest.raises(StoreUnavailableError) as exc_info:
            await service.list_sessions("u1")
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cache(self, service, store):
        session_id = await service.create_session("u1", "en")
        await service.list_sessions("u1")
        store.put = AsyncMock(side_effect=StoreUnavailableError("backend down"))

        with pytest.raises(StoreUnavailableError):
            await service.rename_session(session_id, "New title", "u1")
        assert len(service.cache) == 1


class TestCleanup:

    @pytest.mark.asyncio
    async def test_cleanup_owner(self, service):
        await _create_many(service, "u1", 1)
        await _create_many(service, "u2", 1)
        await service.list_sessions("u1")
        await service.list_sessions("u2")
        service.subscribe_to_sessions("u1", lambda sessions: None)

        service.cleanup("u1")
        assert len(service.cache) == 1
        assert not service.subscriptions.has_subscription("u1")

    @pytest.mark.asyncio
    async def test_cleanup_all(self, service):
        await _create_many(service, "u1", 1)
        await service.list_sessions("u1")
        service.subscribe_to_sessions("u1", lambda sessions: None)
        service.subscribe_to_sessions("u2", lambda sessions: None)

        service.cleanup()
        assert len(service.cache) == 0
        assert not service.subscriptions.has_subscription("u1")
        assert not service.subscriptions.has_subscription("u2")

    def test_cleanup_without_anything_is_safe(self, service):
        service.cleanup("nobody")
        service.cleanup()

"""
Unit tests for the chat session store.
"""

import pytest
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from docchat.chat.session_store import (
    INDEX_FILE,
    ChatSessionStore,
    ChatTurn,
    SessionKey,
    SourceRef,
    default_display_name,
)
from docchat.exceptions import SessionNotFound

T0 = datetime(2025, 1, 26, 12, 0, tzinfo=timezone.utc)


def turn(question, asked_at=T0, answer="An answer.", sources=()):
    return ChatTurn(
        question=question,
        answer=answer,
        asked_at=asked_at,
        answered_at=asked_at + timedelta(seconds=1),
        sources=tuple(sources),
    )


class TestSessionLifecycle:
    """Test cases for creating and loading sessions."""

    @pytest.mark.asyncio
    async def test_get_or_create_persists_new_session(self, sessions):
        """Test that a new session is written with a default name."""
        session = await sessions.get_or_create_session("alice", "alice_policy", "chat1")

        assert session.turns == ()
        assert session.display_name == default_display_name(session.created_at)
        assert sessions.session_path(session.key).is_file()

        again = await sessions.get_or_create_session("alice", "alice_policy", "chat1", display_name="ignored")
        assert again.created_at == session.created_at
        assert again.display_name == session.display_name

    @pytest.mark.asyncio
    async def test_explicit_name_is_kept(self, sessions):
        """Test that a named session is not renamed by its first question."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1", display_name="Onboarding")
        updated = await sessions.append_turn(session, turn("What time must employees arrive?"))

        assert updated.display_name == "Onboarding"

    @pytest.mark.asyncio
    async def test_get_session_missing(self, sessions):
        """Test that an unknown session raises SessionNotFound."""
        with pytest.raises(SessionNotFound) as exc_info:
            await sessions.get_session("alice", "combined", "nope")

        assert exc_info.value.details == {"user_id": "alice", "store": "combined", "chat_id": "nope"}
        assert await sessions.load_turns("alice", "combined", "nope") == []

    @pytest.mark.parametrize("user_id,store_name,chat_id", [
        ("../alice", "combined", "chat1"),
        ("alice", "a/b", "chat1"),
        ("alice", "combined", ""),
    ])
    def test_unsafe_keys_rejected(self, user_id, store_name, chat_id):
        """Test that identifiers unusable as path components are rejected."""
        with pytest.raises(ValueError):
            SessionKey(user_id, store_name, chat_id)


class TestAppendTurn:
    """Test cases for appending turns."""

    @pytest.mark.asyncio
    async def test_turns_are_persisted_in_order(self, sessions):
        """Test that appended turns survive a reload in order."""
        session = await sessions.get_or_create_session("alice", "alice_policy", "chat1")
        source = SourceRef(document="policy.txt", chunk_index=0, store_name="alice_policy", score=0.9, excerpt="Employees")

        await sessions.append_turn(session, turn("First?", T0, sources=[source]))
        await sessions.append_turn(session.key, turn("Second?", T0 + timedelta(minutes=1)))

        reloaded = ChatSessionStore(root=sessions.root)
        turns = await reloaded.load_turns("alice", "alice_policy", "chat1")

        assert [t.question for t in turns] == ["First?", "Second?"]
        assert turns[0].sources == (source,)
        assert turns[0].asked_at == T0

    @pytest.mark.asyncio
    async def test_out_of_order_turn_is_moved_forward(self, sessions):
        """Test that asked_at stays strictly increasing."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")
        await sessions.append_turn(session, turn("First?", T0))

        updated = await sessions.append_turn(session, turn("Same instant?", T0))
        updated = await sessions.append_turn(session, turn("Earlier?", T0 - timedelta(hours=1)))

        asked = [t.asked_at for t in updated.turns]
        assert asked == sorted(asked)
        assert len(set(asked)) == 3
        assert asked[1] == T0 + timedelta(microseconds=1)
        assert all(t.answered_at >= t.asked_at for t in updated.turns)

    @pytest.mark.asyncio
    async def test_first_question_names_the_session(self, sessions):
        """Test auto-naming from the first question, truncated to 40 characters."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")
        question = "What is the policy on working remotely from another country?"

        updated = await sessions.append_turn(session, turn(question))
        assert updated.display_name == question[:37] + "..."
        assert len(updated.display_name) == 40

        updated = await sessions.append_turn(session, turn("Follow up?", T0 + timedelta(minutes=1)))
        assert updated.display_name == question[:37] + "..."

    @pytest.mark.asyncio
    async def test_append_recreates_deleted_session(self, sessions):
        """Test that a turn for a session deleted meanwhile recreates it."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")
        await sessions.delete_session(session)

        updated = await sessions.append_turn(session, turn("Still there?"))

        assert [t.question for t in updated.turns] == ["Still there?"]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self, sessions):
        """Test that concurrent appends to one session are serialized."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")

        await asyncio.gather(*(
            sessions.append_turn(session, turn(f"Question {i}?", T0 + timedelta(seconds=i)))
            for i in range(10)
        ))

        turns = await sessions.load_turns("alice", "combined", "chat1")
        assert sorted(t.question for t in turns) == sorted(f"Question {i}?" for i in range(10))
        asked = [t.asked_at for t in turns]
        assert asked == sorted(asked)
        assert len(set(asked)) == 10


class TestSessionManagement:
    """Test cases for rename, clear, delete and listing."""

    @pytest.mark.asyncio
    async def test_rename(self, sessions):
        """Test renaming a session."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")

        renamed = await sessions.rename(session, "  Quarterly   planning ")
        assert renamed.display_name == "Quarterly planning"

        with pytest.raises(ValueError):
            await sessions.rename(session, "   ")
        with pytest.raises(SessionNotFound):
            await sessions.rename(SessionKey("alice", "combined", "missing"), "Name")

    @pytest.mark.asyncio
    async def test_clear_history_keeps_session(self, sessions):
        """Test that clearing removes turns but not the session."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")
        await sessions.append_turn(session, turn("First?"))

        cleared = await sessions.clear_history(session)

        assert cleared.turns == ()
        assert (await sessions.get_session("alice", "combined", "chat1")).turns == ()

    @pytest.mark.asyncio
    async def test_delete_session(self, sessions):
        """Test that a deleted session is gone from disk and listings."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")

        await sessions.delete_session(session)

        with pytest.raises(SessionNotFound):
            await sessions.get_session("alice", "combined", "chat1")
        assert await sessions.list_sessions("alice") == []
        with pytest.raises(SessionNotFound):
            await sessions.delete_session(session)

    @pytest.mark.asyncio
    async def test_delete_chat_across_stores(self, sessions):
        """Test removing one chat id from every store of a user."""
        await sessions.get_or_create_session("alice", "alice_policy", "chat1")
        await sessions.get_or_create_session("alice", "alice_combined", "chat1")
        await sessions.get_or_create_session("alice", "alice_combined", "chat2")

        stores = await sessions.delete_chat("alice", "chat1")

        assert sorted(stores) == ["alice_combined", "alice_policy"]
        remaining = await sessions.list_sessions("alice")
        assert [(s.store_name, s.chat_id) for s in remaining] == [("alice_combined", "chat2")]
        with pytest.raises(SessionNotFound):
            await sessions.delete_chat("alice", "chat1")

    @pytest.mark.asyncio
    async def test_list_sessions_most_recent_first(self, sessions):
        """Test ordering of listings by last activity."""
        first = await sessions.get_or_create_session("alice", "combined", "old")
        second = await sessions.get_or_create_session("alice", "combined", "new")
        await sessions.get_or_create_session("alice", "alice_policy", "other")
        await sessions.append_turn(first, turn("Bump?", datetime.now(timezone.utc) + timedelta(hours=1)))

        listed = await sessions.list_sessions("alice")
        assert listed[0].chat_id == "old"
        assert listed[0].turn_count == 1

        chats = await sessions.list_chats("alice", "combined")
        assert [s.chat_id for s in chats] == ["old", second.chat_id]

    @pytest.mark.asyncio
    async def test_index_is_rebuilt_when_missing(self, sessions):
        """Test that listings survive a lost summary index."""
        session = await sessions.get_or_create_session("alice", "combined", "chat1")
        await sessions.append_turn(session, turn("First?"))
        (sessions.root / "alice" / INDEX_FILE).unlink()

        listed = await ChatSessionStore(root=sessions.root).list_sessions("alice")

        assert [(s.chat_id, s.turn_count) for s in listed] == [("chat1", 1)]
        assert (sessions.root / "alice" / INDEX_FILE).is_file()

    @pytest.mark.asyncio
    async def test_failed_index_write_is_healed(self, sessions):
        """Test that listings follow the session files after the index could not be written."""
        deleted = await sessions.get_or_create_session("alice", "alice_policy", "chat1")
        kept = await sessions.get_or_create_session("alice", "combined", "chat2")

        with patch.object(sessions, "_write_index", side_effect=OSError("disk full")):
            await sessions.delete_session(deleted)
            await sessions.append_turn(kept, turn("First?"))

        assert not (sessions.root / "alice" / INDEX_FILE).exists()
        listed = await sessions.list_sessions("alice")
        assert [(s.store_name, s.chat_id, s.turn_count) for s in listed] == [("combined", "chat2", 1)]
        with pytest.raises(SessionNotFound):
            await sessions.rename(deleted, "Gone")

        reloaded = await ChatSessionStore(root=sessions.root).list_sessions("alice")
        assert [s.chat_id for s in reloaded] == ["chat2"]

    @pytest.mark.asyncio
    async def test_list_users(self, sessions):
        """Test listing of users with stored sessions."""
        await sessions.get_or_create_session("bob", "combined", "c1")
        await sessions.get_or_create_session("alice", "combined", "c1")

        assert await sessions.list_users() == ["alice", "bob"]
        assert await sessions.list_sessions("carol") == []

"""
Tests for the Recent-Chat Index and the chat operations that keep it in
step with the message log.

Tests cover:
- Self-read rule on send
- Upsert overwrite (one entry per direction)
- RecordRead on present/missing entries
- Newest-first ordering with stable ties
- Derived recent-chat view from the message log
- Cross-store consistency after send and mark-read
- Concurrent sends and mark-reads keep the index in log order
"""

import json
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from chatapp.chats import ChatService, summarize_recent_chats
from chatapp.models import Message


T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def index(stores):
    return stores.recent_chats


@pytest.fixture
def chat(stores):
    return ChatService(stores.messages, stores.recent_chats)


def entry_for(index, owner, contact):
    matches = [e for e in index.query_for(owner) if e.contact_id == contact]
    assert len(matches) <= 1
    return matches[0] if matches else None


class TestRecordSend:
    """Test both-perspective updates on send."""

    def test_sender_copy_is_read_receiver_copy_is_unread(self, index):
        index.record_send("u1", "u2", "hi", T0)

        sender_entry = entry_for(index, "u1", "u2")
        receiver_entry = entry_for(index, "u2", "u1")
        assert sender_entry.is_read is True
        assert receiver_entry.is_read is False
        assert sender_entry.last_message == receiver_entry.last_message == "hi"
        assert sender_entry.timestamp == receiver_entry.timestamp == T0

    def test_second_send_overwrites_in_place(self, index):
        t2 = T0 + timedelta(minutes=1)
        index.record_send("u1", "u2", "first", T0)
        index.record_send("u1", "u2", "second", t2)

        document = index.load()
        assert len(document.chats) == 2
        for owner, contact in (("u1", "u2"), ("u2", "u1")):
            entry = entry_for(index, owner, contact)
            assert entry.last_message == "second"
            assert entry.timestamp == t2

    def test_reply_flips_read_flags(self, index):
        index.record_send("u1", "u2", "a", T0)
        index.record_send("u2", "u1", "b", T0 + timedelta(seconds=1))

        assert entry_for(index, "u1", "u2").is_read is False
        assert entry_for(index, "u2", "u1").is_read is True

    def test_self_message_entry_is_unread(self, index):
        index.record_send("u1", "u1", "memo", T0)

        entries = index.query_for("u1")
        assert len(entries) == 1
        assert entries[0].contact_id == "u1"
        assert entries[0].is_read is False

    def test_document_layout(self, index):
        index.record_send("u1", "u2", "hi", T0)

        document = json.loads(index.path.read_text())
        assert list(document) == ["chats"]
        assert set(document["chats"][0]) == {"userId", "contactId", "lastMessage", "timestamp", "isRead"}


class TestUpsertAndRecordRead:
    """Test the single-entry primitives."""

    def test_upsert_inserts_then_overwrites(self, index):
        index.upsert("u1", "u2", "x", T0, False)
        index.upsert("u1", "u2", "y", T0 + timedelta(seconds=5), True)

        [entry] = index.query_for("u1")
        assert entry.last_message == "y"
        assert entry.is_read is True

    def test_record_read_sets_flag(self, index):
        index.record_send("u1", "u2", "hi", T0)

        assert index.record_read("u2", "u1") is True
        assert entry_for(index, "u2", "u1").is_read is True

    def test_record_read_missing_entry_is_noop(self, index):
        assert index.record_read("u1", "nobody") is False
        assert not index.path.exists()


class TestQueryFor:
    """Test ordering of index queries."""

    def test_newest_first(self, index):
        index.record_send("u1", "a", "old", T0)
        index.record_send("u1", "b", "new", T0 + timedelta(hours=1))
        index.record_send("c", "u1", "mid", T0 + timedelta(minutes=30))

        assert [e.contact_id for e in index.query_for("u1")] == ["b", "c", "a"]

    def test_equal_timestamps_keep_storage_order(self, index):
        for contact in ("a", "b", "c"):
            index.record_send("u1", contact, "same time", T0)

        assert [e.contact_id for e in index.query_for("u1")] == ["a", "b", "c"]

    def test_empty_index(self, index):
        assert index.query_for("u1") == []


class TestDerivedView:
    """Test the summary recomputed from the message log."""

    def message(self, sender, receiver, content, offset):
        return Message(
            sender=sender,
            receiver=receiver,
            content=content,
            timestamp=T0 + timedelta(seconds=offset),
        )

    def test_latest_message_per_contact(self):
        messages = [
            self.message("u1", "a", "a1", 0),
            self.message("b", "u1", "b1", 1),
            self.message("a", "u1", "a2", 2),
        ]

        summaries = summarize_recent_chats("u1", messages)

        assert [(s.user_id, s.last_message) for s in summaries] == [("a", "a2"), ("b", "b1")]

    def test_equal_timestamps_first_encountered_wins(self):
        messages = [
            self.message("u1", "a", "first", 0),
            self.message("a", "u1", "second", 0),
        ]

        [summary] = summarize_recent_chats("u1", messages)
        assert summary.last_message == "first"

    def test_tied_contacts_in_first_appearance_order(self):
        messages = [
            self.message("u1", "b", "x", 0),
            self.message("u1", "a", "y", 0),
        ]

        assert [s.user_id for s in summarize_recent_chats("u1", messages)] == ["b", "a"]

    def test_self_messages_group_under_self(self):
        summaries = summarize_recent_chats("u1", [self.message("u1", "u1", "memo", 0)])

        assert [s.user_id for s in summaries] == ["u1"]

    def test_empty(self):
        assert summarize_recent_chats("u1", []) == []


class TestChatService:
    """Test consistency between the message log and the index."""

    def test_send_updates_both_stores(self, chat):
        message = chat.send_message("u1", "u2", "hi")

        assert chat.conversation("u1", "u2") == [message]
        [entry] = chat.recent_chats_for("u2")
        assert entry.timestamp == message.timestamp
        assert entry.is_read is False

    def test_cross_consistency(self, chat):
        chat.send_message("u1", "u2", "a")
        chat.send_message("u2", "u1", "b")

        assert chat.mark_read(owner="u1", contact="u2") == 1

        rows = {(m.sender, m.content): m.is_read for m in chat.conversation("u1", "u2")}
        assert rows == {("u1", "a"): False, ("u2", "b"): True}

        [u1_entry] = chat.recent_chats_for("u1")
        [u2_entry] = chat.recent_chats_for("u2")
        assert (u1_entry.contact_id, u1_entry.last_message, u1_entry.is_read) == ("u2", "b", True)
        assert (u2_entry.contact_id, u2_entry.last_message, u2_entry.is_read) == ("u1", "b", True)

    def test_mark_read_twice(self, chat):
        chat.send_message("u2", "u1", "hello")

        assert chat.mark_read("u1", "u2") == 1
        state = chat.recent_chats_for("u1")
        assert chat.mark_read("u1", "u2") == 0
        assert chat.recent_chats_for("u1") == state

    def test_mark_read_without_messages_leaves_index_alone(self, chat, stores):
        stores.recent_chats.upsert("u1", "u2", "stale", T0, False)

        assert chat.mark_read("u1", "u2") == 0
        assert chat.recent_chats_for("u1")[0].is_read is False

    def test_index_timestamp_matches_latest_message(self, chat):
        chat.send_message("u1", "u2", "one")
        latest = chat.send_message("u2", "u1", "two")

        for owner in ("u1", "u2"):
            [entry] = chat.recent_chats_for(owner)
            assert entry.timestamp == latest.timestamp
            assert entry.last_message == "two"

    def test_all_messages_with_derived_summary(self, chat):
        chat.send_message("u1", "a", "to a")
        chat.send_message("b", "u1", "from b")
        chat.send_message("a", "b", "not mine")

        messages, summaries = chat.all_messages("u1")

        assert [m.content for m in messages] == ["to a", "from b"]
        assert [(s.user_id, s.last_message) for s in summaries] == [("b", "from b"), ("a", "to a")]


class TestChatServiceConcurrency:
    """Test that overlapping operations reach the index in log order."""

    def stall_on(self, monkeypatch, index, name, trigger=lambda *args: True):
        """Make index.<name> pause before writing; returns the event set on entry."""
        entered = threading.Event()
        original = getattr(index, name)

        def stalled(*args):
            if trigger(*args):
                entered.set()
                time.sleep(0.2)
            return original(*args)

        monkeypatch.setattr(index, name, stalled)
        return entered

    def test_later_send_wins_in_index(self, chat, stores, monkeypatch):
        entered = self.stall_on(
            monkeypatch, stores.recent_chats, "record_send",
            trigger=lambda sender, receiver, content, timestamp: content == "old",
        )

        worker = threading.Thread(target=chat.send_message, args=("u1", "u2", "old"))
        worker.start()
        assert entered.wait(timeout=5)
        latest = chat.send_message("u2", "u1", "new")
        worker.join(timeout=5)

        log = stores.messages.load().messages
        assert [m.content for m in log] == ["old", "new"]
        assert log[-1].timestamp == latest.timestamp
        for owner in ("u1", "u2"):
            [entry] = chat.recent_chats_for(owner)
            assert entry.last_message == "new"
            assert entry.timestamp == latest.timestamp
        assert entry_for(stores.recent_chats, "u1", "u2").is_read is False
        assert entry_for(stores.recent_chats, "u2", "u1").is_read is True

    def test_send_during_mark_read_stays_unread(self, chat, stores, monkeypatch):
        chat.send_message("u2", "u1", "a")
        entered = self.stall_on(monkeypatch, stores.recent_chats, "record_read")

        worker = threading.Thread(target=chat.mark_read, args=("u1", "u2"))
        worker.start()
        assert entered.wait(timeout=5)
        latest = chat.send_message("u2", "u1", "b")
        worker.join(timeout=5)

        rows = [(m.content, m.is_read) for m in chat.conversation("u1", "u2")]
        assert rows == [("a", True), ("b", False)]
        entry = entry_for(stores.recent_chats, "u1", "u2")
        assert entry.last_message == "b"
        assert entry.timestamp == latest.timestamp
        assert entry.is_read is False

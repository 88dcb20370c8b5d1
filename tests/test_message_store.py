"""
Tests for the message store.

Tests cover:
- Append assigns id, timestamp, conversation key and unread state
- Rejection of empty content, missing listing and self-addressed messages
- Listing and alias reads
- Mark-read predicate semantics and idempotence
- Storage failures surface as StorageError and write nothing
- Expired requests write nothing
- Concurrent appends and mark-reads lose no updates
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from marketchat.conversation_key import conversation_key
from marketchat.errors import RequestTimedOut, StorageError, ValidationError
from marketchat.identity import AliasSet
from marketchat.message_store import MessageStore, ReadFilter
from marketchat.models import Message
from marketchat.storage import SessionLocal, request_deadline

from conftest import BUYER_PHONE, OWNER_PHONE, SECOND_BUYER_PHONE


@pytest.fixture
def store(db, clock):
    return MessageStore(db, clock=clock)


class TestAppend:
    """Test appending messages."""

    def test_append_records_unread_message(self, store):
        message = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        assert message.id is not None
        assert message.sender_ref == BUYER_PHONE
        assert message.receiver_ref == OWNER_PHONE
        assert message.listing_id == "L1"
        assert message.content == "سلام"
        assert message.read is False
        assert message.created_at.endswith("Z")
        assert store.count() == 1

    def test_append_stores_order_independent_key(self, store):
        first = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        reply = store.append(OWNER_PHONE, BUYER_PHONE, "L1", "بله")

        assert first.conversation_key == reply.conversation_key
        assert first.conversation_key == conversation_key(OWNER_PHONE, BUYER_PHONE, "L1")

    def test_ids_increase(self, store):
        first = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "یک")
        second = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "دو")

        assert second.id > first.id

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_empty_content_rejected(self, store, content):
        with pytest.raises(ValidationError):
            store.append(BUYER_PHONE, OWNER_PHONE, "L1", content)

        assert store.count() == 0

    def test_missing_listing_rejected(self, store):
        with pytest.raises(ValidationError):
            store.append(BUYER_PHONE, OWNER_PHONE, "", "سلام")

        assert store.count() == 0

    def test_self_addressed_rejected(self, store):
        with pytest.raises(ValidationError):
            store.append(OWNER_PHONE, OWNER_PHONE, "L1", "سلام")

        assert store.count() == 0

    def test_commit_failure_raises_storage_error(self, store, db, monkeypatch):
        def failing_commit():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)

        with pytest.raises(StorageError):
            store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        monkeypatch.undo()
        assert store.count() == 0

    def test_reload_failure_after_commit_keeps_message(self, store, db, monkeypatch):
        def failing_refresh(instance):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "refresh", failing_refresh)

        message = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        monkeypatch.undo()
        assert message.content == "سلام"
        assert store.count() == 1

    def test_expired_request_writes_nothing(self, store):
        token = request_deadline.set(time.monotonic() - 1)
        try:
            with pytest.raises(RequestTimedOut):
                store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        finally:
            request_deadline.reset(token)

        assert store.count() == 0

    def test_live_request_writes(self, store):
        token = request_deadline.set(time.monotonic() + 60)
        try:
            store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        finally:
            request_deadline.reset(token)

        assert store.count() == 1


class TestReads:
    """Test listing and alias queries."""

    def test_all_for_listing_filters_by_listing(self, store):
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        store.append(BUYER_PHONE, OWNER_PHONE, "L2", "سلام")

        messages = store.all_for_listing("L1")

        assert [m.listing_id for m in messages] == ["L1"]

    def test_all_for_listing_empty(self, store):
        assert store.all_for_listing("missing") == []

    def test_for_aliases_matches_either_side(self, store):
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        store.append(OWNER_PHONE, BUYER_PHONE, "L1", "بله")
        store.append(SECOND_BUYER_PHONE, "u-other", "L2", "نامرتبط")

        messages = store.for_aliases(AliasSet.of("u-owner", OWNER_PHONE))

        assert len(messages) == 2

    def test_for_aliases_empty_set(self, store):
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        assert store.for_aliases(AliasSet.of()) == []


class TestMarkRead:
    """Test mark-read semantics."""

    def test_marks_only_matching_messages(self, store):
        to_owner = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        to_buyer = store.append(OWNER_PHONE, BUYER_PHONE, "L1", "بله")
        other_listing = store.append(BUYER_PHONE, OWNER_PHONE, "L2", "سلام")

        flipped = store.mark_read(
            ReadFilter("L1", receivers=AliasSet.of(OWNER_PHONE), senders=AliasSet.of(BUYER_PHONE))
        )

        assert flipped == 1
        assert to_owner.read is True
        assert to_buyer.read is False
        assert other_listing.read is False

    def test_mark_read_is_idempotent(self, store):
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "هستید؟")
        read_filter = ReadFilter("L1", receivers=AliasSet.of(OWNER_PHONE), senders=AliasSet.of(BUYER_PHONE))

        first = store.mark_read(read_filter, listing_id="L1")
        states_after_first = [m.read for m in store.all_for_listing("L1")]
        second = store.mark_read(read_filter, listing_id="L1")
        states_after_second = [m.read for m in store.all_for_listing("L1")]

        assert first == 2
        assert second == 0
        assert states_after_first == states_after_second == [True, True]

    def test_messages_appended_later_stay_unread(self, store):
        read_filter = ReadFilter("L1", receivers=AliasSet.of(OWNER_PHONE), senders=AliasSet.of(BUYER_PHONE))
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        store.mark_read(read_filter)

        late = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "هستید؟")

        assert late.read is False

    def test_accepts_plain_callable(self, store):
        store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")
        store.append(SECOND_BUYER_PHONE, OWNER_PHONE, "L1", "درود")

        flipped = store.mark_read(lambda m: m.sender_ref == SECOND_BUYER_PHONE)

        assert flipped == 1

    def test_expired_request_marks_nothing(self, store):
        message = store.append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        token = request_deadline.set(time.monotonic() - 1)
        try:
            with pytest.raises(RequestTimedOut):
                store.mark_read(lambda m: True)
        finally:
            request_deadline.reset(token)

        assert message.read is False


class TestConcurrentWriters:
    """Test appends and mark-reads racing from several threads."""

    WRITERS = 6
    PER_WRITER = 10

    def test_no_update_is_lost(self, db):
        to_owner = lambda m: m.receiver_ref == OWNER_PHONE  # noqa: E731
        stop = threading.Event()
        flipped = []

        def write(n):
            with SessionLocal() as session:
                store = MessageStore(session)
                return [
                    store.append(f"0911{n:07d}", OWNER_PHONE, "L1", f"{n}-{i}").id
                    for i in range(self.PER_WRITER)
                ]

        def mark():
            with SessionLocal() as session:
                store = MessageStore(session)
                while not stop.is_set():
                    flipped.append(store.mark_read(to_owner, listing_id="L1"))
                    time.sleep(0.001)

        marker = threading.Thread(target=mark)
        marker.start()
        try:
            with ThreadPoolExecutor(max_workers=self.WRITERS) as pool:
                ids = [i for batch in pool.map(write, range(self.WRITERS)) for i in batch]
        finally:
            stop.set()
            marker.join()

        total = self.WRITERS * self.PER_WRITER
        assert len(set(ids)) == total
        assert MessageStore(db).count() == total

        # Every flip was counted exactly once and nothing else was marked
        read = db.query(Message).filter(Message.read.is_(True)).count()
        assert read == sum(flipped)
        assert db.query(Message).filter(Message.read.is_(False)).count() == total - read

    def test_append_racing_mark_read_stays_unread(self, db):
        seen = threading.Event()
        release = threading.Event()
        late_ids = []

        def slow_predicate(message):
            # Writer queues behind the lock while this call is mid-flight
            seen.set()
            release.wait(timeout=0.2)
            return True

        def mark():
            with SessionLocal() as session:
                MessageStore(session).mark_read(slow_predicate, listing_id="L1")

        def write():
            seen.wait(timeout=5)
            with SessionLocal() as session:
                late_ids.append(MessageStore(session).append(SECOND_BUYER_PHONE, OWNER_PHONE, "L1", "دیر").id)
            release.set()

        MessageStore(db).append(BUYER_PHONE, OWNER_PHONE, "L1", "سلام")

        marker = threading.Thread(target=mark)
        writer = threading.Thread(target=write)
        marker.start()
        writer.start()
        marker.join()
        writer.join()

        [late] = late_ids
        assert db.get(Message, late).read is False
        assert db.query(Message).filter(Message.read.is_(True)).count() == 1

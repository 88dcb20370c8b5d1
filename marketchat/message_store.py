"""
Append-only message log.

All writes (append, mark-read) are serialized through storage.write_lock and
committed as a single transaction, so concurrent requests cannot lose each
other's updates and a failed write leaves the log unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketchat.conversation_key import conversation_key
from marketchat.errors import StorageError, ValidationError
from marketchat.identity import AliasSet
from marketchat.metrics import record_marked_read
from marketchat.models import Message
from marketchat.storage import ensure_not_expired, run_query, utc_now, write_lock

logger = logging.getLogger(__name__)

MessagePredicate = Callable[[Message], bool]


@dataclass(frozen=True)
class ReadFilter:
    """
    Matches unread messages on a listing sent by `senders` to `receivers`.

    `only_ids` restricts the match to messages already shown to the reader.
    """

    listing_id: str
    receivers: AliasSet
    senders: AliasSet
    only_ids: Optional[frozenset[int]] = None

    def __call__(self, message: Message) -> bool:
        return (
            (self.only_ids is None or message.id in self.only_ids)
            and message.listing_id == self.listing_id
            and message.receiver_ref in self.receivers
            and message.sender_ref in self.senders
            and not message.read
        )


def is_self_addressed(message: Message) -> bool:
    return message.sender_ref == message.receiver_ref


class MessageStore:
    """Read/append/mark-read access to the messages table."""

    def __init__(self, db: Session, clock: Callable[[], str] = utc_now):
        self.db = db
        self.clock = clock

    def append(self, sender_alias: str, receiver_alias: str, listing_id: str, content: str) -> Message:
        """
        Record a new unread message.

        Raises:
            ValidationError: empty content, missing listing id or aliases,
                or a self-addressed message.
            StorageError: the write failed; nothing was recorded.
            RequestTimedOut: the request expired before the write; nothing
                was recorded.
        """
        if not listing_id:
            raise ValidationError("شناسه آگهی ارسال نشده")
        if not content or not content.strip():
            raise ValidationError("متن پیام نمی‌تواند خالی باشد")
        if not sender_alias or not receiver_alias:
            raise ValidationError("فرستنده و گیرنده باید مشخص باشند")
        if sender_alias == receiver_alias:
            raise ValidationError("ارسال پیام به خود امکان‌پذیر نیست")

        logger.info(f"Appending message: listing={listing_id}, from={sender_alias}, to={receiver_alias}")

        with write_lock:
            ensure_not_expired()
            message = Message(
                sender_ref=sender_alias,
                receiver_ref=receiver_alias,
                listing_id=listing_id,
                conversation_key=conversation_key(sender_alias, receiver_alias, listing_id),
                content=content,
                created_at=self.clock(),
                read=False,
            )
            try:
                self.db.add(message)
                self.db.flush()
                message_id = message.id
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to append message for listing {listing_id}: {e}")
                raise StorageError() from e

        # Committed; a failed reload must not report the write as lost
        try:
            self.db.refresh(message)
        except SQLAlchemyError as e:
            logger.error(f"Message {message_id} committed but could not be reloaded: {e}")

        logger.info(f"Message appended: id={message_id}")
        return message

    def all_for_listing(self, listing_id: str) -> list[Message]:
        """All messages tagged with the listing. No ordering guarantee."""
        return self._run(
            lambda: self.db.query(Message).filter(Message.listing_id == listing_id).all()
        )

    def for_aliases(self, aliases: AliasSet) -> list[Message]:
        """Non-self-addressed messages sent or received by any of the aliases."""
        if not aliases:
            return []
        members = list(aliases)
        return self._run(
            lambda: self.db.query(Message)
            .filter(or_(Message.sender_ref.in_(members), Message.receiver_ref.in_(members)))
            .filter(Message.sender_ref != Message.receiver_ref)
            .order_by(Message.id)
            .all()
        )

    def count(self) -> int:
        return self._run(lambda: self.db.query(func.count(Message.id)).scalar() or 0)

    def mark_read(self, predicate: MessagePredicate, listing_id: Optional[str] = None) -> int:
        """
        Flip `read` on every currently unread message matching the predicate.

        Only messages present when the call starts are considered, so a
        message appended concurrently is never marked read here. Calling it
        again with the same predicate is a no-op.

        Returns:
            Number of messages flipped.
        """
        with write_lock:
            ensure_not_expired()
            try:
                query = self.db.query(Message).filter(Message.read.is_(False))
                if listing_id is not None:
                    query = query.filter(Message.listing_id == listing_id)
                matched = [m for m in query.all() if predicate(m)]
                for message in matched:
                    message.read = True
                if matched:
                    self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to mark messages read: {e}")
                raise StorageError() from e

        if matched:
            logger.info(f"Marked {len(matched)} messages read")
            record_marked_read(len(matched))
        return len(matched)

    def _run(self, read: Callable):
        return run_query(read, "Message store read")

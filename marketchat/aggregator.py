"""
Per-viewer conversation summaries.

Grouping here is on the literal alias seen on the other side of each
message, not on resolved AliasSets, so the inbox still works for
counterparts whose account cannot be found.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from marketchat.directory import ListingDirectory
from marketchat.identity import AliasSet, IdentityResolver
from marketchat.message_store import MessageStore
from marketchat.models import Message
from marketchat.threads import chronological

logger = logging.getLogger(__name__)

DEFAULT_LISTING_TITLE = "آگهی"


@dataclass
class ConversationSummary:
    id: str
    listing_id: str
    listing_title: str
    counterpart_alias: str
    counterpart_name: str
    last_message: Optional[str] = None
    last_message_at: Optional[str] = None
    unread_count: int = 0
    _last: Optional[Message] = field(default=None, repr=False)


@dataclass
class KeyedConversation:
    id: str
    listing_id: str
    participants: list[str]
    last_message: Optional[str] = None
    last_message_at: Optional[str] = None
    unread_count: int = 0
    _last: Optional[Message] = field(default=None, repr=False)


def _track_last(summary, message: Message) -> None:
    if summary._last is None or chronological(message) > chronological(summary._last):
        summary._last = message
        summary.last_message = message.content
        summary.last_message_at = message.created_at


def _newest_first(summaries: list) -> list:
    # Two stable passes: newest first, then anything without a timestamp last
    ordered = sorted(summaries, key=lambda s: s.last_message_at or "", reverse=True)
    return sorted(ordered, key=lambda s: s.last_message_at is None)


class ConversationAggregator:
    def __init__(self, store: MessageStore, resolver: IdentityResolver, listings: ListingDirectory):
        self.store = store
        self.resolver = resolver
        self.listings = listings

    def display_label(self, alias: str) -> str:
        account = self.resolver.account_for(alias)
        if account is None:
            return alias
        return account.name or account.phone or alias

    def listing_title(self, listing_id: str) -> str:
        listing = self.listings.get(listing_id)
        return listing.title if listing is not None and listing.title else DEFAULT_LISTING_TITLE

    def list_conversations(self, viewer: AliasSet) -> list[ConversationSummary]:
        """
        The viewer's inbox: one entry per (listing, counterpart alias), with
        the latest message and the number of unread messages addressed to
        the viewer. Most recently active first.
        """
        groups: dict[tuple[str, str], ConversationSummary] = {}

        for message in self.store.for_aliases(viewer):
            sent = message.sender_ref in viewer
            other = message.receiver_ref if sent else message.sender_ref
            if other in viewer:
                continue

            group_key = (message.listing_id, other)
            summary = groups.get(group_key)
            if summary is None:
                summary = ConversationSummary(
                    id=f"{message.listing_id}_{other}",
                    listing_id=message.listing_id,
                    listing_title=self.listing_title(message.listing_id),
                    counterpart_alias=other,
                    counterpart_name=self.display_label(other),
                )
                groups[group_key] = summary

            _track_last(summary, message)
            if message.receiver_ref in viewer and not message.read:
                summary.unread_count += 1

        logger.debug(f"Built {len(groups)} conversation summaries")
        return _newest_first(list(groups.values()))

    def list_keyed_conversations(self, viewer: AliasSet) -> list[KeyedConversation]:
        """Conversations grouped by their stored conversation key."""
        groups: dict[str, KeyedConversation] = {}

        for message in self.store.for_aliases(viewer):
            if message.sender_ref in viewer and message.receiver_ref in viewer:
                continue

            conversation = groups.get(message.conversation_key)
            if conversation is None:
                conversation = KeyedConversation(
                    id=message.conversation_key,
                    listing_id=message.listing_id,
                    participants=sorted((message.sender_ref, message.receiver_ref)),
                )
                groups[message.conversation_key] = conversation

            _track_last(conversation, message)
            if message.receiver_ref in viewer and not message.read:
                conversation.unread_count += 1

        return _newest_first(list(groups.values()))

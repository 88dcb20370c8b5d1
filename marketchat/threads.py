"""
Thread disambiguation.

Messages carry no thread identifier, so the other party of a conversation is
inferred. For a buyer it is always the listing owner. For the owner it is
whoever was most recently active on the listing: once a second buyer writes
in, the first buyer's thread is no longer reachable from the owner's side.
That limitation is kept as-is; fixing it needs explicit thread ids assigned
at first contact.
"""

import logging
from typing import Optional

from marketchat.errors import NoCounterpartYet
from marketchat.identity import AliasSet, IdentityResolver
from marketchat.message_store import MessageStore, ReadFilter, is_self_addressed
from marketchat.models import Listing, Message

logger = logging.getLogger(__name__)


def chronological(message: Message) -> tuple:
    return (message.created_at, message.id)


class ThreadDisambiguator:
    def __init__(self, store: MessageStore, resolver: IdentityResolver):
        self.store = store
        self.resolver = resolver

    def owner_aliases(self, listing: Listing) -> AliasSet:
        return self.resolver.for_account(listing.owner_id, listing.owner_phone)

    def is_owner(self, viewer: AliasSet, listing: Listing) -> bool:
        return viewer.intersects(self.owner_aliases(listing))

    def counterpart(self, viewer: AliasSet, listing: Listing) -> AliasSet:
        """
        Who the viewer is talking to about this listing.

        Raises:
            NoCounterpartYet: the viewer owns the listing and nobody else has
                exchanged a message on it.
        """
        owner = self.owner_aliases(listing)
        if not viewer.intersects(owner):
            return owner

        own_side = owner.union(viewer)
        latest: Optional[Message] = None
        latest_alias = None
        for message in self.store.all_for_listing(listing.id):
            if is_self_addressed(message):
                continue
            if message.receiver_ref in own_side:
                other = message.sender_ref  # inbound
            elif message.sender_ref in own_side:
                other = message.receiver_ref  # outbound
            else:
                continue
            if other in own_side:
                continue
            if latest is None or chronological(message) > chronological(latest):
                latest, latest_alias = message, other

        if latest_alias is None:
            raise NoCounterpartYet()
        logger.debug(f"Owner counterpart on listing {listing.id} resolved to {latest_alias}")
        return self.resolver.resolve(latest_alias)

    def reply_target(self, viewer: AliasSet, listing: Listing) -> str:
        """
        The raw alias a new message from the viewer is addressed to.

        Buyers always write to the owner. The owner replies to the sender of
        the most recent inbound message; with no inbound history there is
        nobody to reply to.
        """
        owner = self.owner_aliases(listing)
        if not viewer.intersects(owner):
            return listing.owner_phone or listing.owner_id

        own_side = owner.union(viewer)
        inbound = [
            m for m in self.store.all_for_listing(listing.id)
            if not is_self_addressed(m)
            and m.receiver_ref in own_side
            and m.sender_ref not in own_side
        ]
        if not inbound:
            raise NoCounterpartYet()
        return max(inbound, key=chronological).sender_ref

    def thread(self, viewer: AliasSet, listing: Listing) -> list[Message]:
        """
        Messages between the viewer and the resolved counterpart, oldest
        first. Marks the ones addressed to the viewer as read.
        """
        counterpart = self.counterpart(viewer, listing)
        if self.is_owner(viewer, listing):
            viewer = self.owner_aliases(listing).union(viewer)

        messages = [
            m for m in self.store.all_for_listing(listing.id)
            if not is_self_addressed(m)
            and (
                (m.sender_ref in viewer and m.receiver_ref in counterpart)
                or (m.sender_ref in counterpart and m.receiver_ref in viewer)
            )
        ]
        messages.sort(key=chronological)

        # Only what is being returned; later arrivals stay unread
        self.store.mark_read(
            ReadFilter(
                listing_id=listing.id,
                receivers=viewer,
                senders=counterpart,
                only_ids=frozenset(m.id for m in messages),
            ),
            listing_id=listing.id,
        )
        return messages

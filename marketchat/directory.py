"""
Account and listing lookups.

Accounts and listings are owned by other parts of the marketplace; the
messaging core only reads them through these two small directories.
The add() helpers exist for seeding and tests.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketchat.errors import StorageError
from marketchat.models import Account, Listing
from marketchat.storage import run_query, utc_now

logger = logging.getLogger(__name__)


def _save(db: Session, record) -> None:
    try:
        db.add(record)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save {type(record).__name__}: {e}")
        raise StorageError() from e


class AccountDirectory:
    """Lookup-by-phone and lookup-by-id service for accounts."""

    def __init__(self, db: Session):
        self.db = db

    def by_phone(self, phone: str) -> Optional[Account]:
        if not phone:
            return None
        return run_query(
            lambda: self.db.query(Account).filter(Account.phone == phone).first(),
            "Account lookup by phone",
        )

    def by_id(self, account_id: str) -> Optional[Account]:
        if not account_id:
            return None
        return run_query(lambda: self.db.get(Account, account_id), "Account lookup by id")

    def lookup(self, alias: str) -> Optional[Account]:
        """Find the account an alias belongs to, trying phone first, then id."""
        account = self.by_phone(alias)
        if account is None:
            account = self.by_id(alias)
        logger.debug(f"Account lookup for alias {alias}: {'found' if account else 'not found'}")
        return account

    def add(self, phone: str, name: str = "", account_id: Optional[str] = None) -> Account:
        account = Account(
            id=account_id or uuid.uuid4().hex,
            phone=phone,
            name=name,
            created_at=utc_now(),
        )
        _save(self.db, account)
        logger.info(f"Account created: id={account.id}")
        return account


class ListingDirectory:
    """Lookup-by-id service for listings."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, listing_id: str) -> Optional[Listing]:
        if not listing_id:
            return None
        return run_query(lambda: self.db.get(Listing, listing_id), "Listing lookup")

    def add(self, owner_id: str, owner_phone: str, title: str, listing_id: Optional[str] = None) -> Listing:
        listing = Listing(
            id=listing_id or uuid.uuid4().hex,
            owner_id=owner_id,
            owner_phone=owner_phone,
            title=title,
            created_at=utc_now(),
        )
        _save(self.db, listing)
        logger.info(f"Listing created: id={listing.id}, owner={owner_id}")
        return listing

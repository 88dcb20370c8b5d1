"""
Seed a development database with sample accounts and listings.

Prints an auth cookie for each account so the API can be exercised with
curl, e.g.:

    curl -b "auth_token=<token>" localhost:8000/messages/conversations
"""

import argparse
import logging

from marketchat.config import settings
from marketchat.directory import AccountDirectory, ListingDirectory
from marketchat.logging_utils import setup_logging
from marketchat.security import create_access_token
from marketchat.storage import SessionLocal, init_db

logger = logging.getLogger(__name__)

SAMPLE_ACCOUNTS = [
    ("u-seller", "09120000002", "فروشنده"),
    ("u-buyer", "09110000001", "علی"),
    ("u-buyer2", "09110000003", ""),
]

SAMPLE_LISTINGS = [
    ("L1", "u-seller", "09120000002", "دوچرخه کوهستان"),
    ("L2", "u-seller", "09120000002", "گوشی موبایل"),
]


def seed() -> None:
    init_db()
    with SessionLocal() as db:
        accounts = AccountDirectory(db)
        listings = ListingDirectory(db)

        for account_id, phone, name in SAMPLE_ACCOUNTS:
            if accounts.by_id(account_id) is None:
                accounts.add(phone, name=name, account_id=account_id)
            print(f"{account_id} ({phone}): auth_token={create_access_token(account_id, phone)}")

        for listing_id, owner_id, owner_phone, title in SAMPLE_LISTINGS:
            if listings.get(listing_id) is None:
                listings.add(owner_id, owner_phone, title, listing_id=listing_id)

    logger.info(f"Seeded {len(SAMPLE_ACCOUNTS)} accounts and {len(SAMPLE_LISTINGS)} listings")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    args = parser.parse_args()

    setup_logging(args.log_level)
    seed()


if __name__ == "__main__":
    main()

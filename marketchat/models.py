"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Boolean, Column, Integer, String, Text

from marketchat.storage import Base


class Message(Base):
    """
    A message one party sent another about a listing.

    Table: messages
    sender_ref / receiver_ref hold a raw alias (phone or account id) exactly
    as it was known when the message was written. Only `read` ever changes.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_ref = Column(String, nullable=False, index=True)
    receiver_ref = Column(String, nullable=False, index=True)
    listing_id = Column(String, nullable=False, index=True)
    conversation_key = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    read = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<Message id={self.id} listing={self.listing_id} "
            f"{self.sender_ref}->{self.receiver_ref} read={self.read}>"
        )


class Account(Base):
    """Registered marketplace account. Looked up by id or by phone."""
    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    phone = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    created_at = Column(String, nullable=False)


class Listing(Base):
    """Classified ad. Only the owner fields and title matter to messaging."""
    __tablename__ = "listings"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    owner_phone = Column(String, nullable=False)
    title = Column(String, nullable=False)
    created_at = Column(String, nullable=False)

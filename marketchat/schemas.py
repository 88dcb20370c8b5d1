"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

JSON field names are camelCase to match the web client.
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Body of POST /messages/send.

    Both fields are optional at the schema level; missing or empty values
    are rejected by the message store with a 400 rather than a 422.
    """
    listing_id: Optional[str] = Field(None, alias="listingId", description="Listing the message is about")
    content: Optional[str] = Field(None, description="Message text")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"listingId": "L1", "content": "سلام"}]
        },
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    success: bool = False
    error: str = Field(..., description="Machine readable error code")
    message: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A single stored message."""
    id: int
    sender_ref: str = Field(..., serialization_alias="senderRef")
    receiver_ref: str = Field(..., serialization_alias="receiverRef")
    listing_id: str = Field(..., serialization_alias="listingId")
    conversation_key: str = Field(..., serialization_alias="conversationKey")
    content: str
    created_at: str = Field(..., serialization_alias="createdAt")
    read: bool

    model_config = {"from_attributes": True}


class SendMessageResponse(BaseModel):
    success: bool = True
    message: MessageResponse


class ConversationMessagesResponse(BaseModel):
    success: bool = True
    messages: list[MessageResponse] = Field(default_factory=list)


class ConversationSummaryResponse(BaseModel):
    """One inbox entry per (listing, counterpart alias)."""
    id: str
    listing_id: str = Field(..., serialization_alias="listingId")
    listing_title: str = Field(..., serialization_alias="listingTitle")
    counterpart_alias: str = Field(..., serialization_alias="otherPartyPhone")
    counterpart_name: str = Field(..., serialization_alias="otherPartyName")
    last_message: Optional[str] = Field(None, serialization_alias="lastMessage")
    last_message_at: Optional[str] = Field(None, serialization_alias="lastMessageAt")
    unread_count: int = Field(0, ge=0, serialization_alias="unreadCount")

    model_config = {"from_attributes": True}


class ConversationsResponse(BaseModel):
    success: bool = True
    conversations: list[ConversationSummaryResponse] = Field(default_factory=list)


class KeyedConversationResponse(BaseModel):
    """A conversation grouped by its order-independent conversation key."""
    id: str
    listing_id: str = Field(..., serialization_alias="listingId")
    participants: list[str]
    last_message: Optional[str] = Field(None, serialization_alias="lastMessage")
    last_message_at: Optional[str] = Field(None, serialization_alias="lastMessageAt")
    unread_count: int = Field(0, ge=0, serialization_alias="unreadCount")

    model_config = {"from_attributes": True}


class KeyedConversationsResponse(BaseModel):
    success: bool = True
    conversations: list[KeyedConversationResponse] = Field(default_factory=list)


class UserLookupResponse(BaseModel):
    success: bool = True
    user_id: str = Field(..., serialization_alias="userId")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")

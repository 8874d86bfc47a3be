"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Persisted document models live in models.py.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from chatapp.models import ContactSummary, Message, RecentChatEntry


# =============================================================================
# Pydantic Request Models
# =============================================================================

class Credentials(BaseModel):
    """
    Registration/login payload.

    JSON clients send userId/password/email; form submissions are mapped
    onto the same model by utils.read_credentials.
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="User identifier")
    password: str = Field(..., min_length=1, description="Plain-text password")
    email: Optional[str] = Field(None, description="Optional e-mail address")


class SearchRequest(BaseModel):
    """Payload for POST /search-users."""
    model_config = ConfigDict(populate_by_name=True)

    search_term: str = Field("", alias="searchTerm", description="Case-insensitive substring of the user id")


class SendMessageRequest(BaseModel):
    """
    Payload for POST /send-message. The sender comes from the query string.
    """
    receiver: str = Field(..., min_length=1, description="Receiving user id")
    content: str = Field(..., description="Message text")

    model_config = {
        "json_schema_extra": {
            "examples": [{"receiver": "bob", "content": "Hello"}]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SuccessResponse(BaseModel):
    """Generic {"success": bool} response."""
    success: bool = Field(..., description="Whether the operation succeeded")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class LoginResponse(BaseModel):
    """Response model for a successful JSON login."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(True, description="Always true for a successful login")
    redirect_to: str = Field(..., alias="redirectTo", description="Dashboard URL for the user")
    user_id: str = Field(..., alias="userId", description="Authenticated user id")
    email: Optional[str] = Field(None, description="User e-mail address")


class UserResponse(BaseModel):
    """Public view of a user; never carries the password."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", description="User identifier")
    email: Optional[str] = Field(None, description="User e-mail address")


class UserSearchResponse(BaseModel):
    success: bool = True
    users: list[UserResponse] = Field(default_factory=list, description="Matching users")


class MessageResponse(BaseModel):
    """A single message as returned to clients."""
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(..., description="Sending user id")
    receiver: str = Field(..., description="Receiving user id")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(..., description="Creation time (UTC)")
    is_read: bool = Field(..., alias="isRead", description="Whether the receiver has read it")

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            sender=message.sender,
            receiver=message.receiver,
            content=message.content,
            timestamp=message.timestamp,
            is_read=message.is_read,
        )


class RecentChatResponse(BaseModel):
    """One entry of the Recent-Chat Index."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", description="Owning user id")
    contact_id: str = Field(..., alias="contactId", description="Other participant")
    last_message: str = Field(..., alias="lastMessage", description="Content of the latest message")
    timestamp: datetime = Field(..., description="Time of the latest message")
    is_read: bool = Field(..., alias="isRead", description="Whether the owner has read the latest message")

    @classmethod
    def from_entry(cls, entry: RecentChatEntry) -> "RecentChatResponse":
        return cls(
            user_id=entry.user_id,
            contact_id=entry.contact_id,
            last_message=entry.last_message,
            timestamp=entry.timestamp,
            is_read=entry.is_read,
        )


class ContactSummaryResponse(BaseModel):
    """Recent-chat row derived from the message log."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", description="Other participant")
    last_message: str = Field(..., alias="lastMessage", description="Content of the latest message")
    timestamp: datetime = Field(..., description="Time of the latest message")

    @classmethod
    def from_summary(cls, summary: ContactSummary) -> "ContactSummaryResponse":
        return cls(
            user_id=summary.user_id,
            last_message=summary.last_message,
            timestamp=summary.timestamp,
        )


class MessagesResponse(BaseModel):
    """Response model for GET /get-messages."""
    success: bool = True
    messages: list[MessageResponse] = Field(default_factory=list)


class AllMessagesResponse(BaseModel):
    """
    Response model for GET /get-all-messages.

    recentChats is derived from the message log, not read from the index.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    messages: list[MessageResponse] = Field(default_factory=list)
    recent_chats: list[ContactSummaryResponse] = Field(default_factory=list, alias="recentChats")


class RecentChatsResponse(BaseModel):
    """Response model for GET /get-recent-chats."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    recent_chats: list[RecentChatResponse] = Field(default_factory=list, alias="recentChats")


class MarkReadResponse(BaseModel):
    """Response model for POST /mark-messages-read."""
    success: bool = True
    marked: int = Field(..., ge=0, description="Number of messages newly marked as read")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")

"""
Domain models persisted in the flat JSON documents.

Each document is a wrapper object holding a single named array:
users.json -> {"users": [...]}, chats.json -> {"messages": [...]},
recentChats.json -> {"chats": [...]}.

For HTTP request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    # Documents written without an offset are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(BaseModel):
    """A registered user. Passwords are stored in plain text."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    password: Optional[str] = Field(None)
    email: Optional[str] = Field(None)


class Message(BaseModel):
    """
    A chat message between two users.

    Immutable except for is_read, which only flips from False to True.
    """
    model_config = ConfigDict(populate_by_name=True)

    sender: str
    receiver: str
    content: str
    timestamp: datetime
    is_read: bool = Field(False, alias="isRead")

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def involves(self, user_a: str, user_b: str) -> bool:
        return (self.sender == user_a and self.receiver == user_b) or (
            self.sender == user_b and self.receiver == user_a
        )

    def counterpart(self, user: str) -> str:
        return self.receiver if self.sender == user else self.sender


class RecentChatEntry(BaseModel):
    """
    Summary of the conversation between user_id and contact_id, seen from
    user_id's side. Keyed by (user_id, contact_id).
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    contact_id: str = Field(..., alias="contactId")
    last_message: str = Field(..., alias="lastMessage")
    timestamp: datetime
    is_read: bool = Field(False, alias="isRead")

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return _as_utc(v)


class ContactSummary(BaseModel):
    """Recent-chat row derived from the message log (no read flag)."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    last_message: str = Field(..., alias="lastMessage")
    timestamp: datetime


# =============================================================================
# Document wrappers
# =============================================================================

class UsersDocument(BaseModel):
    users: list[User] = Field(default_factory=list)


class ChatsDocument(BaseModel):
    messages: list[Message] = Field(default_factory=list)


class RecentChatsDocument(BaseModel):
    chats: list[RecentChatEntry] = Field(default_factory=list)

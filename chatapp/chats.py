"""
Chat operations spanning the Message Store and the Recent-Chat Index.

Sending appends to the message log and then updates both participants'
recent-chat entries. Marking read flips the matching messages and then
syncs the reader's single entry. Both steps run under the message log
lock, so the index sees events in the same order as the log.
"""

import logging
from typing import Iterable

from fastapi import Depends

from chatapp.models import ContactSummary, Message
from chatapp.storage import MessageStore, RecentChatIndex, Stores, get_stores

logger = logging.getLogger(__name__)


def summarize_recent_chats(user: str, messages: Iterable[Message]) -> list[ContactSummary]:
    """
    Derive one summary row per contact from user's messages.

    Keeps the latest message per contact. On equal timestamps the first
    message encountered wins. Rows are ordered newest first, with ties
    in order of each contact's first appearance.
    """
    latest: dict[str, Message] = {}
    for msg in messages:
        contact = msg.counterpart(user)
        current = latest.get(contact)
        if current is None or msg.timestamp > current.timestamp:
            latest[contact] = msg

    summaries = [
        ContactSummary(user_id=contact, last_message=msg.content, timestamp=msg.timestamp)
        for contact, msg in latest.items()
    ]
    return sorted(summaries, key=lambda summary: summary.timestamp, reverse=True)


class ChatService:
    """Keeps the message log and the recent-chat index consistent."""

    def __init__(self, messages: MessageStore, recent_chats: RecentChatIndex):
        self.messages = messages
        self.recent_chats = recent_chats

    def send_message(self, sender: str, receiver: str, content: str) -> Message:
        # Locks are always taken message log first, then index
        with self.messages.lock:
            message = self.messages.append(sender, receiver, content)
            self.recent_chats.record_send(sender, receiver, content, message.timestamp)
        logger.info(f"Message sent: {sender} -> {receiver}")
        return message

    def mark_read(self, owner: str, contact: str) -> int:
        """
        Mark contact's messages to owner as read.

        Returns the number of messages newly marked. The recent-chat entry
        is only touched when at least one message changed.
        """
        with self.messages.lock:
            marked = self.messages.mark_read(contact, owner)
            if marked:
                self.recent_chats.record_read(owner, contact)
        return marked

    def conversation(self, user_a: str, user_b: str) -> list[Message]:
        return self.messages.query(user_a, user_b)

    def all_messages(self, user: str) -> tuple[list[Message], list[ContactSummary]]:
        """User's messages together with the summary derived from them."""
        messages = self.messages.query_all_for(user)
        return messages, summarize_recent_chats(user, messages)

    def recent_chats_for(self, owner: str):
        return self.recent_chats.query_for(owner)


def get_chat_service(stores: Stores = Depends(get_stores)) -> ChatService:
    """Dependency wiring the injected stores into a ChatService."""
    return ChatService(stores.messages, stores.recent_chats)

import logging
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from chatapp.config import Settings
from chatapp.errors import MalformedDataError, StoreIOError
from chatapp.models import (
    ChatsDocument,
    Message,
    RecentChatEntry,
    RecentChatsDocument,
    User,
    UsersDocument,
)
from chatapp.utils import utc_now

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=BaseModel)


class JsonDocumentStore(Generic[D]):
    """
    A single JSON document on disk, read and rewritten as a whole.

    Every operation holds the store's lock for its full read-modify-write
    cycle, so concurrent writers serialize instead of clobbering each
    other. Writes are not journaled: a crash mid-write can leave a
    truncated document behind.
    """

    document_type: Type[D]

    def __init__(self, path):
        self.path = Path(path)
        # Reentrant so a caller can hold it across several operations
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """Writer lock; hold it to make several operations one unit."""
        return self._lock

    def load(self) -> D:
        """Return the current document (empty if the file does not exist)."""
        with self._lock:
            return self._read()

    def _read(self) -> D:
        if not self.path.exists():
            logger.debug(f"{self.path.name} does not exist yet, using empty document")
            return self.document_type()
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read {self.path}: {e}")
            raise StoreIOError(self.path, f"cannot read: {e}") from e
        try:
            return self.document_type.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as e:
            logger.error(f"Failed to parse {self.path}: {e}")
            raise MalformedDataError(self.path, f"cannot parse: {e}") from e

    def _write(self, document: D) -> None:
        data = document.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(data, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise StoreIOError(self.path, f"cannot write: {e}") from e
        logger.debug(f"Wrote {len(data)} bytes to {self.path.name}")


# =============================================================================
# Message Store
# =============================================================================

class MessageStore(JsonDocumentStore[ChatsDocument]):
    """Append-only log of messages, persisted as {"messages": [...]}."""

    document_type = ChatsDocument

    def __init__(self, path, clock: Callable[[], datetime] = utc_now):
        super().__init__(path)
        self._clock = clock

    def append(self, sender: str, receiver: str, content: str) -> Message:
        """
        Append a new unread message and rewrite the log.

        Timestamps are strictly increasing in storage order: if the clock
        has not advanced past the last stored message, the new one is
        placed one microsecond after it.
        """
        logger.info(f"Appending message: {sender} -> {receiver}")
        with self._lock:
            document = self._read()
            timestamp = self._clock()
            if document.messages and timestamp <= document.messages[-1].timestamp:
                timestamp = document.messages[-1].timestamp + timedelta(microseconds=1)

            message = Message(
                sender=sender,
                receiver=receiver,
                content=content,
                timestamp=timestamp,
                is_read=False,
            )
            document.messages.append(message)
            self._write(document)

        logger.debug(f"Message log now holds {len(document.messages)} messages")
        return message

    def query(self, user_a: str, user_b: str) -> list[Message]:
        """Messages exchanged between user_a and user_b, in storage order."""
        document = self.load()
        return [msg for msg in document.messages if msg.involves(user_a, user_b)]

    def query_all_for(self, user: str) -> list[Message]:
        """Messages sent or received by user, in storage order."""
        document = self.load()
        return [
            msg for msg in document.messages
            if msg.sender == user or msg.receiver == user
        ]

    def mark_read(self, contact: str, owner: str) -> int:
        """
        Mark every unread message from contact to owner as read.

        Returns the number of messages that changed. The log is only
        rewritten when that number is non-zero.
        """
        with self._lock:
            document = self._read()
            marked = 0
            for msg in document.messages:
                if msg.sender == contact and msg.receiver == owner and not msg.is_read:
                    msg.is_read = True
                    marked += 1
            if marked:
                self._write(document)

        logger.info(f"Marked {marked} messages from {contact} to {owner} as read")
        return marked


# =============================================================================
# Recent-Chat Index
# =============================================================================

class RecentChatIndex(JsonDocumentStore[RecentChatsDocument]):
    """One summary entry per (owner, contact), persisted as {"chats": [...]}."""

    document_type = RecentChatsDocument

    @staticmethod
    def _find(document: RecentChatsDocument, owner: str, contact: str) -> Optional[RecentChatEntry]:
        for entry in document.chats:
            if entry.user_id == owner and entry.contact_id == contact:
                return entry
        return None

    @classmethod
    def _upsert(
        cls,
        document: RecentChatsDocument,
        owner: str,
        contact: str,
        content: str,
        timestamp: datetime,
        is_read: bool,
    ) -> None:
        entry = cls._find(document, owner, contact)
        if entry is None:
            document.chats.append(
                RecentChatEntry(
                    user_id=owner,
                    contact_id=contact,
                    last_message=content,
                    timestamp=timestamp,
                    is_read=is_read,
                )
            )
            return
        entry.last_message = content
        entry.timestamp = timestamp
        entry.is_read = is_read

    def upsert(self, owner: str, contact: str, content: str, timestamp: datetime, is_read: bool) -> None:
        """Create or overwrite the (owner, contact) entry."""
        with self._lock:
            document = self._read()
            self._upsert(document, owner, contact, content, timestamp, is_read)
            self._write(document)

    def record_send(self, sender: str, receiver: str, content: str, timestamp: datetime) -> None:
        """
        Reflect a sent message in both participants' entries.

        The sender's own copy is read, the receiver's copy is unread. Both
        upserts share one read-modify-write cycle. When sender and receiver
        are the same user the receiver's (unread) copy wins.
        """
        with self._lock:
            document = self._read()
            self._upsert(document, sender, receiver, content, timestamp, True)
            self._upsert(document, receiver, sender, content, timestamp, False)
            self._write(document)
        logger.info(f"Recent chats updated for {sender} and {receiver}")

    def record_read(self, owner: str, contact: str) -> bool:
        """Mark the (owner, contact) entry read. Missing entry is a no-op."""
        with self._lock:
            document = self._read()
            entry = self._find(document, owner, contact)
            if entry is None:
                logger.debug(f"No recent chat entry for ({owner}, {contact})")
                return False
            entry.is_read = True
            self._write(document)
        return True

    def query_for(self, owner: str) -> list[RecentChatEntry]:
        """Entries owned by owner, newest first; ties keep storage order."""
        document = self.load()
        entries = [entry for entry in document.chats if entry.user_id == owner]
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)


# =============================================================================
# User Store
# =============================================================================

class UserStore(JsonDocumentStore[UsersDocument]):
    """Registered users, persisted as {"users": [...]}."""

    document_type = UsersDocument

    def register(self, user_id: str, password: str, email: Optional[str] = None) -> bool:
        """Add a user. Returns False if the user id is already taken."""
        with self._lock:
            document = self._read()
            if any(user.user_id == user_id for user in document.users):
                logger.info(f"User already exists: {user_id}")
                return False
            document.users.append(User(user_id=user_id, password=password, email=email))
            self._write(document)
        logger.info(f"User registered: {user_id}")
        return True

    def authenticate(self, user_id: str, password: str) -> Optional[User]:
        """Return the matching user, or None. Passwords are compared as plain text."""
        for user in self.load().users:
            if user.user_id == user_id and user.password == password:
                return user
        return None

    def search(self, term: str) -> list[User]:
        """Case-insensitive substring search on user id. Passwords are stripped."""
        needle = term.lower()
        return [
            User(user_id=user.user_id, email=user.email)
            for user in self.load().users
            if needle in user.user_id.lower()
        ]


# =============================================================================
# Store handles
# =============================================================================

class Stores:
    """The process-wide store handles, built once and injected into handlers."""

    def __init__(
        self,
        data_dir,
        users_file: str = "users.json",
        chats_file: str = "chats.json",
        recent_chats_file: str = "recentChats.json",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.data_dir = Path(data_dir)
        self.users = UserStore(self.data_dir / users_file)
        self.messages = MessageStore(self.data_dir / chats_file, clock=clock)
        self.recent_chats = RecentChatIndex(self.data_dir / recent_chats_file)

    def all(self) -> list[JsonDocumentStore]:
        return [self.users, self.messages, self.recent_chats]


def init_stores(settings: Settings) -> Stores:
    """
    Create the data directory and the store handles.
    Called during application startup.
    """
    logger.debug(f"Initializing stores in: {settings.DATA_DIR}")
    try:
        settings.data_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create data directory: {e}")
        raise StoreIOError(settings.data_path, f"cannot create data directory: {e}") from e

    stores = Stores(
        settings.data_path,
        users_file=settings.USERS_FILE,
        chats_file=settings.CHATS_FILE,
        recent_chats_file=settings.RECENT_CHATS_FILE,
    )
    logger.info("Stores initialized successfully")
    return stores


def get_stores(request: Request) -> Stores:
    """Dependency returning the stores created at startup."""
    return request.app.state.stores


def check_stores_health(stores: Stores) -> Tuple[bool, Optional[str]]:
    """
    Check that the data directory is writable and every existing document parses.

    Returns:
        (True, None) if healthy, otherwise (False, reason).
    """
    logger.debug("Checking store health...")
    if not stores.data_dir.is_dir() or not os.access(stores.data_dir, os.W_OK):
        logger.error(f"Data directory not writable: {stores.data_dir}")
        return False, "Data directory missing or not writable"

    for store in stores.all():
        try:
            store.load()
        except (StoreIOError, MalformedDataError) as e:
            logger.error(f"Store health check failed: {e}")
            return False, f"{store.path.name} unreadable"

    logger.debug("Store health check passed")
    return True, None

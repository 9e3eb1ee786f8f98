"""Persistence backends for conversations and their messages."""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from supabase import create_client, Client

from models.conversation import Conversation, Message
from config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """
    Durable backing for conversation and message records.

    Every write method is atomic: it either stores everything it was given
    or raises and leaves the store unchanged. Listings are returned in
    creation order.
    """

    @abstractmethod
    def insert_conversation(self, conversation: Conversation) -> None:
        """Store a new conversation that has no messages yet."""

    @abstractmethod
    def insert_branch(self, conversation: Conversation) -> None:
        """Store a new conversation together with its initial messages."""

    @abstractmethod
    def insert_messages(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        title: str,
        updated_at: datetime
    ) -> None:
        """Append messages and update the conversation's title and timestamp."""

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Return the conversation with its messages, or None if unknown."""

    @abstractmethod
    def list_conversations(self) -> List[Conversation]:
        """Return every conversation record without messages."""

    @abstractmethod
    def list_children(self, parent_id: str) -> List[Conversation]:
        """Return the direct branches of a conversation without messages."""

    @abstractmethod
    def first_messages(self) -> Dict[str, Message]:
        """Return the first message of every non-empty conversation, keyed by conversation id."""


class InMemoryConversationStore(ConversationStore):
    """Process-local store used for local runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._children: Dict[str, List[str]] = defaultdict(list)
        logger.info("Initialized InMemoryConversationStore")

    def insert_conversation(self, conversation: Conversation) -> None:
        self.insert_branch(replace(conversation, messages=()))

    def insert_branch(self, conversation: Conversation) -> None:
        with self._lock:
            if conversation.conversation_id in self._conversations:
                raise RuntimeError(f"Conversation already exists: {conversation.conversation_id}")

            messages = list(conversation.messages)
            self._conversations[conversation.conversation_id] = replace(
                conversation, messages=(), message_count=len(messages)
            )
            self._messages[conversation.conversation_id] = messages
            if conversation.parent_id is not None:
                self._children[conversation.parent_id].append(conversation.conversation_id)

    def insert_messages(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        title: str,
        updated_at: datetime
    ) -> None:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None:
                raise RuntimeError(f"Conversation does not exist: {conversation_id}")

            stored = self._messages[conversation_id]
            expected = len(stored)
            for offset, message in enumerate(messages):
                if message.position != expected + offset:
                    raise RuntimeError(
                        f"Message position {message.position} out of order for {conversation_id}"
                    )

            stored.extend(messages)
            self._conversations[conversation_id] = replace(
                record, title=title, updated_at=updated_at, message_count=len(stored)
            )

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            record = self._conversations.get(conversation_id)
            if record is None:
                return None
            return replace(record, messages=tuple(self._messages[conversation_id]))

    def list_conversations(self) -> List[Conversation]:
        with self._lock:
            return list(self._conversations.values())

    def list_children(self, parent_id: str) -> List[Conversation]:
        with self._lock:
            return [self._conversations[child_id] for child_id in self._children.get(parent_id, [])]

    def first_messages(self) -> Dict[str, Message]:
        with self._lock:
            return {
                conversation_id: messages[0]
                for conversation_id, messages in self._messages.items()
                if messages
            }


class SupabaseConversationStore(ConversationStore):
    """Store conversations in Supabase PostgreSQL."""

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        conversations_table: str = "conversations",
        messages_table: str = "messages"
    ):
        """
        Initialize the store with a Supabase client.

        The schema and the ``create_branch`` / ``append_messages`` functions
        come from ``migrations/001_conversation_tree.sql``.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            conversations_table: Table holding conversation records
            messages_table: Table holding message records

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.conversations_table = conversations_table
        self.messages_table = messages_table
        self.client: Client = create_client(supabase_url, supabase_key)

        logger.info(f"Initialized SupabaseConversationStore with tables: {conversations_table}, {messages_table}")

    def insert_conversation(self, conversation: Conversation) -> None:
        try:
            self.client.table(self.conversations_table).insert(
                self._conversation_row(conversation)
            ).execute()
            logger.info(f"Stored conversation {conversation.conversation_id}")
        except Exception as e:
            error_msg = f"Failed to store conversation {conversation.conversation_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

    def insert_branch(self, conversation: Conversation) -> None:
        try:
            # create_branch inserts the conversation and its messages in one transaction
            self.client.rpc(
                "create_branch",
                {
                    "p_conversation": self._conversation_row(conversation),
                    "p_messages": [self._message_row(m) for m in conversation.messages],
                }
            ).execute()
            logger.info(
                f"Stored branch {conversation.conversation_id} of {conversation.parent_id} "
                f"with {len(conversation.messages)} messages"
            )
        except Exception as e:
            error_msg = f"Failed to store branch {conversation.conversation_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

    def insert_messages(
        self,
        conversation_id: str,
        messages: Sequence[Message],
        title: str,
        updated_at: datetime
    ) -> None:
        try:
            self.client.rpc(
                "append_messages",
                {
                    "p_conversation_id": conversation_id,
                    "p_messages": [self._message_row(m) for m in messages],
                    "p_title": title,
                    "p_updated_at": updated_at.isoformat(),
                }
            ).execute()
            logger.info(f"Appended {len(messages)} messages to conversation {conversation_id}")
        except Exception as e:
            error_msg = f"Failed to append messages to conversation {conversation_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        try:
            result = self.client.table(self.conversations_table).select("*").eq(
                "conversation_id", conversation_id
            ).execute()
            if not result.data:
                return None

            messages = self.client.table(self.messages_table).select("*").eq(
                "conversation_id", conversation_id
            ).order("position", desc=False).execute()
        except Exception as e:
            error_msg = f"Failed to read conversation {conversation_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        conversation = self._to_conversation(result.data[0])
        return replace(
            conversation,
            messages=tuple(self._to_message(row) for row in (messages.data or []))
        )

    def list_conversations(self) -> List[Conversation]:
        try:
            result = self.client.table(self.conversations_table).select("*").order(
                "created_at", desc=False
            ).execute()
        except Exception as e:
            error_msg = f"Failed to list conversations: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        return [self._to_conversation(row) for row in (result.data or [])]

    def list_children(self, parent_id: str) -> List[Conversation]:
        try:
            result = self.client.table(self.conversations_table).select("*").eq(
                "parent_id", parent_id
            ).order("created_at", desc=False).execute()
        except Exception as e:
            error_msg = f"Failed to list branches of {parent_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        return [self._to_conversation(row) for row in (result.data or [])]

    def first_messages(self) -> Dict[str, Message]:
        try:
            result = self.client.table(self.messages_table).select("*").eq(
                "position", 0
            ).execute()
        except Exception as e:
            error_msg = f"Failed to read first messages: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        return {row["conversation_id"]: self._to_message(row) for row in (result.data or [])}

    @staticmethod
    def _conversation_row(conversation: Conversation) -> dict:
        return {
            "conversation_id": conversation.conversation_id,
            "parent_id": conversation.parent_id,
            "title": conversation.title,
            "message_count": len(conversation.messages),
            "created_at": conversation.created_at.isoformat(),
            "updated_at": conversation.updated_at.isoformat(),
        }

    @staticmethod
    def _message_row(message: Message) -> dict:
        return {
            "message_id": message.message_id,
            "conversation_id": message.conversation_id,
            "role": message.role,
            "content": message.content,
            "position": message.position,
            "created_at": message.created_at.isoformat(),
        }

    def _to_conversation(self, row: dict) -> Conversation:
        return Conversation(
            conversation_id=row["conversation_id"],
            parent_id=row.get("parent_id"),
            title=row["title"],
            message_count=row.get("message_count", 0),
            created_at=self._parse_timestamp(row["created_at"]),
            updated_at=self._parse_timestamp(row["updated_at"]),
        )

    def _to_message(self, row: dict) -> Message:
        return Message(
            message_id=row["message_id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            position=row["position"],
            created_at=self._parse_timestamp(row["created_at"]),
        )

    def _parse_timestamp(self, timestamp_str: str) -> datetime:
        """
        Parse a timestamp string returned by Supabase.

        PostgreSQL can return fractional seconds with fewer than six digits
        and a ``Z`` suffix, so both are normalised before parsing.
        """
        timestamp_str = timestamp_str.replace("Z", "+00:00")

        if "." in timestamp_str:
            whole, fraction = timestamp_str.split(".", 1)
            digits = ""
            for ch in fraction:
                if not ch.isdigit():
                    break
                digits += ch
            tz = fraction[len(digits):]
            timestamp_str = f"{whole}.{digits[:6].ljust(6, '0')}{tz}"

        return datetime.fromisoformat(timestamp_str)


def create_store(backend: str) -> ConversationStore:
    """Build the store named by ``STORE_BACKEND``."""
    if backend == "supabase":
        return SupabaseConversationStore()
    if backend == "memory":
        return InMemoryConversationStore()
    raise ValueError(f"Unknown store backend: {backend}")

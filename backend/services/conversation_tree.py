"""Branching conversation tree: create, append, branch-on-edit and forest assembly."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from models.conversation import Conversation, ConversationNode, Message, ROLES, USER
from services.conversation_store import ConversationStore
from services.errors import InvalidArgumentError, NotFoundError
from services.text_utils import derive_preview, derive_title

logger = logging.getLogger(__name__)


class ConversationTree:
    """
    Owns the branching structure of all conversations in a store.

    Conversations only ever point at their parent; child sets are looked up
    from the store. Editing a message never changes the conversation it
    belongs to: it creates a branch holding a copy of the earlier messages
    plus the edited one. All arguments are validated before the store is
    written, so a failing call leaves the tree as it was.

    Siblings, including the roots of the forest, are ordered by creation
    time, oldest first.
    """

    def __init__(self, store: ConversationStore):
        self.store = store

    def create_conversation(
        self,
        title: Optional[str] = None,
        parent_id: Optional[str] = None
    ) -> Conversation:
        """
        Create an empty conversation.

        Args:
            title: Title to show until the first message arrives
            parent_id: Conversation this one branches from, if any

        Returns:
            The stored Conversation

        Raises:
            NotFoundError: If parent_id does not reference a conversation
        """
        if parent_id is not None:
            self._require(parent_id)

        now = _now()
        conversation = Conversation(
            conversation_id=self._generate_conversation_id(),
            parent_id=parent_id,
            title=derive_title((), title),
            created_at=now,
            updated_at=now,
        )
        self.store.insert_conversation(conversation)

        logger.info(f"Created conversation {conversation.conversation_id} (parent={parent_id})")
        return conversation

    def append_message(self, conversation_id: str, role: str, content: str) -> Message:
        """
        Append one message to a conversation.

        Raises:
            NotFoundError: If the conversation does not exist
            InvalidArgumentError: If role is unknown or content is empty
        """
        return self.append_messages(conversation_id, [(role, content)])[0]

    def append_messages(
        self,
        conversation_id: str,
        entries: Sequence[Tuple[str, str]]
    ) -> List[Message]:
        """
        Append several (role, content) messages as one atomic write.

        Raises:
            NotFoundError: If the conversation does not exist
            InvalidArgumentError: If any entry is invalid or none are given
        """
        if not entries:
            raise InvalidArgumentError("At least one message is required")
        for role, content in entries:
            _validate(role, content)

        conversation = self._require(conversation_id)
        now = _now()
        start = len(conversation.messages)
        new_messages = [
            self._new_message(conversation_id, role, content, start + offset, now)
            for offset, (role, content) in enumerate(entries)
        ]

        title = conversation.title
        if start == 0:
            title = derive_title(new_messages, conversation.title)

        self.store.insert_messages(conversation_id, new_messages, title, now)

        logger.debug(f"Appended {len(new_messages)} messages to conversation {conversation_id}")
        return new_messages

    def edit_message(self, conversation_id: str, message_id: str, new_content: str) -> str:
        """
        Branch a conversation at an edited message.

        The branch's parent is ``conversation_id`` and its messages are a
        copy of every message before ``message_id`` followed by a new user
        message carrying ``new_content``. The source is left untouched.

        Returns:
            The new branch's conversation id

        Raises:
            NotFoundError: If the conversation, or the message within it, does not exist
            InvalidArgumentError: If new_content is empty
        """
        _validate(USER, new_content)
        source = self._require(conversation_id)

        index = next(
            (i for i, message in enumerate(source.messages) if message.message_id == message_id),
            None
        )
        if index is None:
            raise NotFoundError("Message", message_id)

        now = _now()
        branch_id = self._generate_conversation_id()
        prefix = [
            self._new_message(branch_id, message.role, message.content, position, message.created_at)
            for position, message in enumerate(source.messages[:index])
        ]
        edited = self._new_message(branch_id, USER, new_content, index, now)
        messages = tuple(prefix) + (edited,)

        branch = Conversation(
            conversation_id=branch_id,
            parent_id=conversation_id,
            title=derive_title(messages),
            created_at=now,
            updated_at=now,
            message_count=len(messages),
            messages=messages,
        )
        self.store.insert_branch(branch)

        logger.info(
            f"Branched conversation {conversation_id} at message {message_id} into {branch_id}",
            extra={"conversation_id": conversation_id, "message_id": message_id, "branch_id": branch_id}
        )
        return branch_id

    def get_history(self, conversation_id: str) -> List[Message]:
        """
        Ordered messages of a conversation.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        return list(self._require(conversation_id).messages)

    def get_conversation(self, conversation_id: str) -> Conversation:
        """
        Conversation record including its messages.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        return self._require(conversation_id)

    def get_forest(self) -> List[ConversationNode]:
        """
        Assemble every root conversation with its branches nested beneath it.

        Returns:
            Root nodes in creation order, each with children in creation order
        """
        records = self.store.list_conversations()
        first_messages = self.store.first_messages()

        children: Dict[str, List[Conversation]] = {}
        roots: List[Conversation] = []
        for record in sorted(records, key=lambda r: r.created_at):
            if record.parent_id is None:
                roots.append(record)
            else:
                children.setdefault(record.parent_id, []).append(record)

        def build(record: Conversation) -> ConversationNode:
            first = first_messages.get(record.conversation_id)
            return ConversationNode(
                conversation_id=record.conversation_id,
                parent_id=record.parent_id,
                title=record.title,
                preview=derive_preview([first] if first else []),
                message_count=record.message_count,
                created_at=record.created_at,
                updated_at=record.updated_at,
                children=[build(child) for child in children.get(record.conversation_id, [])],
            )

        return [build(root) for root in roots]

    def get_children(self, conversation_id: str) -> List[Conversation]:
        """
        Direct branches of a conversation, oldest first.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        self._require(conversation_id)
        return sorted(self.store.list_children(conversation_id), key=lambda r: r.created_at)

    def _require(self, conversation_id: str) -> Conversation:
        if not conversation_id:
            raise InvalidArgumentError("conversation_id is required")
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    @staticmethod
    def _new_message(
        conversation_id: str,
        role: str,
        content: str,
        position: int,
        created_at: datetime
    ) -> Message:
        return Message(
            message_id=f"msg_{uuid.uuid4().hex[:12]}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            position=position,
            created_at=created_at,
        )

    @staticmethod
    def _generate_conversation_id() -> str:
        return f"conv_{uuid.uuid4().hex[:12]}"


def _validate(role: str, content: str) -> None:
    if role not in ROLES:
        raise InvalidArgumentError(f"Unknown role: {role!r}")
    if not content or not content.strip():
        raise InvalidArgumentError("Message content cannot be empty")


def _now() -> datetime:
    return datetime.now(timezone.utc)

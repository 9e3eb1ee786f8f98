"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


@dataclass(frozen=True)
class Message:
    """A single immutable message owned by one conversation."""
    message_id: str  # Format: "msg_{12 hex chars}"
    conversation_id: str
    role: str  # 'user' or 'assistant'
    content: str
    position: int  # 0-based order within the conversation
    created_at: datetime

    def as_prompt(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass
class Conversation:
    """A conversation record, optionally forked from a parent conversation."""
    conversation_id: str  # Format: "conv_{12 hex chars}"
    title: str
    created_at: datetime
    updated_at: datetime
    parent_id: Optional[str] = None
    message_count: int = 0
    messages: Tuple[Message, ...] = ()  # empty when loaded as a listing row

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass
class ConversationNode:
    """Tree view of a conversation and its branches."""
    conversation_id: str
    title: str
    preview: str
    message_count: int
    created_at: datetime
    updated_at: datetime
    parent_id: Optional[str] = None
    children: List["ConversationNode"] = field(default_factory=list)

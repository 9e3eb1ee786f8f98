"""Request and response schemas for the HTTP API."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from models.conversation import Conversation, ConversationNode, Message


class CreateConversationRequest(BaseModel):
    title: Optional[str] = None
    parent_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="User message text")


class EditMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Replacement text for the edited message")


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Stateless completion over a client-held message list."""
    messages: List[ChatMessage] = Field(..., min_length=1)


class ChatResponse(BaseModel):
    response: str


class MessageResponse(BaseModel):
    message_id: str
    role: str
    content: str
    position: int
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            message_id=message.message_id,
            role=message.role,
            content=message.content,
            position=message.position,
            created_at=message.created_at,
        )


class ConversationResponse(BaseModel):
    conversation_id: str
    parent_id: Optional[str] = None
    title: str
    created_at: datetime
    updated_at: datetime
    messages: List[MessageResponse] = []

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationResponse":
        return cls(
            conversation_id=conversation.conversation_id,
            parent_id=conversation.parent_id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            messages=[MessageResponse.from_message(m) for m in conversation.messages],
        )


class ConversationNodeResponse(BaseModel):
    conversation_id: str
    parent_id: Optional[str] = None
    title: str
    preview: str
    message_count: int
    created_at: datetime
    updated_at: datetime
    children: List["ConversationNodeResponse"] = []

    @classmethod
    def from_node(cls, node: ConversationNode) -> "ConversationNodeResponse":
        return cls(
            conversation_id=node.conversation_id,
            parent_id=node.parent_id,
            title=node.title,
            preview=node.preview,
            message_count=node.message_count,
            created_at=node.created_at,
            updated_at=node.updated_at,
            children=[cls.from_node(child) for child in node.children],
        )


class ExchangeResponse(BaseModel):
    """Result of a send, edit or regenerate call."""
    conversation_id: str
    branched_from: Optional[str] = None
    reply: MessageResponse
    messages: List[MessageResponse]
    title: str


ConversationNodeResponse.model_rebuild()

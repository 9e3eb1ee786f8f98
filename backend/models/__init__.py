"""Data models for the Branching Chat backend."""
from .conversation import Message, Conversation, ConversationNode, USER, ASSISTANT, ROLES
from .api import (
    CreateConversationRequest,
    SendMessageRequest,
    EditMessageRequest,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    MessageResponse,
    ConversationResponse,
    ConversationNodeResponse,
    ExchangeResponse,
)

__all__ = [
    "Message",
    "Conversation",
    "ConversationNode",
    "USER",
    "ASSISTANT",
    "ROLES",
    "CreateConversationRequest",
    "SendMessageRequest",
    "EditMessageRequest",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "MessageResponse",
    "ConversationResponse",
    "ConversationNodeResponse",
    "ExchangeResponse",
]

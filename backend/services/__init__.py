"""Services for the Branching Chat backend."""
from .errors import ConversationError, NotFoundError, InvalidArgumentError
from .conversation_store import (
    ConversationStore,
    InMemoryConversationStore,
    SupabaseConversationStore,
    create_store,
)
from .conversation_tree import ConversationTree
from .llm_client import LLMClient, LLMResponse, LLMError, CompletionError
from .chat_service import ChatService, Exchange

__all__ = ['ConversationError', 'NotFoundError', 'InvalidArgumentError', 'ConversationStore', 'InMemoryConversationStore', 'SupabaseConversationStore', 'create_store', 'ConversationTree', 'LLMClient', 'LLMResponse', 'LLMError', 'CompletionError', 'ChatService', 'Exchange']

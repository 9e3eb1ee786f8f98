"""Chat orchestration: conversation tree plus completion calls."""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import tiktoken

from config import MAX_PROMPT_TOKENS
from models.conversation import ASSISTANT, USER, Conversation, Message
from services.conversation_tree import ConversationTree
from services.errors import InvalidArgumentError
from services.llm_client import CompletionError, LLMClient

logger = logging.getLogger(__name__)

PromptItem = Union[Message, Dict[str, str]]

# Per-message overhead of the chat format (role markers, separators)
MESSAGE_OVERHEAD_TOKENS = 4


@dataclass
class Exchange:
    """Outcome of a request that produced an assistant reply."""
    conversation: Conversation
    reply: Message
    branched_from: Optional[str] = None


class ChatService:
    """
    Drives completions against the conversation tree.

    Nothing is written for an assistant reply until the completion has
    returned. A plain send stores the user message and the reply together,
    so a failed completion leaves the conversation unchanged. An edit stores
    its branch first; if the completion then fails, the branch keeps only the
    edited user message and :meth:`regenerate` can retry it.
    """

    def __init__(
        self,
        tree: ConversationTree,
        llm_client: LLMClient,
        max_prompt_tokens: int = MAX_PROMPT_TOKENS,
        encoder=None
    ):
        self.tree = tree
        self.llm_client = llm_client
        self.max_prompt_tokens = max_prompt_tokens
        # Llama 3 token counts approximated with o200k_base
        self.encoder = encoder or tiktoken.get_encoding("o200k_base")

    def send_message(self, conversation_id: str, content: str) -> Exchange:
        """
        Send a user message and store it with the assistant's reply.

        Raises:
            NotFoundError: If the conversation does not exist
            InvalidArgumentError: If content is empty
            CompletionError: If the completion failed; nothing was stored
        """
        if not content or not content.strip():
            raise InvalidArgumentError("Message content cannot be empty")

        history = self.tree.get_history(conversation_id)
        pending = {"role": USER, "content": content}

        reply_text = self._complete(history + [pending])

        _, reply = self.tree.append_messages(
            conversation_id,
            [(USER, content), (ASSISTANT, reply_text)]
        )
        return Exchange(conversation=self.tree.get_conversation(conversation_id), reply=reply)

    def edit_message(self, conversation_id: str, message_id: str, content: str) -> Exchange:
        """
        Branch at an edited message and answer it in the new branch.

        Raises:
            NotFoundError: If the conversation or message does not exist
            InvalidArgumentError: If content is empty
            CompletionError: If the completion failed; ``conversation_id`` on
                the error names the branch that was created
        """
        branch_id = self.tree.edit_message(conversation_id, message_id, content)

        try:
            exchange = self._answer(branch_id)
        except CompletionError as e:
            e.conversation_id = branch_id
            raise

        exchange.branched_from = conversation_id
        return exchange

    def regenerate(self, conversation_id: str) -> Exchange:
        """
        Request a reply for a conversation whose last message is from the user.

        Used to retry after a failed completion.

        Raises:
            NotFoundError: If the conversation does not exist
            InvalidArgumentError: If the last message is not a user message
            CompletionError: If the completion failed; nothing was stored
        """
        return self._answer(conversation_id)

    def complete_messages(self, messages: Sequence[Dict[str, str]]) -> str:
        """Stateless completion over a client-held message list."""
        if not messages:
            raise InvalidArgumentError("At least one message is required")
        return self._complete(list(messages))

    def _answer(self, conversation_id: str) -> Exchange:
        history = self.tree.get_history(conversation_id)
        if not history or history[-1].role != USER:
            raise InvalidArgumentError(
                f"Conversation {conversation_id} is not waiting for an assistant reply"
            )

        reply_text = self._complete(history)
        reply = self.tree.append_message(conversation_id, ASSISTANT, reply_text)
        return Exchange(conversation=self.tree.get_conversation(conversation_id), reply=reply)

    def _complete(self, history: List[PromptItem]) -> str:
        return self.llm_client.complete(self.trim_history(history))

    def trim_history(self, history: List[PromptItem]) -> List[PromptItem]:
        """
        Drop the oldest messages until the prompt fits ``max_prompt_tokens``.

        The newest message is always kept. The stored history is not touched.
        """
        kept: List[PromptItem] = []
        total = 0
        for item in reversed(history):
            cost = self._count_tokens(item)
            if kept and total + cost > self.max_prompt_tokens:
                logger.info(f"Trimmed {len(history) - len(kept)} oldest messages from prompt")
                break
            kept.append(item)
            total += cost

        kept.reverse()
        return kept

    def _count_tokens(self, item: PromptItem) -> int:
        content = item.content if isinstance(item, Message) else item["content"]
        return len(self.encoder.encode(content)) + MESSAGE_OVERHEAD_TOKENS

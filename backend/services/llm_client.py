"""Completion client for the Groq chat API."""
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY, CHAT_MODEL, SYSTEM_PROMPT, MAX_COMPLETION_TOKENS
from models.conversation import Message

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from a chat completion."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from completion calls."""
    code: str
    message: str
    details: Dict[str, Any]


class CompletionError(Exception):
    """The upstream completion call failed; carries a structured LLMError."""

    def __init__(self, error: LLMError, conversation_id: Optional[str] = None):
        self.error = error
        # Set by the chat service when the failure happened after a branch was stored
        self.conversation_id = conversation_id
        super().__init__(error.message)


class LLMClient:
    """Client for generating assistant replies with the Groq API."""

    def __init__(self, api_key: Optional[str] = None, model: str = CHAT_MODEL):
        """
        Initialize the client.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            model: Chat model used for every completion

        Raises:
            ValueError: If no API key is available
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.model = model
        self.client = Groq(api_key=self.api_key)
        logger.info(f"LLMClient initialized with model {model}")

    def complete(self, history: Iterable[Union[Message, Dict[str, str]]]) -> str:
        """
        Produce the assistant reply for a conversation history.

        Args:
            history: Messages (or ``{role, content}`` dicts) in conversation order

        Returns:
            Completion text

        Raises:
            CompletionError: On any upstream failure
        """
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(self._to_chat_message(item) for item in history)
        return self.generate(messages).text

    def generate(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = MAX_COMPLETION_TOKENS
    ) -> LLMResponse:
        """
        Call the Groq chat completions endpoint.

        Args:
            messages: Chat messages including any system prompt
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            CompletionError: Structured error with code, message, and details
        """
        start_time = time.time()

        try:
            logger.debug(f"Requesting completion: model={self.model}, messages={len(messages)}")

            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=0.7
            )

            latency_ms = int((time.time() - start_time) * 1000)

            text = response.choices[0].message.content if response.choices else None
            if not text:
                raise self._error(
                    "EMPTY_RESPONSE",
                    "No response from Groq API",
                    latency_ms
                )

            tokens_input = response.usage.prompt_tokens
            tokens_output = response.usage.completion_tokens

            logger.info(
                f"Generated response: model={self.model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=self.model
            )

        except CompletionError:
            raise

        except RateLimitError as e:
            raise self._error(
                "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                self._elapsed(start_time),
                e,
                retry_after=60
            )

        except AuthenticationError as e:
            raise self._error(
                "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                self._elapsed(start_time),
                e
            )

        except APITimeoutError as e:
            raise self._error(
                "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                self._elapsed(start_time),
                e
            )

        except APIError as e:
            raise self._error(
                "API_ERROR",
                f"Groq API error: {str(e)}",
                self._elapsed(start_time),
                e
            )

        except Exception as e:
            raise self._error(
                "UNKNOWN_ERROR",
                f"Unexpected error during generation: {str(e)}",
                self._elapsed(start_time),
                e,
                error_type=type(e).__name__
            )

    def _error(
        self,
        code: str,
        message: str,
        latency_ms: int,
        original: Optional[Exception] = None,
        **extra: Any
    ) -> CompletionError:
        details: Dict[str, Any] = {"model": self.model, "latency_ms": latency_ms, **extra}
        if original is not None:
            details["original_error"] = str(original)

        error = LLMError(code=code, message=message, details=details)
        logger.error(
            f"Completion failed: code={code}, model={self.model}, latency={latency_ms}ms, error={original}",
            exc_info=original is not None,
            extra={"error_code": code, "error_details": details}
        )
        return CompletionError(error)

    @staticmethod
    def _elapsed(start_time: float) -> int:
        return int((time.time() - start_time) * 1000)

    @staticmethod
    def _to_chat_message(item: Union[Message, Dict[str, str]]) -> Dict[str, str]:
        if isinstance(item, Message):
            return item.as_prompt()
        return {"role": item["role"], "content": item["content"]}

"""LLM Client for Groq API integration."""
import base64
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional
from groq import AsyncGroq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY, CHAT_TEMPERATURE, CHAT_TOP_P
from models.message import Message, SENDER_USER
from models.turn import Attachment
from services.prompts import COMPANION_INSTRUCTION

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class LLMClient:
    """Client for interfacing with Groq API for chat responses."""

    def __init__(self, api_key: Optional[str] = None):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.client = AsyncGroq(api_key=self.api_key)
        logger.info("LLMClient initialized successfully")

    async def stream_response(
        self,
        model: str,
        history: List[Message],
        new_message: Message,
        attachments: Optional[List[Attachment]] = None,
        memory_context: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream a chat response fragment by fragment.

        Args:
            model: Groq model name
            history: Prior conversation messages, oldest first
            new_message: The persisted user message of this turn
            attachments: Files attached to the new message
            memory_context: Formatted long-term memories of the user

        Yields:
            Raw text fragments in arrival order

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        start_time = time.time()
        messages = self.build_messages(history, new_message, attachments, memory_context)
        fragments = 0

        try:
            logger.debug(f"Streaming response with model: {model}, history={len(history)}")
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=CHAT_TEMPERATURE,
                top_p=CHAT_TOP_P,
                stream=True,
            )

            async for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    fragments += 1
                    yield text

        except Exception as e:
            raise self._to_client_error(e, model, start_time) from e

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Streamed response: model={model}, fragments={fragments}, latency={latency_ms}ms")

    async def generate(
        self,
        model: str,
        prompt: str,
        max_tokens: int = 500,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a one-shot response using Groq API.

        Args:
            model: Model name
            prompt: Complete prompt
            max_tokens: Maximum tokens to generate
            json_mode: Ask the model for a JSON object

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        start_time = time.time()
        extra: Dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=0.2,
                **extra,
            )
        except Exception as e:
            raise self._to_client_error(e, model, start_time) from e

        latency_ms = int((time.time() - start_time) * 1000)
        tokens_input = response.usage.prompt_tokens
        tokens_output = response.usage.completion_tokens

        logger.info(
            f"Generated response: model={model}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return LLMResponse(
            text=response.choices[0].message.content or "",
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms,
            model_used=model,
        )

    @staticmethod
    def build_system_instruction(memory_context: Optional[str] = None) -> str:
        """Build the system instruction with timestamp and memory context."""
        timestamp = datetime.now(timezone.utc).isoformat()
        memory = memory_context or "No memory context available."
        return (
            f"Current Timestamp: {timestamp}\n\n{COMPANION_INSTRUCTION}\n\n"
            f"--- MEMORY CONTEXT ---\n{memory}"
        )

    @staticmethod
    def build_messages(
        history: List[Message],
        new_message: Message,
        attachments: Optional[List[Attachment]] = None,
        memory_context: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Build the chat completion message list.

        Empty history entries are dropped. Image attachments become data-URL
        image parts placed before the user's text.

        Args:
            history: Prior conversation messages
            new_message: The user message of this turn
            attachments: Files attached to the new message
            memory_context: Formatted long-term memories

        Returns:
            List of role/content dictionaries
        """
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": LLMClient.build_system_instruction(memory_context)}
        ]

        for message in history:
            if not message.text.strip():
                continue
            role = "user" if message.sender == SENDER_USER else "assistant"
            messages.append({"role": role, "content": message.text})

        if not attachments:
            messages.append({"role": "user", "content": new_message.text})
            return messages

        parts: List[Dict[str, Any]] = []
        for attachment in attachments:
            if attachment.is_image:
                encoded = base64.b64encode(attachment.data).decode("ascii")
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{encoded}"},
                })
            else:
                parts.append({"type": "text", "text": f"[Attached file: {attachment.filename}]"})
        parts.append({"type": "text", "text": new_message.text})
        messages.append({"role": "user", "content": parts})
        return messages

    def _to_client_error(self, e: Exception, model: str, start_time: float) -> LLMClientError:
        latency_ms = int((time.time() - start_time) * 1000)
        details: Dict[str, Any] = {
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(e),
        }

        if isinstance(e, RateLimitError):
            details["retry_after"] = 60
            error = LLMError("RATE_LIMIT_ERROR", "Rate limit exceeded. Please try again in a few moments.", details)
        elif isinstance(e, AuthenticationError):
            error = LLMError("AUTHENTICATION_ERROR", "Authentication failed. Please check your API key.", details)
        elif isinstance(e, APITimeoutError):
            error = LLMError("TIMEOUT_ERROR", "Request timed out. Please try again.", details)
        elif isinstance(e, APIError):
            error = LLMError("API_ERROR", f"Groq API error: {str(e)}", details)
        else:
            details["error_type"] = type(e).__name__
            error = LLMError("UNKNOWN_ERROR", f"Unexpected error during generation: {str(e)}", details)

        logger.error(
            f"{error.code}: model={model}, latency={latency_ms}ms, error={e}",
            exc_info=e,
            extra={"error_code": error.code, "error_details": error.details},
        )
        return LLMClientError(error)

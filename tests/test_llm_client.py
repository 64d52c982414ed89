"""Unit tests for LLMClient."""
import sys
sys.path.insert(0, 'backend')

import pytest
from unittest.mock import AsyncMock, Mock, patch
from models.message import Message
from models.turn import Attachment
from services.llm_client import LLMClient, LLMResponse, LLMClientError
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError


def message(message_id, sender, text):
    return Message(id=message_id, chat_id="chat-1", project_id="proj-1", sender=sender, text=text)


def stream_chunk(content):
    return Mock(choices=[Mock(delta=Mock(content=content))])


class FakeStream:
    """Async iterator standing in for a Groq stream."""

    def __init__(self, chunks, error=None):
        self.chunks = list(chunks)
        self.error = error

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        raise StopAsyncIteration


async def collect(agen):
    return [item async for item in agen]


def client_with(create):
    """Build an LLMClient whose AsyncGroq create() is the given mock."""
    with patch('services.llm_client.AsyncGroq') as mock_groq_class:
        mock_client = Mock()
        mock_client.chat.completions.create = create
        mock_groq_class.return_value = mock_client
        return LLMClient(api_key="test_key")


class TestLLMClient:
    """Test suite for LLMClient class."""

    def test_initialization_with_api_key(self):
        """Test LLMClient initializes with provided API key."""
        client = LLMClient(api_key="test_key")
        assert client.api_key == "test_key"

    def test_initialization_without_api_key_raises_error(self):
        """Test LLMClient raises error when no API key provided."""
        with patch('services.llm_client.GROQ_API_KEY', None):
            with pytest.raises(ValueError, match="GROQ_API_KEY must be provided"):
                LLMClient()

    def test_build_messages_with_history(self):
        """Test message list: system instruction, history, new message."""
        history = [message("1", "user", "hi"), message("2", "ai", "hey!"), message("3", "ai", "  ")]
        new = message("4", "user", "draw a cat")

        messages = LLMClient.build_messages(history, new, memory_context="[personal] name: Sam")

        assert messages[0]["role"] == "system"
        assert "[personal] name: Sam" in messages[0]["content"]
        assert "[--METADATA--]" in messages[0]["content"]
        assert messages[1:] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hey!"},
            {"role": "user", "content": "draw a cat"},
        ]

    def test_build_messages_without_memory(self):
        """Test the placeholder memory context."""
        messages = LLMClient.build_messages([], message("1", "user", "hi"))

        assert "No memory context available." in messages[0]["content"]

    def test_build_messages_with_attachments(self):
        """Test image attachments become data-URL parts before the text."""
        attachments = [
            Attachment("cat.png", "image/png", b"abc"),
            Attachment("notes.pdf", "application/pdf", b"%PDF"),
        ]

        messages = LLMClient.build_messages([], message("1", "user", "what is this?"), attachments)

        parts = messages[-1]["content"]
        assert parts[0]["image_url"]["url"] == "data:image/png;base64,YWJj"
        assert parts[1] == {"type": "text", "text": "[Attached file: notes.pdf]"}
        assert parts[-1] == {"type": "text", "text": "what is this?"}

    @pytest.mark.asyncio
    async def test_stream_response_yields_fragments(self):
        """Test that content deltas are yielded in order and empty ones skipped."""
        chunks = [stream_chunk("Hel"), stream_chunk(None), Mock(choices=[]), stream_chunk("lo")]
        create = AsyncMock(return_value=FakeStream(chunks))
        client = client_with(create)

        fragments = await collect(client.stream_response(
            model="llama-3.3-70b-versatile",
            history=[],
            new_message=message("1", "user", "hi"),
        ))

        assert fragments == ["Hel", "lo"]
        assert create.await_args.kwargs["stream"] is True
        assert create.await_args.kwargs["model"] == "llama-3.3-70b-versatile"

    @pytest.mark.asyncio
    async def test_stream_error_mid_stream(self):
        """Test that an error during iteration becomes a structured error."""
        create = AsyncMock(return_value=FakeStream([stream_chunk("Hi")], error=Exception("connection reset")))
        client = client_with(create)
        fragments = []

        with pytest.raises(LLMClientError) as exc_info:
            async for fragment in client.stream_response(
                model="llama-3.3-70b-versatile", history=[], new_message=message("1", "user", "hi"),
            ):
                fragments.append(fragment)

        assert fragments == ["Hi"]
        assert exc_info.value.error.code == "UNKNOWN_ERROR"
        assert exc_info.value.error.details["error_type"] == "Exception"

    @pytest.mark.asyncio
    async def test_stream_rate_limit_error(self):
        """Test that rate limit errors are handled with retry suggestion."""
        create = AsyncMock(side_effect=RateLimitError(
            message="Rate limit exceeded",
            response=Mock(status_code=429),
            body=None
        ))
        client = client_with(create)

        with pytest.raises(LLMClientError) as exc_info:
            await collect(client.stream_response(
                model="llama-3.3-70b-versatile", history=[], new_message=message("1", "user", "hi"),
            ))

        error = exc_info.value.error
        assert error.code == "RATE_LIMIT_ERROR"
        assert "Rate limit exceeded" in error.message
        assert error.details["retry_after"] == 60
        assert error.details["model"] == "llama-3.3-70b-versatile"

    @pytest.mark.asyncio
    async def test_generate_success(self):
        """Test successful one-shot generation in JSON mode."""
        mock_response = Mock()
        mock_response.choices = [Mock(message=Mock(content='{"memories": []}'))]
        mock_response.usage = Mock(prompt_tokens=150, completion_tokens=12)
        create = AsyncMock(return_value=mock_response)
        client = client_with(create)

        response = await client.generate(model="llama-3.1-8b-instant", prompt="Extract", json_mode=True)

        assert isinstance(response, LLMResponse)
        assert response.text == '{"memories": []}'
        assert response.tokens_input == 150
        assert response.tokens_output == 12
        assert response.model_used == "llama-3.1-8b-instant"
        assert response.latency_ms >= 0
        assert create.await_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_generate_handles_authentication_error(self):
        """Test that authentication errors are handled properly."""
        create = AsyncMock(side_effect=AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        ))
        client = client_with(create)

        with pytest.raises(LLMClientError) as exc_info:
            await client.generate(model="llama-3.1-8b-instant", prompt="Test prompt")

        error = exc_info.value.error
        assert error.code == "AUTHENTICATION_ERROR"
        assert "Authentication failed" in error.message

    @pytest.mark.asyncio
    async def test_generate_handles_timeout_error(self):
        """Test that timeout errors are handled properly."""
        create = AsyncMock(side_effect=APITimeoutError(request=Mock()))
        client = client_with(create)

        with pytest.raises(LLMClientError) as exc_info:
            await client.generate(model="llama-3.1-8b-instant", prompt="Test prompt")

        assert exc_info.value.error.code == "TIMEOUT_ERROR"
        assert "timed out" in exc_info.value.error.message

    @pytest.mark.asyncio
    async def test_generate_handles_generic_api_error(self):
        """Test that generic API errors are handled properly."""
        create = AsyncMock(side_effect=APIError(
            message="Service unavailable",
            request=Mock(),
            body=None
        ))
        client = client_with(create)

        with pytest.raises(LLMClientError) as exc_info:
            await client.generate(model="llama-3.1-8b-instant", prompt="Test prompt")

        error = exc_info.value.error
        assert error.code == "API_ERROR"
        assert "Groq API error" in error.message
        assert isinstance(error.details["latency_ms"], int)

"""
Tests for Vision Model Clients
==============================

Tests for:
- Error helpers (_extract_retry_delay, _is_rate_limit_error)
- LLMConfig validation
- OpenAI-compatible client (payload, headers, bounded retries, errors)
- Groq client (vision messages, rate-limit retry, API errors)
- Gemini client (inline PNG part, error mapping)
- Factory provider selection and missing credentials
"""

import base64
import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from app.config import LLMSettings
from app.llm.factory import create_vision_model, llm_config_from_settings
from app.llm.gemini_client import GeminiVisionModel
from app.llm.groq_client import DEFAULT_GROQ_MODEL, GroqVisionModel
from app.llm.models import (
    _BACKOFF_MULTIPLIER,
    _DEFAULT_RETRY_DELAY,
    _MAX_RETRY_DELAY,
    LLMConfig,
    LLMError,
    LLMResponse,
    RateLimitError,
    _extract_retry_delay,
    _is_rate_limit_error,
    png_data_uri,
)
from app.llm.openai_client import OpenAICompatibleClient


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

API_BASE = "https://llm.example.test/v1/chat/completions"


def _make_config(**overrides) -> LLMConfig:
    """Create a valid LLMConfig for tests."""
    values = {"api_key": "sk-test-key", "model": "zai-org/GLM-4.5V"}
    values.update(overrides)
    return LLMConfig(**values)


class _FakeResponse:
    """Minimal stand-in for ``aiohttp.ClientResponse`` used as a context manager."""

    def __init__(self, status: int, body, headers=None) -> None:
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    async def text(self) -> str:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None


def _completion(content="Action: FINISH") -> dict:
    return {
        "model": "zai-org/GLM-4.5V",
        "choices": [{"message": {"content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def _http_session(*responses) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.post.side_effect = list(responses)
    session.close = AsyncMock()
    return session


def _mock_groq_response(content: str = "Action: FINISH"):
    """Create a mock Groq chat completion response."""
    usage = MagicMock()
    usage.prompt_tokens = 10
    usage.completion_tokens = 5
    usage.total_tokens = 15

    choice = MagicMock()
    choice.message.content = content
    choice.finish_reason = "stop"

    response = MagicMock()
    response.choices = [choice]
    response.usage = usage
    return response


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------


class TestErrorHelpers:
    def test_minutes_and_seconds(self):
        err = Exception("Rate limit reached. Please try again in 0m30.5s")
        assert _extract_retry_delay(err) == 30.5

    def test_capped_delay(self):
        err = Exception("Please try again in 5m0s")
        assert _extract_retry_delay(err) == _MAX_RETRY_DELAY

    def test_retry_in_format(self):
        assert _extract_retry_delay(Exception("Please retry in 12.3s")) == 12.3

    def test_plain_number_from_header(self):
        assert _extract_retry_delay("7") == 7.0

    def test_fallback_backoff(self):
        expected = _DEFAULT_RETRY_DELAY * (_BACKOFF_MULTIPLIER ** 2)
        assert _extract_retry_delay(Exception("Unknown"), attempt=3) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "message",
        ["Error 429: Too many requests", "rate_limit_exceeded", "Rate Limit Exceeded", "RESOURCE_EXHAUSTED"],
    )
    def test_is_rate_limit_error(self, message):
        assert _is_rate_limit_error(Exception(message))

    def test_is_not_rate_limit_error(self):
        assert not _is_rate_limit_error(Exception("Internal server error 500"))


class TestModels:
    def test_config_requires_key(self):
        with pytest.raises(ValueError, match="API key"):
            LLMConfig(model="m", api_key="")

    def test_config_rejects_bad_temperature(self):
        with pytest.raises(ValueError, match="Temperature"):
            _make_config(temperature=3.0)

    def test_config_rejects_negative_retries(self):
        with pytest.raises(ValueError):
            _make_config(max_retries=-1)

    def test_response_total_tokens(self):
        assert LLMResponse(content="x", model="m", usage={"total_tokens": 7}).total_tokens == 7
        assert LLMResponse(content="x", model="m").total_tokens == 0

    def test_png_data_uri(self):
        uri = png_data_uri(b"\x89PNG")
        assert uri.startswith("data:image/png;base64,")
        assert base64.b64decode(uri.split(",", 1)[1]) == b"\x89PNG"


# ---------------------------------------------------------------------------
# OpenAI-compatible client
# ---------------------------------------------------------------------------


class TestOpenAICompatibleClient:
    def test_payload_carries_text_and_image(self):
        client = OpenAICompatibleClient(_make_config(max_output_tokens=300), api_base=API_BASE)

        payload = client.build_payload("Describe", b"png-bytes")

        assert payload["model"] == "zai-org/GLM-4.5V"
        assert payload["max_tokens"] == 300
        assert payload["temperature"] == 0.0
        parts = payload["messages"][0]["content"]
        assert parts[0] == {"type": "text", "text": "Describe"}
        assert parts[1]["type"] == "image_url"
        assert parts[1]["image_url"]["url"] == png_data_uri(b"png-bytes")

    @pytest.mark.asyncio
    async def test_complete_success(self):
        session = _http_session(_FakeResponse(200, _completion("Action: tap(3)")))
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        text = await client.complete("prompt", b"png")

        assert text == "Action: tap(3)"
        args, kwargs = session.post.call_args
        assert args[0] == API_BASE
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test-key"
        assert kwargs["json"]["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_content_parts_are_joined(self):
        body = _completion([{"type": "text", "text": "Action: "}, {"type": "text", "text": "FINISH"}])
        session = _http_session(_FakeResponse(200, body))
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        assert await client.complete("p", b"") == "Action: FINISH"

    @pytest.mark.asyncio
    async def test_retries_on_429_then_succeeds(self):
        session = _http_session(
            _FakeResponse(429, "slow down", headers={"Retry-After": "2"}),
            _FakeResponse(200, _completion()),
        )
        client = OpenAICompatibleClient(_make_config(max_retries=2), api_base=API_BASE, session=session)

        with patch("app.llm.openai_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            text = await client.complete("p", b"")

        assert text == "Action: FINISH"
        assert session.post.call_count == 2
        mock_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        session = _http_session(*[_FakeResponse(429, "quota") for _ in range(3)])
        client = OpenAICompatibleClient(_make_config(max_retries=2), api_base=API_BASE, session=session)

        with patch("app.llm.openai_client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RateLimitError):
                await client.complete("p", b"")

        assert session.post.call_count == 3
        assert client.api_call_count == 3

    @pytest.mark.asyncio
    async def test_server_error_retried_then_fails(self):
        session = _http_session(_FakeResponse(503, "unavailable"), _FakeResponse(503, "unavailable"))
        client = OpenAICompatibleClient(_make_config(max_retries=1), api_base=API_BASE, session=session)

        with patch("app.llm.openai_client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(LLMError, match="API error 503"):
                await client.complete("p", b"")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        session = _http_session(_FakeResponse(400, "bad image"))
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        with pytest.raises(LLMError, match="API error 400"):
            await client.complete("p", b"")

        assert session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        session = _http_session(_FakeResponse(200, {"choices": []}))
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        with pytest.raises(LLMError, match="Malformed"):
            await client.complete("p", b"")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        session = _http_session(_FakeResponse(200, "<html>oops</html>"))
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        with pytest.raises(LLMError, match="Invalid JSON"):
            await client.complete("p", b"")

    @pytest.mark.asyncio
    async def test_external_session_is_not_closed(self):
        session = _http_session()
        client = OpenAICompatibleClient(_make_config(), api_base=API_BASE, session=session)

        await client.close()

        session.close.assert_not_awaited()


# ---------------------------------------------------------------------------
# Groq client
# ---------------------------------------------------------------------------


class TestGroqVisionModel:
    @patch("app.llm.groq_client.Groq")
    def test_init(self, mock_groq_cls):
        config = _make_config(model=DEFAULT_GROQ_MODEL)
        client = GroqVisionModel(config)

        assert client.api_call_count == 0
        mock_groq_cls.assert_called_once_with(api_key="sk-test-key", timeout=60.0)

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_complete_sends_image(self, mock_groq_cls):
        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client
        mock_client.chat.completions.create.return_value = _mock_groq_response("Action: tap(1)")

        text = await GroqVisionModel(_make_config()).complete("prompt", b"png")

        assert text == "Action: tap(1)"
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        parts = kwargs["messages"][0]["content"]
        assert parts[0]["text"] == "prompt"
        assert parts[1]["image_url"]["url"] == png_data_uri(b"png")
        assert kwargs["stream"] is False

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_rate_limit_retry(self, mock_groq_cls):
        from groq import RateLimitError as GroqRateLimit

        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client
        rate_err = GroqRateLimit(
            message="Rate limit reached. Please try again in 5.0s",
            response=MagicMock(status_code=429),
            body=None,
        )
        mock_client.chat.completions.create.side_effect = [rate_err, _mock_groq_response("OK")]

        client = GroqVisionModel(_make_config())
        with patch("app.llm.groq_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            text = await client.complete("p", b"")

        assert text == "OK"
        assert client.api_call_count == 2
        mock_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_rate_limit_exhausted(self, mock_groq_cls):
        from groq import RateLimitError as GroqRateLimit

        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client
        mock_client.chat.completions.create.side_effect = GroqRateLimit(
            message="Rate limit",
            response=MagicMock(status_code=429),
            body=None,
        )

        client = GroqVisionModel(_make_config(max_retries=1))
        with patch("app.llm.groq_client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RateLimitError):
                await client.complete("p", b"")

        assert client.api_call_count == 2

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_api_status_error(self, mock_groq_cls):
        from groq import APIStatusError

        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client
        mock_client.chat.completions.create.side_effect = APIStatusError(
            message="Bad request",
            response=MagicMock(status_code=400),
            body=None,
        )

        with pytest.raises(LLMError, match="API error"):
            await GroqVisionModel(_make_config()).complete("p", b"")

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_connection_error(self, mock_groq_cls):
        from groq import APIConnectionError

        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client
        mock_client.chat.completions.create.side_effect = APIConnectionError(request=MagicMock())

        with pytest.raises(LLMError, match="Connection error"):
            await GroqVisionModel(_make_config()).complete("p", b"")

    @pytest.mark.asyncio
    @patch("app.llm.groq_client.Groq")
    async def test_close(self, mock_groq_cls):
        mock_client = MagicMock()
        mock_groq_cls.return_value = mock_client

        await GroqVisionModel(_make_config()).close()

        mock_client.close.assert_called_once()


# ---------------------------------------------------------------------------
# Gemini client
# ---------------------------------------------------------------------------


class TestGeminiVisionModel:
    @pytest.mark.asyncio
    @patch("app.llm.gemini_client.genai")
    async def test_complete(self, mock_genai):
        mock_client = MagicMock()
        mock_genai.Client.return_value = mock_client
        mock_client.models.generate_content.return_value = MagicMock(text="Action: FINISH")

        client = GeminiVisionModel(_make_config(model="gemini-2.5-flash"))
        text = await client.complete("prompt", b"png")

        assert text == "Action: FINISH"
        mock_genai.Client.assert_called_once_with(api_key="sk-test-key")
        kwargs = mock_client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert len(kwargs["contents"]) == 2

    @pytest.mark.asyncio
    @patch("app.llm.gemini_client.genai")
    async def test_unexpected_error(self, mock_genai):
        mock_client = MagicMock()
        mock_genai.Client.return_value = mock_client
        mock_client.models.generate_content.side_effect = RuntimeError("socket closed")

        with pytest.raises(LLMError, match="socket closed"):
            await GeminiVisionModel(_make_config()).complete("p", b"")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    def test_openai_provider(self):
        settings = LLMSettings(llm_provider="openai", llm_api_key="sk-abc", llm_api_base=API_BASE)

        client = create_vision_model(settings)

        assert isinstance(client, OpenAICompatibleClient)
        assert client.api_base == API_BASE
        assert client.config.api_key == "sk-abc"

    @patch("app.llm.groq_client.Groq")
    def test_groq_provider(self, mock_groq_cls):
        settings = LLMSettings(llm_provider="groq", groq_api_key="gsk_abc")

        client = create_vision_model(settings)

        assert isinstance(client, GroqVisionModel)
        assert client.config.model == settings.groq_model

    @patch("app.llm.gemini_client.genai")
    def test_gemini_provider(self, mock_genai):
        settings = LLMSettings(llm_provider="gemini", gemini_api_key="g-abc")
        assert isinstance(create_vision_model(settings), GeminiVisionModel)

    def test_missing_key_raises(self):
        settings = LLMSettings(llm_provider="openai", llm_api_key="")
        with pytest.raises(ValueError, match="API key"):
            create_vision_model(settings)

    def test_config_from_settings(self):
        settings = LLMSettings(
            llm_provider="openai",
            llm_api_key="sk-abc",
            llm_model="custom-vl",
            llm_max_tokens=512,
            llm_max_retries=4,
        )

        config = llm_config_from_settings(settings)

        assert config.model == "custom-vl"
        assert config.max_output_tokens == 512
        assert config.max_retries == 4

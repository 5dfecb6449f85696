"""
Groq Vision Client
==================

Vision model client backed by the official ``groq`` SDK (OpenAI-compatible
chat completions). The blocking SDK call runs in a worker thread.

Vision input: the PNG screenshot goes inline as an ``image_url`` part with a
data-URI, exactly like the OpenAI-compatible client.

Usage:
    from app.llm.groq_client import GroqVisionModel
    from app.llm.models import LLMConfig

    client = GroqVisionModel(LLMConfig(api_key="gsk_...", model=DEFAULT_GROQ_MODEL))
    reply = await client.complete(prompt, png_bytes)
"""

import asyncio

from groq import (
    APIConnectionError as GroqAPIConnectionError,
    APIStatusError as GroqAPIStatusError,
    Groq,
    RateLimitError as GroqRateLimitError,
)

from app.device.interfaces import VisionLanguageModel
from app.llm.models import (
    LLMConfig,
    LLMError,
    LLMResponse,
    RateLimitError,
    _extract_retry_delay,
    _is_rate_limit_error,
    png_data_uri,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_GROQ_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"


class GroqVisionModel(VisionLanguageModel):
    """
    Async wrapper around the Groq SDK.

    Rate-limit answers are retried at most ``config.max_retries`` times.
    """

    def __init__(self, config: LLMConfig) -> None:
        """
        Initialize the Groq client.

        Args:
            config: LLM configuration with API credentials.
        """
        self.config = config
        self._client = Groq(api_key=config.api_key, timeout=config.timeout)
        self.api_call_count = 0

        logger.info("Groq vision client initialized", model=config.model)

    def _build_messages(self, prompt: str, image_png: bytes) -> list[dict]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": png_data_uri(image_png)}},
                ],
            }
        ]

    async def _call_api(self, messages: list[dict]) -> LLMResponse:
        """Execute a Groq chat completion with bounded rate-limit retries.

        Raises:
            RateLimitError: After exhausting the retries on 429.
            LLMError: On any other API or network error.
        """
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.api_call_count += 1
                response = await asyncio.to_thread(
                    self._client.chat.completions.create,
                    model=self.config.model,
                    messages=messages,
                    max_tokens=self.config.max_output_tokens,
                    temperature=self.config.temperature,
                    stream=False,
                )

                text_content = ""
                finish_reason = None
                if response.choices:
                    text_content = response.choices[0].message.content or ""
                    finish_reason = response.choices[0].finish_reason

                usage = {}
                if response.usage:
                    usage = {
                        "prompt_tokens": response.usage.prompt_tokens or 0,
                        "completion_tokens": response.usage.completion_tokens or 0,
                        "total_tokens": response.usage.total_tokens or 0,
                    }

                return LLMResponse(
                    content=text_content,
                    model=self.config.model,
                    usage=usage,
                    finish_reason=finish_reason,
                )

            except GroqRateLimitError as e:
                delay = _extract_retry_delay(e, attempt)
                logger.warning(
                    "Rate limited by Groq API",
                    attempt=attempt,
                    max_attempts=attempts,
                    retry_after_seconds=round(delay, 1),
                )
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    continue
                raise RateLimitError(str(e), retry_after=delay) from e

            except GroqAPIStatusError as e:
                if _is_rate_limit_error(e) and attempt < attempts:
                    delay = _extract_retry_delay(e, attempt)
                    logger.warning(
                        "Rate limited by Groq API (status error)",
                        attempt=attempt,
                        status_code=e.status_code,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("Groq API error", error=str(e), status_code=e.status_code)
                raise LLMError(f"API error: {e}") from e

            except GroqAPIConnectionError as e:
                logger.error("Groq API connection error", error=str(e))
                raise LLMError(f"Connection error: {e}") from e

            except Exception as e:
                logger.error("Unexpected error during Groq API call", error=str(e))
                raise LLMError(f"Unexpected error: {e}") from e

        raise LLMError(f"Failed after {attempts} attempts")

    async def complete(self, prompt: str, image_png: bytes) -> str:
        """
        Ask the model about a screenshot.

        Raises:
            LLMError: On API or network errors.
        """
        response = await self._call_api(self._build_messages(prompt, image_png))
        logger.debug("Groq completion successful", tokens=response.total_tokens)
        return response.content

    async def close(self) -> None:
        """Close the client and release resources."""
        self._client.close()
        logger.debug("Groq vision client closed")

"""
Gemini Vision Client
====================

Vision model client backed by the official google-genai SDK. The screenshot
is sent as an inline PNG part followed by the text prompt.

Usage:
    from app.llm.gemini_client import GeminiVisionModel
    from app.llm.models import LLMConfig

    client = GeminiVisionModel(LLMConfig(api_key="...", model="gemini-2.5-flash"))
    reply = await client.complete(prompt, png_bytes)
"""

import asyncio

from google import genai
from google.genai import types
from google.genai.errors import APIError

from app.device.interfaces import VisionLanguageModel
from app.llm.models import (
    LLMConfig,
    LLMError,
    RateLimitError,
    _extract_retry_delay,
    _is_rate_limit_error,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)


class GeminiVisionModel(VisionLanguageModel):
    """Async wrapper around ``genai.Client.models.generate_content``."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config
        self._client = genai.Client(api_key=config.api_key)
        self.api_call_count = 0

        logger.info("Gemini vision client initialized", model=config.model)

    def _generation_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            max_output_tokens=self.config.max_output_tokens,
            temperature=self.config.temperature,
        )

    @staticmethod
    def _response_text(response) -> str:
        if response.text:
            return response.text
        text = ""
        if response.candidates and response.candidates[0].content.parts:
            for part in response.candidates[0].content.parts:
                if getattr(part, "text", None):
                    text += part.text
        return text

    async def complete(self, prompt: str, image_png: bytes) -> str:
        """
        Ask Gemini about a screenshot.

        Raises:
            RateLimitError: Still rate limited after the last retry.
            LLMError: On any other API error.
        """
        contents = [
            types.Part.from_bytes(data=image_png, mime_type="image/png"),
            types.Part.from_text(text=prompt),
        ]

        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.api_call_count += 1
                response = await asyncio.to_thread(
                    self._client.models.generate_content,
                    model=self.config.model,
                    contents=contents,
                    config=self._generation_config(),
                )
                return self._response_text(response)

            except APIError as e:
                if _is_rate_limit_error(e):
                    delay = _extract_retry_delay(e, attempt)
                    logger.warning(
                        "Rate limited by Gemini API",
                        attempt=attempt,
                        max_attempts=attempts,
                        retry_after_seconds=round(delay, 1),
                    )
                    if attempt < attempts:
                        await asyncio.sleep(delay)
                        continue
                    raise RateLimitError(str(e), retry_after=delay) from e
                logger.error("Gemini API error", error=str(e))
                raise LLMError(f"API error: {e}") from e
            except Exception as e:
                logger.error("Unexpected error during Gemini call", error=str(e))
                raise LLMError(f"Unexpected error: {e}") from e

        raise LLMError(f"Failed after {attempts} attempts")

"""
OpenAI-Compatible Vision Client
===============================

Vision model client for any endpoint speaking the OpenAI chat completions
format (SiliconFlow, vLLM, OpenRouter, ...).

The screenshot travels inline as a ``data:image/png;base64,...`` image_url
part next to the text prompt. Authentication is a bearer token.

Usage:
    from app.llm.models import LLMConfig
    from app.llm.openai_client import OpenAICompatibleClient

    client = OpenAICompatibleClient(
        LLMConfig(api_key="sk-...", model="zai-org/GLM-4.5V"),
        api_base="https://api.siliconflow.cn/v1/chat/completions",
    )
    reply = await client.complete(prompt, png_bytes)
    await client.close()
"""

import asyncio
import json
from typing import Any, Optional

import aiohttp

from app.config import DEFAULT_API_BASE
from app.device.interfaces import VisionLanguageModel
from app.llm.models import (
    LLMConfig,
    LLMError,
    LLMResponse,
    RateLimitError,
    _extract_retry_delay,
    png_data_uri,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Statuses worth another attempt
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OpenAICompatibleClient(VisionLanguageModel):
    """
    Async client for OpenAI-style ``/chat/completions`` endpoints.

    Retries only on 429 and transient 5xx answers, at most
    ``config.max_retries`` times. Everything else fails fast with LLMError.
    """

    def __init__(
        self,
        config: LLMConfig,
        api_base: str = DEFAULT_API_BASE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Model, credentials and sampling settings.
            api_base: Full chat completions URL.
            session: Optional externally owned aiohttp session.
        """
        self.config = config
        self.api_base = api_base
        self._http_session = session
        self._owns_session = session is None
        self.api_call_count = 0

        logger.info("OpenAI-compatible client initialized", model=config.model, api_base=api_base)

    async def _get_http_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
            self._owns_session = True
        return self._http_session

    def build_payload(self, prompt: str, image_png: bytes) -> dict[str, Any]:
        """Build the JSON request body."""
        return {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": png_data_uri(image_png)}},
                    ],
                }
            ],
            "max_tokens": self.config.max_output_tokens,
            "temperature": self.config.temperature,
        }

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST the payload, retrying on rate limits and transient errors.

        Raises:
            RateLimitError: Still rate limited after the last retry.
            LLMError: Any other transport or API failure.
        """
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            self.api_call_count += 1
            try:
                session = await self._get_http_session()
                async with session.post(self.api_base, json=payload, headers=self._headers()) as resp:
                    body = await resp.text()
                    status = resp.status

                    if status in _RETRYABLE_STATUS:
                        delay = _extract_retry_delay(
                            resp.headers.get("Retry-After") or body, attempt
                        )
                        logger.warning(
                            "Model endpoint asked to retry",
                            status_code=status,
                            attempt=attempt,
                            max_attempts=attempts,
                            retry_after_seconds=round(delay, 1),
                        )
                        if attempt < attempts:
                            await asyncio.sleep(delay)
                            continue
                        if status == 429:
                            raise RateLimitError(f"Rate limited: {body[:200]}", retry_after=delay)
                        raise LLMError(f"API error {status}: {body[:200]}")

                    if status >= 400:
                        logger.error("Model API error", status_code=status, body=body[:200])
                        raise LLMError(f"API error {status}: {body[:200]}")

                    try:
                        return json.loads(body)
                    except json.JSONDecodeError as e:
                        raise LLMError(f"Invalid JSON from model endpoint: {e}") from e

            except LLMError:
                raise
            except asyncio.TimeoutError as e:
                logger.error("Model request timed out", timeout=self.config.timeout)
                raise LLMError(f"Request timed out after {self.config.timeout}s") from e
            except aiohttp.ClientError as e:
                logger.error("Model connection error", error=str(e))
                raise LLMError(f"Connection error: {e}") from e

        raise LLMError(f"Failed after {attempts} attempts")

    @staticmethod
    def _parse_response(data: dict[str, Any], model: str) -> LLMResponse:
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed completion response: {e}") from e

        # Some providers return a list of content parts
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )

        return LLMResponse(
            content=content or "",
            model=data.get("model", model),
            usage=data.get("usage") or {},
            finish_reason=choice.get("finish_reason"),
        )

    async def complete(self, prompt: str, image_png: bytes) -> str:
        """
        Send the prompt and screenshot, return the reply text.

        Raises:
            LLMError: On transport, API or format errors.
        """
        data = await self._post(self.build_payload(prompt, image_png))
        response = self._parse_response(data, self.config.model)

        logger.debug(
            "Vision completion successful",
            model=response.model,
            tokens=response.total_tokens,
            finish_reason=response.finish_reason,
        )
        return response.content

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._http_session and not self._http_session.closed:
            await self._http_session.close()
        logger.debug("OpenAI-compatible client closed")

"""
LLM Model Configuration
=======================

Data classes and errors shared by the vision model clients.
"""

import base64
import re
from dataclasses import dataclass, field
from typing import Optional

# Rate-limit defaults
_DEFAULT_RETRY_DELAY = 5.0  # seconds
_MAX_RETRY_DELAY = 60.0
_BACKOFF_MULTIPLIER = 2.0


class LLMError(Exception):
    """Exception raised for LLM-related errors."""

    pass


class RateLimitError(LLMError):
    """Raised when the API keeps answering 429 after the allowed retries."""

    def __init__(self, message: str, retry_after: float = _DEFAULT_RETRY_DELAY):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class LLMConfig:
    """
    Configuration for a vision model client.

    Attributes:
        model: Model identifier string.
        api_key: API key / bearer token.
        max_output_tokens: Maximum tokens in the response.
        temperature: Sampling temperature (0.0-2.0).
        timeout: Request timeout in seconds.
        max_retries: Retries on rate-limit / transient server errors.
    """

    model: str
    api_key: str = ""
    max_output_tokens: int = 300
    temperature: float = 0.0
    timeout: float = 60.0
    max_retries: int = 2

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.api_key:
            raise ValueError("API key is required")
        if self.temperature < 0 or self.temperature > 2:
            raise ValueError("Temperature must be between 0 and 2")
        if self.max_output_tokens < 1:
            raise ValueError("max_output_tokens must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")


@dataclass
class LLMResponse:
    """
    Response from a model API.

    Attributes:
        content: The generated text content.
        model: The model that generated the response.
        usage: Token usage statistics.
        finish_reason: Why generation stopped.
    """

    content: str
    model: str
    usage: dict = field(default_factory=dict)
    finish_reason: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


def png_data_uri(image_png: bytes) -> str:
    """Encode PNG bytes as a ``data:image/png;base64,...`` URI."""
    return "data:image/png;base64," + base64.b64encode(image_png).decode("utf-8")


def _extract_retry_delay(error: object, attempt: int = 1) -> float:
    """Extract a retry delay from an error message or Retry-After value.

    Understands "try again in 1m0.5s", "retry in 27.5s" and plain numbers.
    Falls back to exponential backoff, capped at ``_MAX_RETRY_DELAY``.
    """
    text = str(error)
    match = re.search(r"try again in\s+(?:(\d+)m)?([\d.]+)s", text, re.IGNORECASE)
    if match:
        minutes = int(match.group(1)) if match.group(1) else 0
        return min(minutes * 60 + float(match.group(2)), _MAX_RETRY_DELAY)
    match = re.search(r"retry in ([\d.]+)s", text, re.IGNORECASE)
    if match:
        return min(float(match.group(1)), _MAX_RETRY_DELAY)
    if re.fullmatch(r"\s*[\d.]+\s*", text):
        return min(float(text), _MAX_RETRY_DELAY)
    return min(_DEFAULT_RETRY_DELAY * (_BACKOFF_MULTIPLIER ** (attempt - 1)), _MAX_RETRY_DELAY)


def _is_rate_limit_error(error: Exception) -> bool:
    """Return True if the error looks like a 429 / quota error."""
    text = str(error).lower()
    return (
        "429" in text
        or "rate_limit" in text
        or "rate limit" in text
        or "resource_exhausted" in text
    )

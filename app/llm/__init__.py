"""
LLM Integration Module
======================

Vision model clients used by the decision step.

This package contains:
    - openai_client: OpenAI-compatible endpoint over aiohttp (default)
    - groq_client: Groq SDK client
    - gemini_client: google-genai client
    - models: Shared configuration, responses and errors
    - factory: Build the configured client from settings
"""

from app.llm.factory import create_vision_model, llm_config_from_settings
from app.llm.models import LLMConfig, LLMError, LLMResponse, RateLimitError, png_data_uri

__all__ = [
    "create_vision_model",
    "llm_config_from_settings",
    "LLMConfig",
    "LLMError",
    "LLMResponse",
    "RateLimitError",
    "png_data_uri",
]

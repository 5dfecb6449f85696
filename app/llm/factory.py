"""
Vision Model Factory
====================

Builds the configured VisionLanguageModel from settings.
"""

from app.config import LLMSettings
from app.device.interfaces import VisionLanguageModel
from app.llm.models import LLMConfig
from app.utils.logger import get_logger

logger = get_logger(__name__)


def llm_config_from_settings(settings: LLMSettings) -> LLMConfig:
    """
    Build an LLMConfig for the selected provider.

    Raises:
        ValueError: If the provider has no API key configured.
    """
    return LLMConfig(
        model=settings.get_active_model(),
        api_key=settings.get_active_api_key(),
        max_output_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
    )


def create_vision_model(settings: LLMSettings) -> VisionLanguageModel:
    """
    Create the vision model client for ``settings.llm_provider``.

    Args:
        settings: LLM settings section.

    Returns:
        A ready VisionLanguageModel.

    Raises:
        ValueError: On missing credentials or an unknown provider.
    """
    config = llm_config_from_settings(settings)
    provider = settings.llm_provider

    if provider == "openai":
        from app.llm.openai_client import OpenAICompatibleClient

        client: VisionLanguageModel = OpenAICompatibleClient(config, api_base=settings.llm_api_base)
    elif provider == "groq":
        from app.llm.groq_client import GroqVisionModel

        client = GroqVisionModel(config)
    elif provider == "gemini":
        from app.llm.gemini_client import GeminiVisionModel

        client = GeminiVisionModel(config)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")

    logger.info("Vision model created", provider=provider, model=config.model)
    return client

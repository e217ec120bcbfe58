"""
Narrative Service provider factory
"""

from typing import Dict, Optional, Type

from ..config import Settings, settings
from ..utils.logger import get_logger
from .base import BaseProvider
from .generic import GenericProvider
from .openai import OpenAIProvider

logger = get_logger(__name__)

PROVIDERS: Dict[str, Type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "generic": GenericProvider,
}


def create_provider(config: Optional[Settings] = None) -> BaseProvider:
    """Build the configured Narrative Service provider (``settings`` when no config is given)."""
    config = config or settings
    provider_cls = PROVIDERS.get(config.model_provider)
    if provider_cls is None:
        raise ValueError(f"Unsupported provider: {config.model_provider}")

    logger.info(f"Creating {config.model_provider} provider for model {config.model_name}")
    return provider_cls(
        api_base=config.openai_api_base,
        api_key=config.openai_api_key,
        model_name=config.model_name,
        temperature=config.temperature,
    )

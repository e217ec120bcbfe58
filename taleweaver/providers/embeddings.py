"""
Embedding provider factory for semantic memory retrieval.

The provider is chosen by ``embedding_provider`` and falls back to
``model_provider``. Returning None disables vectors entirely; retrieval then
runs on the lexical fallback.
"""

from typing import Optional

from langchain_community.embeddings import OllamaEmbeddings
from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings
from pydantic import SecretStr

from taleweaver.config import settings
from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

OLLAMA_DEFAULT_MODEL = "nomic-embed-text"


def create_embedding_provider() -> Optional[Embeddings]:
    """
    Create an embedding provider based on configuration.

    Returns:
        Embeddings instance or None if embeddings are disabled/unavailable
    """
    provider = settings.embedding_provider or settings.model_provider

    if provider == "none":
        logger.info("Embedding provider explicitly disabled (set to 'none')")
        return None

    logger.info(f"Creating embedding provider: {provider}")

    try:
        if provider in ("openai", "generic"):
            return _create_openai_embeddings()
        elif provider == "ollama":
            return _create_ollama_embeddings()
        else:
            logger.warning(f"Unknown embedding provider: {provider}")
            return None
    except Exception as e:
        logger.error(f"Failed to create embedding provider '{provider}': {e}")
        return None


def _create_openai_embeddings() -> Optional[Embeddings]:
    if not settings.openai_api_key:
        logger.warning("OpenAI API key not configured, embeddings disabled")
        return None

    api_base = settings.embedding_api_base or settings.openai_api_base
    embeddings = OpenAIEmbeddings(
        model=settings.embedding_model_name,
        api_key=SecretStr(settings.openai_api_key),
        base_url=api_base,
        max_retries=0,
    )
    logger.info(f"Initialized OpenAI embeddings: {settings.embedding_model_name}")
    return embeddings


def _create_ollama_embeddings() -> Optional[Embeddings]:
    api_base = settings.embedding_api_base or settings.openai_api_base
    # Ollama's native API lives at the root, not under /v1
    if api_base.endswith("/v1"):
        api_base = api_base[:-3]

    model_name = settings.embedding_model_name
    if model_name == "text-embedding-3-small":
        model_name = OLLAMA_DEFAULT_MODEL
        logger.info(f"Using Ollama default embedding model: {model_name}")

    embeddings = OllamaEmbeddings(model=model_name, base_url=api_base)
    logger.info(f"Initialized Ollama embeddings: {model_name} at {api_base}")
    return embeddings

"""
Narrative and embedding service providers
"""

from .base import BaseProvider, ProviderResponse
from .embeddings import create_embedding_provider
from .factory import create_provider
from .generic import GenericProvider
from .openai import OpenAIProvider

__all__ = [
    "BaseProvider",
    "ProviderResponse",
    "OpenAIProvider",
    "GenericProvider",
    "create_provider",
    "create_embedding_provider",
]

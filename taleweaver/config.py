"""
Configuration management for the Taleweaver turn engine
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Narrative Service Configuration
    model_provider: Literal["openai", "generic"] = Field(default="openai")
    openai_api_base: str = Field(default="https://api.openai.com/v1")
    openai_api_key: str = Field(default="")
    model_name: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.8)

    # Embedding Service Configuration (for semantic memory retrieval)
    # Options: "openai", "ollama", "none"
    # If not set, defaults to match model_provider
    embedding_provider: Optional[Literal["openai", "ollama", "none"]] = Field(
        default=None
    )
    embedding_model_name: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name (e.g., 'nomic-embed-text' for Ollama, 'text-embedding-3-small' for OpenAI)",
    )
    embedding_api_base: Optional[str] = Field(
        default=None,
        description="Embedding API base URL (defaults to openai_api_base if not set)",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "VERBOSE", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO"
    )
    log_file: Optional[str] = Field(default=None)

    # Narrator retry policy
    narrator_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(
        default=1.0, description="Seconds; doubled on every retry"
    )
    retry_max_jitter: float = Field(default=0.5)

    # Pipeline tuning
    history_window: int = Field(default=4)
    memory_cap: int = Field(default=20)
    semantic_threshold: float = Field(default=0.4)
    indexer_quiet_period: float = Field(
        default=10.0, description="Seconds to wait after load before indexing"
    )
    background_max_attempts: int = Field(default=2)
    story_log_limit: int = Field(
        default=40, description="Past days are summarized once the story log grows beyond this"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()

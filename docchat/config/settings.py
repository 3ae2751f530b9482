"""
Application settings and configuration management.

This module defines the application settings using Pydantic Settings for type-safe
configuration management with environment variable support.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================================
    # API KEYS
    # ============================================================================

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for embedding and completion providers"
    )

    # ============================================================================
    # STORAGE CONFIGURATION
    # ============================================================================

    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for all persisted state"
    )

    vectorstores_path: Optional[Path] = Field(
        default=None,
        description="Directory holding vector store generations (defaults to <data_dir>/vectorstores)"
    )

    chat_histories_path: Optional[Path] = Field(
        default=None,
        description="Directory holding chat session files (defaults to <data_dir>/chat-histories)"
    )

    user_docs_path: Optional[Path] = Field(
        default=None,
        description="Directory holding raw user uploads (defaults to <data_dir>/user-docs)"
    )

    # ============================================================================
    # MODEL CONFIGURATION
    # ============================================================================

    embedding_provider: str = Field(
        default="openai",
        description="Embedding provider (openai or sentence_transformers)"
    )

    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name"
    )

    llm_model: str = Field(
        default="gpt-4-turbo",
        description="Chat completion model used to answer questions"
    )

    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for answers"
    )

    llm_max_tokens: int = Field(
        default=1500,
        ge=16,
        le=32000,
        description="Maximum tokens for a generated answer"
    )

    available_llm_models: List[str] = Field(
        default=["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"],
        description="Chat models a request may select instead of llm_model"
    )

    # ============================================================================
    # PROCESSING CONFIGURATION
    # ============================================================================

    chunk_size: int = Field(
        default=1000,
        ge=50,
        le=8000,
        description="Target chunk size in characters"
    )

    chunk_overlap: int = Field(
        default=200,
        ge=0,
        le=2000,
        description="Overlap between consecutive chunks in characters"
    )

    embedding_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per embedding call before giving up"
    )

    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds"
    )

    retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for a single backoff delay in seconds"
    )

    embedding_concurrency: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum concurrent embedding requests per document"
    )

    # ============================================================================
    # REGISTRY CONFIGURATION
    # ============================================================================

    max_resident_stores: int = Field(
        default=32,
        ge=1,
        le=10000,
        description="Maximum number of loaded indexes kept in memory"
    )

    retrieval_k: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Number of chunks retrieved per question"
    )

    combined_store_name: str = Field(
        default="combined",
        description="Name of the combined store within a scope"
    )

    fanout_individual: bool = Field(
        default=True,
        description="Write each document into its own store"
    )

    fanout_owner_combined: bool = Field(
        default=True,
        description="Write each document into the owner's combined store"
    )

    fanout_system_combined: bool = Field(
        default=False,
        description="Also write user documents into the system combined store"
    )

    # ============================================================================
    # TIMEOUTS & LIMITS
    # ============================================================================

    provider_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single provider call in seconds"
    )

    request_timeout: float = Field(
        default=300.0,
        ge=1,
        le=3600,
        description="Overall deadline for an API request in seconds"
    )

    max_upload_chars: int = Field(
        default=10_000_000,
        ge=1,
        description="Maximum size of uploaded text content"
    )

    allowed_extensions: List[str] = Field(
        default=[".txt", ".md"],
        description="File extensions accepted as plain text"
    )

    # ============================================================================
    # SERVER CONFIGURATION
    # ============================================================================

    host: str = Field(
        default="0.0.0.0",
        description="Server host address"
    )

    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    allowed_origins: List[str] = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    api_prefix: str = Field(
        default="/api",
        description="API route prefix"
    )

    # ============================================================================
    # LOGGING CONFIGURATION
    # ============================================================================

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)"
    )

    log_file: Optional[str] = Field(
        default=None,
        description="Log file path (optional)"
    )

    # ============================================================================
    # DEVELOPMENT SETTINGS
    # ============================================================================

    environment: str = Field(
        default="development",
        description="Environment (development, staging, production)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # ============================================================================
    # COMPUTED PROPERTIES
    # ============================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def vectorstores_dir(self) -> Path:
        """Directory where vector stores are persisted."""
        return self.vectorstores_path or self.data_dir / "vectorstores"

    @property
    def chat_histories_dir(self) -> Path:
        """Directory where chat sessions are persisted."""
        return self.chat_histories_path or self.data_dir / "chat-histories"

    @property
    def user_docs_dir(self) -> Path:
        """Directory where raw user uploads are persisted."""
        return self.user_docs_path or self.data_dir / "user-docs"

    # ============================================================================
    # VALIDATORS
    # ============================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format."""
        valid_formats = ["json", "text"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of: {valid_envs}")
        return v.lower()

    @field_validator("embedding_provider")
    @classmethod
    def validate_embedding_provider(cls, v):
        """Validate embedding provider."""
        valid_providers = ["openai", "sentence_transformers"]
        if v.lower() not in valid_providers:
            raise ValueError(f"Embedding provider must be one of: {valid_providers}")
        return v.lower()

    @field_validator("allowed_origins", "allowed_extensions", "available_llm_models", mode="before")
    @classmethod
    def validate_lists(cls, v):
        """Parse comma-separated strings into lists."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def validate_chunk_overlap(self):
        """Overlap must leave room for new content in every chunk."""
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance for dependency injection."""
    return settings

"""Configuration management for TaxSmart."""
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = [
    "https://vedant4557-dev.github.io",
    "http://localhost:3000",
    "http://127.0.0.1:5500",
]


class Settings(BaseSettings):
    """Centralized configuration for the TaxSmart API."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    gemini_api_key: str = Field(default="", description="Gemini API key for document processing")
    use_vertex_ai: bool = Field(default=False, description="Use Vertex AI instead of standard Gemini API")
    google_cloud_project: str = Field(default="not-set", description="Google Cloud project for Vertex AI")
    google_cloud_location: str = Field(default="not-set", description="Google Cloud location for Vertex AI")

    # Model Configuration
    extraction_model: str = Field(default="gemini-2.5-flash", description="Model for data extraction")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0, description="Sampling temperature")
    max_output_tokens: int = Field(default=2000, gt=0, description="Response token cap")
    max_extraction_pages: int | None = Field(default=None, gt=0, description="Page limit per document; unset sends every page")
    extraction_timeout_seconds: float = Field(default=120.0, gt=0, description="Per-call API timeout")

    # Processing Configuration
    quota_limit: int = Field(default=10, gt=0, description="API concurrency limit across requests")
    max_upload_size_mb: float = Field(default=15.0, gt=0, description="Maximum size of each uploaded PDF")

    # Retry Configuration (caller-side; 1 means a single attempt)
    retry_max_attempts: int = Field(default=1, ge=1, description="Attempts per document extraction")
    retry_base_delay: float = Field(default=2.0, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=10.0, description="Maximum delay between retries")
    retry_jitter_range: float = Field(default=3.0, description="Jitter range for retry delays")

    # Rate Limiting Configuration
    rate_limit_max_requests: int = Field(default=10, gt=0, description="Extractions per client per window")
    rate_limit_window_seconds: int = Field(default=3600, gt=0, description="Rate limit window length")
    rate_limit_max_clients: int = Field(default=10000, gt=0, description="Clients tracked before eviction")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="Bind port")
    cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    # Debug Configuration
    debug_responses: bool = Field(default=False, description="Log raw model responses")

    # File Paths
    logs_directory: Path | None = Field(default=None, description="Directory for the log file")

    @field_validator("gemini_api_key")
    @classmethod
    def strip_api_key(cls, v):
        """Whitespace-only keys count as unset."""
        return v.strip() if v else ""

    @field_validator("use_vertex_ai", mode="before")
    @classmethod
    def parse_vertex_ai_flag(cls, v):
        """Parse vertex AI flag from string."""
        if isinstance(v, str):
            return v.lower() == "true"
        return v

    @field_validator("debug_responses", mode="before")
    @classmethod
    def parse_debug_flag(cls, v):
        """Parse debug flag from string."""
        if isinstance(v, str):
            return v == "1" or v.lower() == "true"
        return v

    @property
    def is_backend_configured(self) -> bool:
        """Whether extraction requests can be served."""
        return self.use_vertex_ai or bool(self.gemini_api_key)

    @property
    def max_upload_size_bytes(self) -> int:
        return int(self.max_upload_size_mb * 1024 * 1024)

    @property
    def api_client_kwargs(self) -> dict:
        """Get API client configuration."""
        if self.use_vertex_ai:
            return {
                "vertexai": True,
                "project": self.google_cloud_project,
                "location": self.google_cloud_location,
            }
        return {"api_key": self.gemini_api_key}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

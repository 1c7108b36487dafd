"""Configuration management for cim-extract."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cim_extract.payload.presets import (
    DEFAULT_MAX_PAGES,
    DEFAULT_QUALITY_PRESETS,
    HARD_TRANSPORT_LIMIT,
    SAFE_LIMIT,
    VISION_ACCEPTABLE_LIMIT,
    WARNING_LIMIT,
    QualityPreset,
)

# Load environment variables from .env file
load_dotenv()

ProviderName = Literal["openai", "claude", "grok"]


class OpenAISettings(BaseSettings):
    """OpenAI chat completions settings."""

    api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")


class AnthropicSettings(BaseSettings):
    """Anthropic Messages API settings."""

    api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    base_url: str = Field(default="https://api.anthropic.com/v1", alias="ANTHROPIC_BASE_URL")
    model: str = Field(default="claude-3-5-sonnet-20241022", alias="ANTHROPIC_MODEL")
    api_version: str = Field(default="2023-06-01", alias="ANTHROPIC_VERSION")


class GrokSettings(BaseSettings):
    """xAI Grok settings (OpenAI-compatible endpoint)."""

    api_key: Optional[str] = Field(default=None, alias="XAI_API_KEY")
    base_url: str = Field(default="https://api.x.ai/v1", alias="XAI_BASE_URL")
    model: str = Field(default="grok-2-vision-latest", alias="XAI_MODEL")


class AWSSettings(BaseSettings):
    """AWS credentials for Textract."""

    region: str = Field(default="us-east-1", alias="AWS_REGION")
    access_key_id: Optional[str] = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    secret_access_key: Optional[str] = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    textract_timeout_seconds: float = Field(default=30.0, alias="TEXTRACT_TIMEOUT_SECONDS")

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


class BreakerSettings(BaseModel):
    """Circuit breaker thresholds (uses nested delimiter, e.g. VISION_BREAKER__TIMEOUT_SECONDS)."""

    failure_threshold: int = 3
    timeout_seconds: float = 30.0
    retry_timeout_seconds: float = 60.0


class RetrySettings(BaseModel):
    """Last-resort exponential backoff settings."""

    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    max_retries: int = 2
    factor: float = 2.0


class PayloadSettings(BaseModel):
    """Payload optimizer and planner size thresholds (bytes)."""

    target_size_bytes: int = SAFE_LIMIT
    max_pages: int = DEFAULT_MAX_PAGES
    warning_limit_bytes: int = WARNING_LIMIT
    hard_limit_bytes: int = HARD_TRANSPORT_LIMIT
    vision_acceptable_bytes: int = VISION_ACCEPTABLE_LIMIT
    quality_presets_path: Optional[Path] = None


class OrchestratorSettings(BaseModel):
    """Method selection and provider routing."""

    low_confidence_threshold: float = 60.0
    vision_provider: ProviderName = "openai"
    text_provider: ProviderName = "openai"
    text_method: Literal["text-analysis", "ocr-hybrid-analysis"] = "text-analysis"
    min_text_chars: int = 50
    request_timeout_seconds: float = 120.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Provider credentials
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    grok: GrokSettings = Field(default_factory=GrokSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)

    # One breaker per provider family, sized for its latency profile
    vision_breaker: BreakerSettings = Field(
        default_factory=lambda: BreakerSettings(
            failure_threshold=3, timeout_seconds=90.0, retry_timeout_seconds=180.0
        )
    )
    text_breaker: BreakerSettings = Field(
        default_factory=lambda: BreakerSettings(
            failure_threshold=3, timeout_seconds=60.0, retry_timeout_seconds=120.0
        )
    )
    # Wraps Textract (TEXTRACT_TIMEOUT_SECONDS) plus the text LLM call that interprets it
    ocr_breaker: BreakerSettings = Field(
        default_factory=lambda: BreakerSettings(
            failure_threshold=2, timeout_seconds=150.0, retry_timeout_seconds=60.0
        )
    )

    retry: RetrySettings = Field(default_factory=RetrySettings)
    payload: PayloadSettings = Field(default_factory=PayloadSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)

    def breaker_settings(self) -> dict[str, BreakerSettings]:
        """Breaker thresholds keyed by registry name."""
        return {
            "vision": self.vision_breaker,
            "text": self.text_breaker,
            "ocr": self.ocr_breaker,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_quality_presets(path: Optional[Path] = None) -> tuple[QualityPreset, ...]:
    """Load the quality preset table from YAML, or the built-in default.

    The file holds a list of ``{name, scale, quality}`` entries ordered
    from highest to lowest fidelity.
    """
    if path is None:
        return DEFAULT_QUALITY_PRESETS

    with open(path) as f:
        raw = yaml.safe_load(f) or []

    presets = tuple(
        QualityPreset(
            name=str(entry["name"]),
            scale=float(entry["scale"]),
            quality=float(entry["quality"]),
        )
        for entry in raw
    )
    if not presets:
        raise ValueError(f"No quality presets defined in {path}")
    return presets

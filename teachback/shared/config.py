"""
Configuration management for teachback.
Loads from config/teachback.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class LLMConfig(BaseSettings):
    """LLM provider configuration."""
    provider: str = Field(default="openai")  # openai, anthropic
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    default_model: str = Field(default="gpt-4o-mini")
    extraction_model: str = Field(default="gpt-4o")
    evaluation_model: str = Field(default="gpt-4o")
    dialogue_model: str = Field(default="gpt-4o")
    temperature: float = Field(default=0.0)
    max_tokens: int = Field(default=2000)
    # Token budgets for the source text embedded in prompts
    extraction_source_tokens: int = Field(default=2000)
    evaluation_source_tokens: int = Field(default=500)
    dialogue_source_tokens: int = Field(default=700)

    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore", populate_by_name=True)


class StoreConfig(BaseSettings):
    """SQLite store configuration."""
    db_path: Path = Field(default=Path("data/teachback.sqlite"), alias="STORE_DB_PATH")
    busy_timeout_seconds: float = Field(default=30.0)

    model_config = SettingsConfigDict(env_prefix="STORE_", extra="ignore", populate_by_name=True)


class LoopConfig(BaseSettings):
    """Learning loop and review scheduling configuration."""
    review_score_threshold: int = Field(default=80)
    initial_review_interval_days: int = Field(default=1)
    review_growth_factor: int = Field(default=2)
    max_review_interval_days: int = Field(default=30)
    review_reset_threshold: int = Field(default=50)
    extraction_retries: int = Field(default=2)
    extraction_backoff_seconds: float = Field(default=1.0)

    model_config = SettingsConfigDict(env_prefix="LOOP_", extra="ignore")


class QuotaConfig(BaseSettings):
    """Per-user usage limits."""
    free_daily_limit: int = Field(default=5)
    free_monthly_limit: int = Field(default=8)
    pro_monthly_soft_limit: int = Field(default=50)
    pro_soft_cap_warning_ratio: float = Field(default=0.8)

    model_config = SettingsConfigDict(env_prefix="QUOTA_", extra="ignore")


class ApiConfig(BaseSettings):
    """API server configuration."""
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    rate_limit_requests_per_minute: int = Field(default=60, alias="API_RATE_LIMIT_RPM")

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)


class TeachBackSettings(BaseSettings):
    """Main teachback configuration."""
    env: str = Field(default="dev", alias="TEACHBACK_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Sub-configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "TeachBackSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/teachback.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("teachback", {})

        # Flatten api.rate_limit.requests_per_minute if present
        if "api" in config_dict and isinstance(config_dict["api"], dict):
            api_cfg = dict(config_dict["api"])
            rate_limit = api_cfg.pop("rate_limit", None)
            if isinstance(rate_limit, dict) and "requests_per_minute" in rate_limit:
                api_cfg["rate_limit_requests_per_minute"] = rate_limit["requests_per_minute"]
            config_dict["api"] = api_cfg

        # Nested sections arrive as dicts; build the sub-configs so env vars still apply
        sections = {
            "api": ApiConfig,
            "llm": LLMConfig,
            "store": StoreConfig,
            "loop": LoopConfig,
            "quota": QuotaConfig,
        }
        for key, section_cls in sections.items():
            if isinstance(config_dict.get(key), dict):
                config_dict[key] = section_cls(**config_dict[key])

        return cls(**config_dict)


# Global settings instance
_settings: Optional[TeachBackSettings] = None


def get_settings() -> TeachBackSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = TeachBackSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()

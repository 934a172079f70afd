"""Configuration management for crmflow using pydantic-settings.

This module provides the CrmflowConfig class for managing application
settings from environment variables, .env files and a project YAML file.
All configuration is type-safe and validated using Pydantic models.

Settings priority (highest to lowest):
1. CLI flags (applied after CrmflowConfig creation)
2. Environment variables (CRMFLOW_* prefix)
3. .env file
4. crmflow.yaml project config
5. Default values
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

PROJECT_FILE = "crmflow.yaml"

# Map crmflow.yaml keys to CrmflowConfig field names
_YAML_TO_FIELD = {
    "model": "default_model",
    "store_url": "store_base_url",
    "openapi_spec": "openapi_spec_path",
}

# provider prefix -> (config attribute, env var, where to get a key)
_PROVIDER_KEYS = {
    "openai/": ("openai_api_key", "OPENAI_API_KEY", "https://platform.openai.com/api-keys"),
    "anthropic/": ("anthropic_api_key", "ANTHROPIC_API_KEY", "https://console.anthropic.com/settings/keys"),
    "gemini/": ("gemini_api_key", "GEMINI_API_KEY", "https://aistudio.google.com/apikey"),
    "groq/": ("groq_api_key", "GROQ_API_KEY", "https://console.groq.com/keys"),
}


class _ProjectYamlSource(PydanticBaseSettingsSource):
    """Read project config from crmflow.yaml (lower priority than env vars)."""

    def get_field_value(self, field, field_name):  # type: ignore[override]
        return None, field_name, False

    def __call__(self) -> dict:
        project_file = Path(PROJECT_FILE)
        if not project_file.exists():
            return {}

        raw = yaml.safe_load(project_file.read_text()) or {}

        result: dict = {}
        for yaml_key, field_name in _YAML_TO_FIELD.items():
            if yaml_key in raw:
                result[field_name] = raw[yaml_key]
        return result


class CrmflowConfig(BaseSettings):
    """Configuration settings for crmflow.

    All environment variables are prefixed with CRMFLOW_ (e.g.,
    CRMFLOW_STORE_API_KEY). Empty string values in environment variables
    are treated as unset.

    Example:
        >>> config = CrmflowConfig()
        >>> config.validate_api_keys(config.default_model)
        >>> config.validate_store_key()
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CRMFLOW_",
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _ProjectYamlSource(settings_cls),
            file_secret_settings,
        )

    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    groq_api_key: str | None = Field(default=None, description="Groq API key")

    default_model: str = Field(
        default="groq/llama-3.3-70b-versatile",
        description="LLM in provider/model-name format (e.g., groq/llama-3.3-70b-versatile, openai/gpt-4o-mini)",
    )

    store_base_url: str = Field(
        default="https://api.attio.com/v2",
        description="Base URL of the record store's REST API",
    )
    store_api_key: str | None = Field(default=None, description="Bearer token for the record store")

    store_rpm: int = Field(default=50, description="Record-store calls per minute")
    llm_rpm: int = Field(default=40, description="LLM calls per minute")
    store_cache_ttl: float = Field(default=300.0, description="Seconds a store read response stays cached")
    llm_cache_ttl: float = Field(default=600.0, description="Seconds an LLM response stays cached")
    resolution_cache_ttl: float = Field(default=3600.0, description="Seconds a resolved name -> id stays cached")
    max_cache_size: int = Field(default=1000, description="Entries per cache before eviction")
    query_limit: int = Field(default=100, description="Page size for existence checks and searches")
    catalog_limit: int = Field(default=10, description="Objects shown to the detection prompt")
    request_timeout: float = Field(default=30.0, description="Store request timeout in seconds")
    history_size: int = Field(default=10, description="Recent transcripts remembered for context")

    openapi_spec_path: Path | None = Field(
        default=None,
        description="Optional JSON/YAML OpenAPI document describing creation bodies",
    )

    @field_validator(
        "store_rpm", "llm_rpm", "max_cache_size", "query_limit", "catalog_limit", "history_size"
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("store_base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def _export_api_keys(self) -> "CrmflowConfig":
        """Export API keys to environment so LiteLLM can find them."""
        for attr, env_var, _ in _PROVIDER_KEYS.values():
            value = getattr(self, attr)
            if value and env_var not in os.environ:
                os.environ[env_var] = value
        return self

    def validate_api_keys(self, model: str) -> None:
        """Validate that the required API key exists for the model's provider.

        Args:
            model: Model string in format provider/model-name

        Raises:
            ValueError: If the provider's API key is missing
        """
        for prefix, (attr, env_var, url) in _PROVIDER_KEYS.items():
            if model.startswith(prefix) and not getattr(self, attr) and not os.environ.get(env_var):
                raise ValueError(
                    f"{env_var} not found. Set in environment or .env file.\n"
                    f"Get your key from: {url}"
                )
        # Ollama models run locally - no API key needed

    def validate_store_key(self) -> None:
        """Raises ValueError if no record-store key is configured."""
        if not self.store_api_key:
            raise ValueError(
                "CRMFLOW_STORE_API_KEY not found. Set in environment or .env file."
            )

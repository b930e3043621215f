"""workchat configuration — loads from workchat.yaml + environment."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load workchat.yaml from WORKCHAT_CONFIG_PATH or the working directory."""
    config_path = os.getenv("WORKCHAT_CONFIG_PATH")
    search_paths = [Path(config_path)] if config_path else [Path("workchat.yaml")]
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


def _parse_str_list(value: Any) -> list[str]:
    """Accept a JSON list, a comma-separated string, or a sequence."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in text.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value).strip()] if str(value).strip() else []


class LLMConfig(BaseSettings):
    """Model gateway configuration."""

    model: str = Field(
        default="bedrock/anthropic.claude-3-7-sonnet-20250219-v1:0",
        description="LiteLLM model identifier",
    )
    api_key: str = Field(default="", description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Custom API base URL")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, gt=0)
    timeout: float = Field(default=120.0, gt=0, description="Per-call timeout in seconds")
    num_retries: int = Field(default=2, ge=0, description="LiteLLM retries before fallbacks")
    fallback_models: Annotated[list[str], NoDecode] = Field(default_factory=list)

    model_config = SettingsConfigDict(env_prefix="WORKCHAT_LLM_")

    @field_validator("fallback_models", mode="before")
    @classmethod
    def _parse_fallbacks(cls, value: Any) -> list[str]:
        return _parse_str_list(value)


class AgentConfig(BaseSettings):
    """Turn engine policy."""

    max_rounds: int = Field(default=10, gt=0, description="Max model rounds per request")
    max_tool_result_chars: int = Field(
        default=50_000,
        gt=0,
        description="Tool output longer than this is truncated before it reaches the model",
    )
    parallel_tool_calls: bool = Field(
        default=True,
        description="Run the tool calls of one assistant turn concurrently",
    )
    summarization_enabled: bool = True
    summarize_token_budget: int = Field(
        default=20_000,
        gt=0,
        description="Summarize history once a response reports more total tokens than this",
    )
    summary_min_messages: int = Field(default=12, ge=2)
    summary_keep_recent: int = Field(default=6, ge=1)
    broad_tools: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "slack__get_latest_messages",
            "azure__get_emails_and_calendar",
            "atlassian__get_latest_activity",
        ],
        description="Cross-platform tools the prompt prefers for vague requests",
    )

    model_config = SettingsConfigDict(env_prefix="WORKCHAT_AGENT_")

    @field_validator("broad_tools", mode="before")
    @classmethod
    def _parse_broad_tools(cls, value: Any) -> list[str]:
        return _parse_str_list(value)


class StoreConfig(BaseSettings):
    """Conversation store configuration."""

    backend: Literal["memory", "sqlite"] = "sqlite"
    data_dir: str = Field(default="data")
    ttl_seconds: int = Field(default=60 * 60 * 24, gt=0, description="Idle conversation lifetime")
    journal_mode: Literal["WAL", "DELETE"] = "WAL"
    busy_timeout_ms: int = Field(default=5000, ge=100, le=120000)

    model_config = SettingsConfigDict(env_prefix="WORKCHAT_STORE_")


class WorkchatConfig(BaseSettings):
    """Root workchat configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Auth
    api_key: str = Field(default="", description="API key for authentication. Empty = no auth")

    plugins_dir: str = Field(default="plugins")

    # Sub-configs
    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="WORKCHAT_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> WorkchatConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        llm_data = yaml_cfg.pop("llm", {})
        agent_data = yaml_cfg.pop("agent", {})
        store_data = yaml_cfg.pop("store", {})

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if llm_data:
            kwargs["llm"] = LLMConfig(**llm_data)
        if agent_data:
            kwargs["agent"] = AgentConfig(**agent_data)
        if store_data:
            kwargs["store"] = StoreConfig(**store_data)

        return cls(**kwargs)


_config: WorkchatConfig | None = None


def get_config() -> WorkchatConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = WorkchatConfig.load()
    return _config

"""
config/settings.py — ORION Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - Sub-models validate their own ranges at parse time
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects ORION_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_KNOWN_PROVIDERS = {"openai", "anthropic"}
_BUSY_POLICIES = {"reject", "queue"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class LLMRetryConfig(BaseModel):
    """Exponential backoff config for transient provider errors."""
    max_attempts: int = 2
    base_delay: float = 0.5
    max_delay: float = 8.0


class LLMConfig(BaseModel):
    # Priority order: the first configured provider with a key wins,
    # the rest are failover targets.
    providers: list[str] = Field(default_factory=lambda: ["openai", "anthropic"])
    openai_model: str = "gpt-4o"
    openai_fast_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    anthropic_fast_model: str = "claude-3-5-haiku-20241022"
    temperature: float = 0.7
    planning_max_tokens: int = 2000
    response_max_tokens: int = 500
    chat_max_tokens: int = 300
    title_max_tokens: int = 20
    timeout_seconds: float = 30.0
    retry: LLMRetryConfig = Field(default_factory=LLMRetryConfig)

    @field_validator("providers")
    @classmethod
    def _known_providers(cls, v: list[str]) -> list[str]:
        normalised = [p.lower().strip() for p in v]
        bad = [p for p in normalised if p not in _KNOWN_PROVIDERS]
        if bad:
            raise ValueError(
                f"llm.providers has unknown entries: {bad}. "
                f"Supported: {sorted(_KNOWN_PROVIDERS)}"
            )
        return normalised

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")
        return v


class GuardrailsConfig(BaseModel):
    enabled: bool = True
    max_input_chars: int = 10_000
    max_output_chars: int = 50_000
    sample_chars: int = 100

    @field_validator("max_input_chars", "max_output_chars", "sample_chars")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("guardrails limits must be >= 1")
        return v


class PipelineConfig(BaseModel):
    busy_policy: str = "reject"
    fast_path_context_entries: int = 5
    planner_context_entries: int = 10
    context_fetch_limit: int = 50
    stream_batch_min_chars: int = 3
    stream_word_group: int = 2
    stream_pacing_ms: int = 30
    step_timeout_seconds: float = 45.0
    tool_retries: int = 0

    @field_validator("busy_policy")
    @classmethod
    def _valid_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in _BUSY_POLICIES:
            raise ValueError(
                f"pipeline.busy_policy must be one of {sorted(_BUSY_POLICIES)}, got '{v}'"
            )
        return v

    @field_validator("stream_batch_min_chars", "stream_word_group")
    @classmethod
    def _positive_batch(cls, v: int) -> int:
        if v < 1:
            raise ValueError("pipeline streaming batch sizes must be >= 1")
        return v

    @field_validator("tool_retries", "stream_pacing_ms")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("pipeline.tool_retries and stream_pacing_ms must be >= 0")
        return v


class ClassifierConfig(BaseModel):
    # Input longer than this after a wh-word or pronoun is no longer "simple".
    short_chars: int = 50
    # None keeps the built-in keyword list.
    tool_keywords: Optional[list[str]] = None

    @field_validator("short_chars")
    @classmethod
    def _positive_short_chars(cls, v: int) -> int:
        if v < 1:
            raise ValueError("classifier.short_chars must be >= 1")
        return v

    @field_validator("tool_keywords")
    @classmethod
    def _non_empty_keywords(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        keywords = [k.strip().lower() for k in v if k and k.strip()]
        if not keywords:
            raise ValueError("classifier.tool_keywords must list at least one keyword")
        return keywords


class NamingConfig(BaseModel):
    enabled: bool = True
    min_chars: int = 10
    long_message_chars: int = 20
    max_length: int = 50
    max_keywords: int = 5


class ToolsConfig(BaseModel):
    http_timeout_seconds: float = 30.0
    sandbox_timeout_seconds: float = 5.0
    # Tool definitions seeded into the store at startup.
    definitions: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("http_timeout_seconds", "sandbox_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tools timeouts must be > 0")
        return v


class StoreConfig(BaseModel):
    backend: str = "sqlite"
    sqlite_path: str = "./data/sqlite/orion.db"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in {"memory", "sqlite"}:
            raise ValueError(f"store.backend must be 'memory' or 'sqlite', got '{v}'")
        return v


class GatewayConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 9090
    max_connections: int = 100
    max_message_bytes: int = 2**20
    auth_timeout_seconds: float = 10.0

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 < v < 65536):
            raise ValueError("gateway.port must be between 1 and 65535")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = True
    max_value_chars: int = 500

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper

    @field_validator("max_value_chars")
    @classmethod
    def _positive_clip(cls, v: int) -> int:
        if v < 1:
            raise ValueError("logging.max_value_chars must be >= 1")
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    ORION runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    # JSON object mapping bearer token → principal (user) id.
    auth_tokens: dict[str, str] = Field(default_factory=dict, alias="ORION_AUTH_TOKENS")

    # -- Structured config (from config.yaml) --------------------------------
    llm: LLMConfig = Field(default_factory=LLMConfig)
    guardrails: GuardrailsConfig = Field(default_factory=GuardrailsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    naming: NamingConfig = Field(default_factory=NamingConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMConfig(**v) if isinstance(v, dict) else v

    @field_validator("guardrails", mode="before")
    @classmethod
    def _coerce_guardrails(cls, v: Any) -> Any:
        return GuardrailsConfig(**v) if isinstance(v, dict) else v

    @field_validator("pipeline", mode="before")
    @classmethod
    def _coerce_pipeline(cls, v: Any) -> Any:
        return PipelineConfig(**v) if isinstance(v, dict) else v

    @field_validator("naming", mode="before")
    @classmethod
    def _coerce_naming(cls, v: Any) -> Any:
        return NamingConfig(**v) if isinstance(v, dict) else v

    @field_validator("tools", mode="before")
    @classmethod
    def _coerce_tools(cls, v: Any) -> Any:
        return ToolsConfig(**v) if isinstance(v, dict) else v

    @field_validator("store", mode="before")
    @classmethod
    def _coerce_store(cls, v: Any) -> Any:
        return StoreConfig(**v) if isinstance(v, dict) else v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def api_key_for(self, provider: str) -> Optional[str]:
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }.get(provider)

    @property
    def configured_providers(self) -> list[str]:
        """Providers from llm.providers, in priority order, that have a key."""
        return [p for p in self.llm.providers if self.api_key_for(p)]

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems (streaming ceilings, naming
        bounds, tool definitions without a name or schema).
        """
        errors: list[str] = []

        if self.guardrails.max_output_chars < self.guardrails.max_input_chars:
            errors.append(
                "guardrails.max_output_chars must be >= guardrails.max_input_chars "
                "(responses are naturally longer than prompts)."
            )

        if self.naming.max_length < 4:
            errors.append("naming.max_length must be at least 4 (room for an ellipsis).")

        seen: set[str] = set()
        for i, definition in enumerate(self.tools.definitions):
            name = definition.get("name")
            if not name:
                errors.append(f"tools.definitions[{i}] has no 'name'.")
                continue
            if name in seen:
                errors.append(f"tools.definitions has duplicate tool name '{name}'.")
            seen.add(name)
            if not isinstance(definition.get("schema"), dict):
                errors.append(f"tools.definitions['{name}'] has no 'schema' mapping.")

        if not self.auth_tokens:
            errors.append(
                "No gateway auth tokens configured. Set ORION_AUTH_TOKENS in your "
                ".env file, e.g. ORION_AUTH_TOKENS='{\"secret-token\": \"user-1\"}'."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nORION startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

_KNOWN_SECTIONS = {
    "llm", "guardrails", "pipeline", "classifier", "naming",
    "tools", "store", "gateway", "logging",
}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. ORION_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("ORION_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)

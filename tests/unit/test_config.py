"""
tests/unit/test_config.py — Config Validation Tests

Covers:
  - Defaults load cleanly
  - Unknown LLM provider / bad temperature / bad timeout rejected
  - busy_policy, streaming batch sizes and store backend validated
  - validate_all() collects every cross-field problem into one ConfigError
  - configured_providers keeps priority order and skips missing keys
  - ORION_CONFIG env var and explicit config_path resolution
  - classifier thresholds and keywords validated
  - load_settings() reads sections from YAML
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# ── Helpers ───────────────────────────────────────────────────────────────────

def _make_settings(**overrides):
    from orion.config.settings import Settings
    return Settings(**overrides)


def _make_llm_cfg(**kwargs):
    from orion.config.settings import LLMConfig
    return LLMConfig(**kwargs)


def _make_pipeline_cfg(**kwargs):
    from orion.config.settings import PipelineConfig
    return PipelineConfig(**kwargs)


TOKENS = {"ORION_AUTH_TOKENS": {"secret": "user-1"}}


# ── Sub-models ────────────────────────────────────────────────────────────────

class TestLLMConfig:
    def test_defaults(self):
        cfg = _make_llm_cfg()
        assert cfg.providers == ["openai", "anthropic"]
        assert cfg.timeout_seconds > 0

    def test_providers_normalised(self):
        assert _make_llm_cfg(providers=[" Anthropic "]).providers == ["anthropic"]

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _make_llm_cfg(providers=["openai", "grok"])
        assert "grok" in str(exc_info.value)

    def test_temperature_bounds(self):
        _make_llm_cfg(temperature=0.0)
        _make_llm_cfg(temperature=2.0)
        with pytest.raises(ValidationError):
            _make_llm_cfg(temperature=2.1)

    def test_zero_timeout_rejected(self):
        with pytest.raises(ValidationError):
            _make_llm_cfg(timeout_seconds=0)


class TestPipelineConfig:
    def test_defaults(self):
        cfg = _make_pipeline_cfg()
        assert cfg.busy_policy == "reject"
        assert cfg.stream_batch_min_chars == 3
        assert cfg.stream_word_group == 2

    def test_policy_case_insensitive(self):
        assert _make_pipeline_cfg(busy_policy="QUEUE").busy_policy == "queue"

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            _make_pipeline_cfg(busy_policy="drop")

    def test_zero_batch_rejected(self):
        with pytest.raises(ValidationError):
            _make_pipeline_cfg(stream_batch_min_chars=0)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            _make_pipeline_cfg(tool_retries=-1)


class TestOtherSections:
    def test_store_backend(self):
        from orion.config.settings import StoreConfig
        assert StoreConfig(backend="memory").backend == "memory"
        with pytest.raises(ValidationError):
            StoreConfig(backend="postgres")

    def test_gateway_port(self):
        from orion.config.settings import GatewayConfig
        with pytest.raises(ValidationError):
            GatewayConfig(port=70000)

    def test_guardrail_limits_positive(self):
        from orion.config.settings import GuardrailsConfig
        with pytest.raises(ValidationError):
            GuardrailsConfig(max_input_chars=0)

    def test_classifier_section(self):
        from orion.config.settings import ClassifierConfig
        cfg = ClassifierConfig(tool_keywords=[" Deploy ", "", "ROLLBACK"])
        assert cfg.tool_keywords == ["deploy", "rollback"]
        assert ClassifierConfig().tool_keywords is None
        with pytest.raises(ValidationError):
            ClassifierConfig(short_chars=0)
        with pytest.raises(ValidationError):
            ClassifierConfig(tool_keywords=["  "])

    def test_log_level_case_insensitive(self):
        from orion.config.settings import LoggingConfig
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")


# ── Providers ─────────────────────────────────────────────────────────────────

class TestConfiguredProviders:
    def test_none_without_keys(self):
        assert _make_settings().configured_providers == []

    def test_priority_order_kept(self):
        from orion.config.settings import LLMConfig
        s = _make_settings(
            llm=LLMConfig(providers=["anthropic", "openai"]),
            OPENAI_API_KEY="sk-1",
            ANTHROPIC_API_KEY="sk-2",
        )
        assert s.configured_providers == ["anthropic", "openai"]

    def test_missing_key_skipped(self):
        s = _make_settings(ANTHROPIC_API_KEY="sk-2")
        assert s.configured_providers == ["anthropic"]

    def test_tokens_from_env(self, monkeypatch):
        monkeypatch.setenv("ORION_AUTH_TOKENS", '{"abc": "user-9"}')
        assert _make_settings().auth_tokens == {"abc": "user-9"}


# ── validate_all ─────────────────────────────────────────────────────────────

class TestValidateAll:
    def test_passes_with_tokens(self):
        _make_settings(**TOKENS).validate_all()

    def test_missing_tokens_reported(self):
        from orion.config.settings import ConfigError
        with pytest.raises(ConfigError) as exc_info:
            _make_settings().validate_all()
        assert "ORION_AUTH_TOKENS" in str(exc_info.value)
        assert "1." in str(exc_info.value)

    def test_output_ceiling_below_input(self):
        from orion.config.settings import ConfigError, GuardrailsConfig
        s = _make_settings(
            guardrails=GuardrailsConfig(max_input_chars=100, max_output_chars=50), **TOKENS
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        assert "max_output_chars" in str(exc_info.value)

    def test_bad_tool_definitions_all_reported(self):
        from orion.config.settings import ConfigError, ToolsConfig
        s = _make_settings(
            tools=ToolsConfig(definitions=[
                {"description": "no name"},
                {"name": "dup", "schema": {"type": "http"}},
                {"name": "dup", "schema": {"type": "http"}},
                {"name": "bare"},
            ]),
        )
        with pytest.raises(ConfigError) as exc_info:
            s.validate_all()
        msg = str(exc_info.value)
        assert "has no 'name'" in msg
        assert "duplicate tool name 'dup'" in msg
        assert "'bare'" in msg
        assert "4 configuration problem" in msg


# ── Config path resolution ────────────────────────────────────────────────────

class TestConfigPathResolution:
    def test_explicit_path_takes_priority(self, tmp_path):
        from orion.config.settings import _resolve_config_path
        cfg_file = tmp_path / "custom.yaml"
        with patch.dict(os.environ, {"ORION_CONFIG": str(tmp_path / "env.yaml")}):
            assert _resolve_config_path(str(cfg_file)) == cfg_file

    def test_env_var_used_when_no_explicit_path(self, tmp_path):
        from orion.config.settings import _resolve_config_path
        env_file = tmp_path / "env_config.yaml"
        with patch.dict(os.environ, {"ORION_CONFIG": str(env_file)}):
            assert _resolve_config_path(None) == env_file

    def test_default_path(self):
        from orion.config.settings import _resolve_config_path
        assert _resolve_config_path(None) == Path("config/config.yaml")

    def test_load_settings_from_file(self, tmp_path):
        import orion.config.settings as cs

        cfg_file = tmp_path / "test_config.yaml"
        cfg_file.write_text(textwrap.dedent("""
            llm:
              providers: [anthropic]
              temperature: 0.2
            pipeline:
              busy_policy: queue
            store:
              backend: memory
            classifier:
              short_chars: 20
              tool_keywords: [deploy]
            unknown_section:
              ignored: true
        """))

        settings = cs.load_settings(str(cfg_file))

        assert settings.llm.providers == ["anthropic"]
        assert settings.llm.temperature == 0.2
        assert settings.pipeline.busy_policy == "queue"
        assert settings.store.backend == "memory"
        assert settings.classifier.short_chars == 20
        assert settings.classifier.tool_keywords == ["deploy"]
        assert cs.load_settings(str(cfg_file)) is not settings

    def test_missing_file_gives_defaults(self, tmp_path):
        from orion.config.settings import load_settings
        settings = load_settings(str(tmp_path / "nope.yaml"))
        assert settings.store.backend == "sqlite"

"""
Root conftest — isolate provider keys and auth tokens from the environment
so Settings() behaves as if nothing is configured unless a test says so.
Also disables .env loading so a local developer .env cannot leak real
credentials into tests.
"""
import pytest

_SECRET_ENV_VARS = [
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "ORION_AUTH_TOKENS",
    "ORION_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_secrets_from_env(monkeypatch):
    for var in _SECRET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import orion.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)

import pytest
from pydantic import ValidationError

from auibridge.config.settings import Settings


def test_defaults_match_public_mode():
    settings = Settings()
    assert settings.port == 3000
    assert settings.server_api_key == ""
    assert settings.auth_enabled is False
    assert settings.upstream_timeout_seconds is None
    assert settings.default_model == "gpt-4o-mini"


def test_env_prefix_is_applied(monkeypatch):
    monkeypatch.setenv("AUIBRIDGE_PORT", "8080")
    monkeypatch.setenv("AUIBRIDGE_SERVER_API_KEY", "s3cret")
    monkeypatch.setenv("AUIBRIDGE_TARGET_URL", "http://127.0.0.1:9000/api/chat")
    monkeypatch.setenv("AUIBRIDGE_UPSTREAM_PROXY", "http://proxy.local:3128")
    settings = Settings()
    assert settings.port == 8080
    assert settings.auth_enabled is True
    assert settings.target_url == "http://127.0.0.1:9000/api/chat"
    assert settings.upstream_proxy == "http://proxy.local:3128"


def test_settings_are_immutable():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.port = 1


def test_invalid_target_url_fails_fast():
    with pytest.raises(ValidationError):
        Settings(target_url="ftp://example.com/chat")
    with pytest.raises(ValidationError):
        Settings(target_url="/api/chat")


def test_non_positive_timeout_means_no_timeout():
    assert Settings(upstream_timeout_seconds=0).upstream_timeout_seconds is None
    assert Settings(upstream_timeout_seconds=15).upstream_timeout_seconds == 15


def test_model_ids_skip_blank_entries():
    assert Settings(models=" a , ,b ").model_ids == ["a", "b"]
    assert Settings(models="").default_model == "unknown-model"

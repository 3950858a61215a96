"""Tests for gatekeeper configuration loading."""

import pytest
from pydantic import ValidationError

from src.gatekeeper.config import DEFAULT_ALLOWED_EVENTS, GatekeeperSettings, get_settings


@pytest.fixture
def base_env(monkeypatch):
    monkeypatch.setenv("GATEKEEPER_GITHUB_WEBHOOK_SECRET", "whsec")


class TestDefaults:

    def test_defaults(self, base_env):
        settings = get_settings()

        assert settings.github_webhook_secret == "whsec"
        assert settings.allowed_event_types == DEFAULT_ALLOWED_EVENTS
        assert settings.max_payload_bytes == 5 * 1024 * 1024
        assert settings.freshness_window_seconds == 300
        assert settings.replay_sweep_probability == 0.01
        assert settings.require_delivery_id is False
        assert settings.use_github_headers is True
        assert settings.refresh_buffer_seconds == 300
        assert settings.token_lifetime_seconds == 3600
        assert settings.github_base_url == "https://api.github.com"
        assert settings.port == 8080
        assert not settings.github_app_configured

    def test_default_allowed_events(self):
        assert DEFAULT_ALLOWED_EVENTS == [
            "pull_request",
            "pull_request_review",
            "installation",
            "ping",
        ]

    def test_secret_is_required(self, monkeypatch):
        monkeypatch.delenv("GATEKEEPER_GITHUB_WEBHOOK_SECRET", raising=False)
        with pytest.raises(ValidationError):
            GatekeeperSettings()


class TestEnvironmentParsing:

    def test_comma_separated_event_types(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_ALLOWED_EVENT_TYPES", "push, ping ,")
        assert get_settings().allowed_event_types == ["push", "ping"]

    def test_json_event_types(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_ALLOWED_EVENT_TYPES", '["push", "issues"]')
        assert get_settings().allowed_event_types == ["push", "issues"]

    def test_private_key_is_normalized(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_GITHUB_APP_ID", " 123 ")
        monkeypatch.setenv(
            "GATEKEEPER_GITHUB_APP_PRIVATE_KEY",
            '"-----BEGIN KEY-----\\nabc\\n-----END KEY-----"',
        )
        settings = get_settings()

        assert settings.github_app_id == "123"
        assert settings.github_app_private_key == "-----BEGIN KEY-----\nabc\n-----END KEY-----"
        assert settings.github_app_configured

    def test_blank_app_fields_are_none(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_GITHUB_APP_ID", "  ")
        monkeypatch.setenv("GATEKEEPER_GITHUB_APP_PRIVATE_KEY", "")
        settings = get_settings()

        assert settings.github_app_id is None
        assert settings.github_app_private_key is None

    def test_base_url_trailing_slash_stripped(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_GITHUB_BASE_URL", "https://ghe.example.com/api/v3/")
        assert get_settings().github_base_url == "https://ghe.example.com/api/v3"

    def test_boolean_flags(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_REQUIRE_DELIVERY_ID", "true")
        monkeypatch.setenv("GATEKEEPER_USE_GITHUB_HEADERS", "false")
        settings = get_settings()

        assert settings.require_delivery_id is True
        assert settings.use_github_headers is False


class TestValidation:

    @pytest.mark.parametrize(
        "field,value",
        [
            ("github_webhook_secret", "   "),
            ("allowed_event_types", []),
            ("max_payload_bytes", 0),
            ("freshness_window_seconds", 0),
            ("refresh_buffer_seconds", -1),
            ("token_lifetime_seconds", 0),
            ("replay_sweep_probability", 1.5),
            ("github_base_url", "ftp://example.com"),
            ("port", 70000),
        ],
    )
    def test_invalid_values(self, field, value):
        kwargs = {"github_webhook_secret": "whsec", field: value}
        with pytest.raises(ValidationError):
            GatekeeperSettings(**kwargs)

    @pytest.mark.parametrize("buffer", ["3600", "4000"])
    def test_refresh_buffer_must_be_shorter_than_lifetime(
        self, base_env, monkeypatch, buffer
    ):
        monkeypatch.setenv("GATEKEEPER_REFRESH_BUFFER_SECONDS", buffer)
        with pytest.raises(ValidationError):
            get_settings()

    def test_refresh_buffer_below_lifetime_is_accepted(self, base_env, monkeypatch):
        monkeypatch.setenv("GATEKEEPER_REFRESH_BUFFER_SECONDS", "60")
        monkeypatch.setenv("GATEKEEPER_TOKEN_LIFETIME_SECONDS", "120")
        settings = get_settings()

        assert settings.refresh_buffer_seconds == 60
        assert settings.token_lifetime_seconds == 120

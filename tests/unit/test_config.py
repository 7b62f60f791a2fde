"""Tests for application configuration."""

from src.config import Settings


class TestSettings:
    def test_default_settings(self):
        settings = Settings()
        assert settings.app_name == "aml-compliance-engine"
        assert settings.app_version == "0.1.0"
        assert settings.log_level == "INFO"
        assert settings.log_json is False

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "test-app")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_JSON", "true")
        monkeypatch.setenv("DEBUG", "true")
        settings = Settings()
        assert settings.app_name == "test-app"
        assert settings.log_level == "DEBUG"
        assert settings.log_json is True
        assert settings.debug is True

    def test_unknown_env_ignored(self, monkeypatch):
        monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
        assert not hasattr(Settings(), "kafka_bootstrap_servers")

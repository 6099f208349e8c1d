"""Tests for environment-driven settings."""

from deployguard.config.settings import Settings, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = Settings()

        assert settings.debug is False
        assert settings.log_level == "INFO"
        assert settings.default_query_limit == 50
        assert settings.max_query_limit == 1000
        assert settings.poll_max_attempts == 30
        assert settings.poll_interval_seconds == 10.0
        assert settings.stability_max_wait_seconds == 300
        assert settings.stability_check_interval_seconds == 10
        assert settings.lawbook_path is None
        assert settings.policy_path is None

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DEPLOYGUARD_POLL_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("DEPLOYGUARD_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("DEPLOYGUARD_LAWBOOK_PATH", "/etc/deployguard/lawbook.yaml")

        settings = Settings()

        assert settings.poll_max_attempts == 5
        assert settings.log_level == "DEBUG"
        assert settings.lawbook_path == "/etc/deployguard/lawbook.yaml"

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("DEPLOYGUARD_MAX_QUERY_LIMIT=250\n")

        assert Settings().max_query_limit == 250

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_cache_clear_picks_up_env(self, monkeypatch):
        get_settings()
        monkeypatch.setenv("DEPLOYGUARD_DEBUG", "true")
        get_settings.cache_clear()

        assert get_settings().debug is True

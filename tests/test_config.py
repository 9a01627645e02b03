"""Tests for environment-driven settings."""

from decimal import Decimal

import pytest

from settlement_engine.config import Settings, get_settings, parse_withholding_components


class TestParseWithholdingComponents:
    def test_parses_pairs_in_order(self):
        assert parse_withholding_components("social_security=0.062, medicare=0.0145") == (
            ("social_security", Decimal("0.062")),
            ("medicare", Decimal("0.0145")),
        )

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_means_no_components(self, raw):
        assert parse_withholding_components(raw) == ()

    @pytest.mark.parametrize(
        "raw",
        ["medicare", "=0.1", "medicare=abc", "medicare=1.5", "medicare=-0.01"],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_withholding_components(raw)


class TestFromEnv:
    @pytest.fixture(autouse=True)
    def _clear_cache(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///settlements.db")
        monkeypatch.setenv("ENGINE_VERSION", "2.1.0")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("COMMIT_MAX_RETRIES", "5")
        monkeypatch.setenv("WITHHOLDING_COMPONENTS", "medicare=0.0145")
        monkeypatch.setenv("RECOVER_OBLIGATIONS_WITH_WITHHOLDING", "yes")

        settings = Settings.from_env()

        assert settings.database_url == "sqlite+aiosqlite:///settlements.db"
        assert settings.engine_version == "2.1.0"
        assert settings.PORT == 9000
        assert settings.DEBUG is True
        assert settings.log_level == "DEBUG"
        assert settings.commit_max_retries == 5
        assert settings.withholding_components == (("medicare", Decimal("0.0145")),)
        assert settings.recover_obligations_with_withholding is True

    def test_invalid_retry_count(self, monkeypatch):
        monkeypatch.setenv("COMMIT_MAX_RETRIES", "0")

        with pytest.raises(ValueError, match="COMMIT_MAX_RETRIES"):
            Settings.from_env()

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setenv("ENGINE_VERSION", "3.0.0")

        assert get_settings() is get_settings()
        assert get_settings().engine_version == "3.0.0"

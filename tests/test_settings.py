import pytest
from pydantic import ValidationError

from safeguard.config import Settings, get_settings, reset_settings


class TestSettings:
    def test_defaults(self, tmp_path):
        settings = Settings(data_dir=tmp_path, _env_file=None)

        assert settings.environment == "development"
        assert settings.sqlite_path == str(tmp_path / "credentials.db")
        assert settings.database_url is None
        assert settings.force_backend is None
        assert settings.use_remote is False
        assert settings.pool_max_size == 20
        assert settings.retry_max_attempts == 3
        assert settings.recent_window_days == 30
        assert settings.is_production is False

    def test_environment_variables_use_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SAFEGUARD_DATABASE_URL", "postgresql://u:p@db/app")
        monkeypatch.setenv("SAFEGUARD_USE_REMOTE", "true")
        monkeypatch.setenv("SAFEGUARD_POOL_ACQUIRE_TIMEOUT", "2.5")
        monkeypatch.setenv("SAFEGUARD_ENVIRONMENT", "production")

        settings = Settings(data_dir=tmp_path, _env_file=None)

        assert settings.database_url == "postgresql://u:p@db/app"
        assert settings.use_remote is True
        assert settings.pool_acquire_timeout == 2.5
        assert settings.is_production is True

    @pytest.mark.parametrize(
        "raw,expected",
        [("local", "local"), ("REMOTE", "remote"), (" Local ", "local"), ("", None), (None, None)],
    )
    def test_force_backend_is_normalized(self, tmp_path, raw, expected):
        settings = Settings(data_dir=tmp_path, force_backend=raw, _env_file=None)
        assert settings.force_backend == expected

    def test_unknown_force_backend_is_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            Settings(data_dir=tmp_path, force_backend="mongo", _env_file=None)

    def test_explicit_sqlite_path_is_kept(self, tmp_path):
        settings = Settings(data_dir=tmp_path, sqlite_path=":memory:", _env_file=None)
        assert settings.sqlite_path == ":memory:"

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("SAFEGUARD_ENVIRONMENT", "testing")
        reset_settings()
        assert get_settings().environment == "testing"

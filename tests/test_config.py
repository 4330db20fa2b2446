"""Tests for safetube.config module."""

from pathlib import Path


class TestSettings:
    def test_default_settings(self):
        """Settings should have sensible defaults."""
        from safetube.config import Settings
        s = Settings()
        assert isinstance(s.DATA_DIR, Path)
        assert isinstance(s.CONFIG_DIR, Path)
        assert s.DB_FILENAME == "safetube.db"
        assert s.BUSY_TIMEOUT_MS == 30000
        assert s.MIGRATION_MAX_ATTEMPTS == 2
        assert s.MIGRATION_BASE_DELAY_MS == 1000

    def test_db_path_joins_data_dir(self, tmp_path):
        from safetube.config import Settings
        s = Settings(DATA_DIR=tmp_path, DB_FILENAME="x.db")
        assert s.db_path == tmp_path / "x.db"

    def test_env_override(self, monkeypatch, tmp_path):
        """SAFETUBE_ environment variables override the defaults."""
        from safetube.config import Settings
        monkeypatch.setenv("SAFETUBE_CONFIG_DIR", str(tmp_path))
        monkeypatch.setenv("SAFETUBE_MIGRATION_MAX_ATTEMPTS", "5")
        s = Settings()
        assert s.CONFIG_DIR == tmp_path
        assert s.MIGRATION_MAX_ATTEMPTS == 5

    def test_env_prefix(self):
        """Settings should use SAFETUBE_ env prefix."""
        from safetube.config import Settings
        assert Settings.model_config["env_prefix"] == "SAFETUBE_"

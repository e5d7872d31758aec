"""Tests for BackupConfig defaults, environment loading and validation."""

import os
from pathlib import Path

import pytest

from strongbox.config import BackupConfig


# ── BackupConfig ────────────────────────────────────────────────────


class TestBackupConfig:

    def test_defaults(self):
        config = BackupConfig()
        assert config.storage_directory == Path("data/backups")
        assert config.max_backup_size_bytes == 100 * 1024 * 1024
        assert config.storage_budget_bytes == 100 * 1024 * 1024
        assert config.retention_period_days == 30
        assert config.budget_target_fraction == 0.8
        assert config.kdf_iterations == 100_000
        assert config.max_backups == 0
        assert config.catalog_path == Path("data/backups/catalog.json")

    def test_from_env(self, clean_env, tmp_path):
        clean_env.setenv("STRONGBOX_STORAGE_DIR", str(tmp_path / "store"))
        clean_env.setenv("STRONGBOX_RETENTION_PERIOD_DAYS", "7")
        clean_env.setenv("STRONGBOX_STORAGE_BUDGET_BYTES", "2048")
        clean_env.setenv("STRONGBOX_BUDGET_TARGET_FRACTION", "0.5")
        clean_env.setenv("STRONGBOX_MAX_BACKUPS", "25")

        config = BackupConfig.from_env()

        assert config.storage_directory == tmp_path / "store"
        assert config.retention_period_days == 7
        assert config.storage_budget_bytes == 2048
        assert config.budget_target_fraction == 0.5
        assert config.max_backups == 25
        assert config.kdf_iterations == 100_000

    def test_from_dotenv_file(self, clean_env, tmp_path):
        env_file = tmp_path / "strongbox.env"
        env_file.write_text("STRONGBOX_KDF_ITERATIONS=5000\n")
        clean_env.setenv("STRONGBOX_RETENTION_PERIOD_DAYS", "3")
        try:
            config = BackupConfig.from_env(env_file)
            assert config.kdf_iterations == 5000
            assert config.retention_period_days == 3
        finally:
            os.environ.pop("STRONGBOX_KDF_ITERATIONS", None)

    def test_real_env_wins_over_dotenv(self, clean_env, tmp_path):
        env_file = tmp_path / "strongbox.env"
        env_file.write_text("STRONGBOX_KDF_ITERATIONS=5000\n")
        clean_env.setenv("STRONGBOX_KDF_ITERATIONS", "7000")
        assert BackupConfig.from_env(env_file).kdf_iterations == 7000

    def test_invalid_number(self, clean_env):
        clean_env.setenv("STRONGBOX_KDF_ITERATIONS", "lots")
        with pytest.raises(ValueError, match="STRONGBOX_KDF_ITERATIONS"):
            BackupConfig.from_env()

    def test_blank_value_uses_default(self, clean_env):
        clean_env.setenv("STRONGBOX_RETENTION_PERIOD_DAYS", "  ")
        assert BackupConfig.from_env().retention_period_days == 30

    @pytest.mark.parametrize("field,value", [
        ("max_backup_size_bytes", 0),
        ("storage_budget_bytes", -1),
        ("retention_period_days", -1),
        ("budget_target_fraction", 0),
        ("budget_target_fraction", 1.5),
        ("kdf_iterations", 0),
        ("operation_timeout_seconds", 0),
        ("max_backups", -1),
    ])
    def test_validate_rejects(self, field, value):
        with pytest.raises(ValueError):
            BackupConfig(**{field: value}).validate()

    def test_string_storage_dir_coerced(self):
        assert BackupConfig(storage_directory="x/y").storage_directory == Path("x/y")

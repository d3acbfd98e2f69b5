"""Tests for configuration management."""

from pathlib import Path

import pytest

from .lib import (
    DEFAULT_STORAGE_DIR,
    EnvConfig,
    EnvVar,
    get_environment,
    get_environment_info,
    get_history_max_depth,
    get_log_level,
    get_storage_backend,
    get_storage_dir,
    list_environment_variables,
)

# =============================================================================
# Tests for get_environment (main interface)
# =============================================================================


class TestGetEnvironment:
    """Tests for the unified get_environment interface."""

    @pytest.mark.unit
    def test_returns_default_when_not_set(self, monkeypatch):
        """Returns default value when env var is not set."""
        monkeypatch.delenv("ASSET_HISTORY_MAX_DEPTH", raising=False)
        result = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH)
        assert result == 50

    @pytest.mark.unit
    def test_override_takes_priority(self, monkeypatch):
        """Override parameter takes highest priority."""
        monkeypatch.setenv("ASSET_HISTORY_MAX_DEPTH", "99")
        result = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH, override=5)
        assert result == 5

    @pytest.mark.unit
    def test_int_type_conversion(self, monkeypatch):
        """Integer type conversion from string."""
        monkeypatch.setenv("ASSET_METRICS_MAX_OPERATIONS", "250")
        result = get_environment(EnvVar.ASSET_METRICS_MAX_OPERATIONS)
        assert result == 250
        assert isinstance(result, int)

    @pytest.mark.unit
    def test_invalid_int_returns_default(self, monkeypatch):
        """Invalid integer value returns default."""
        monkeypatch.setenv("ASSET_HISTORY_MAX_DEPTH", "not-a-number")
        result = get_environment(EnvVar.ASSET_HISTORY_MAX_DEPTH)
        assert result == 50

    @pytest.mark.unit
    def test_path_type_conversion(self, monkeypatch, tmp_path):
        """Path variables come back as Path objects."""
        monkeypatch.setenv("ASSET_STORAGE_DIR", str(tmp_path))
        result = get_environment(EnvVar.ASSET_STORAGE_DIR)
        assert result == tmp_path
        assert isinstance(result, Path)

    @pytest.mark.unit
    def test_string_type(self, monkeypatch):
        """String type returns as-is."""
        monkeypatch.setenv("ASSET_STORAGE_BACKEND", "sqlite")
        result = get_environment(EnvVar.ASSET_STORAGE_BACKEND)
        assert result == "sqlite"

    @pytest.mark.unit
    def test_registered_types_are_convertible(self):
        """Every registered variable uses a type the converter handles."""
        for env_var in EnvVar:
            assert env_var.value.var_type in (str, int, Path)


class TestGetEnvironmentInfo:
    """Tests for environment variable metadata."""

    @pytest.mark.unit
    def test_returns_env_config(self):
        """Returns EnvConfig dataclass."""
        info = get_environment_info(EnvVar.ASSET_HISTORY_MAX_DEPTH)
        assert isinstance(info, EnvConfig)
        assert info.name == "ASSET_HISTORY_MAX_DEPTH"
        assert info.default == 50
        assert info.var_type is int
        assert info.category == "history"

    @pytest.mark.unit
    def test_description_present(self):
        """Description field is populated."""
        info = get_environment_info(EnvVar.ASSET_STORAGE_BACKEND)
        assert "sqlite" in info.description


class TestListEnvironmentVariables:
    """Tests for listing environment variables."""

    @pytest.mark.unit
    def test_returns_all_variables(self):
        """Returns all EnvVar members when no category."""
        result = list_environment_variables()
        assert len(result) == len(EnvVar)

    @pytest.mark.unit
    def test_filter_by_category(self):
        """Filters by category correctly."""
        storage_vars = list_environment_variables("storage")
        assert EnvVar.ASSET_STORAGE_DIR in storage_vars
        assert EnvVar.ASSET_STORAGE_BACKEND in storage_vars
        assert EnvVar.ASSET_LOG_LEVEL not in storage_vars


# =============================================================================
# Tests for convenience functions
# =============================================================================


class TestGetStorageDir:
    """Tests for storage directory resolution."""

    @pytest.mark.unit
    def test_override_takes_priority(self, tmp_path, monkeypatch):
        """Override beats the environment."""
        monkeypatch.setenv("ASSET_STORAGE_DIR", str(tmp_path / "env"))
        result = get_storage_dir(str(tmp_path / "override"))
        assert result == tmp_path / "override"

    @pytest.mark.unit
    def test_env_var_used(self, tmp_path, monkeypatch):
        """ASSET_STORAGE_DIR used when no override."""
        monkeypatch.setenv("ASSET_STORAGE_DIR", str(tmp_path / "env"))
        assert get_storage_dir() == tmp_path / "env"

    @pytest.mark.unit
    def test_default(self, monkeypatch):
        """Falls back to data/sessions."""
        monkeypatch.delenv("ASSET_STORAGE_DIR", raising=False)
        assert get_storage_dir() == DEFAULT_STORAGE_DIR


class TestGetStorageBackend:
    """Tests for backend selection."""

    @pytest.mark.unit
    def test_default_is_file(self, monkeypatch):
        """File backend by default."""
        monkeypatch.delenv("ASSET_STORAGE_BACKEND", raising=False)
        assert get_storage_backend() == "file"

    @pytest.mark.unit
    def test_normalizes_case(self, monkeypatch):
        """Backend names are case-insensitive."""
        monkeypatch.setenv("ASSET_STORAGE_BACKEND", " SQLite ")
        assert get_storage_backend() == "sqlite"

    @pytest.mark.unit
    def test_unknown_backend_raises(self):
        """Unknown backends are rejected."""
        with pytest.raises(ValueError, match="Unknown storage backend"):
            get_storage_backend("redis")


class TestHistoryAndLogging:
    """Tests for history depth and log level helpers."""

    @pytest.mark.unit
    def test_history_depth_floor(self):
        """Depth is never below one."""
        assert get_history_max_depth(0) == 1

    @pytest.mark.unit
    def test_history_depth_from_env(self, monkeypatch):
        """Depth read from environment."""
        monkeypatch.setenv("ASSET_HISTORY_MAX_DEPTH", "7")
        assert get_history_max_depth() == 7

    @pytest.mark.unit
    def test_log_level_upper_cased(self, monkeypatch):
        """Log level names are upper-cased."""
        monkeypatch.setenv("ASSET_LOG_LEVEL", "debug")
        assert get_log_level() == "DEBUG"

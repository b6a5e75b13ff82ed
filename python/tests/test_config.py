"""
Tests for configuration loading, validation and environment overrides.
"""

import pytest

from config_manager import ConfigManager, ConfigurationError, get_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("LOOKUP_API_URL", "DATABASE_URL", "API_DOMAIN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


class TestConfigLoading:
    """Tests for reading config.yaml."""

    def test_shipped_config_loads(self):
        config = ConfigManager()
        assert config.api.docs_url == "/api/docs"
        assert config.pagination.default_limit == 20
        assert config.pagination.max_limit == 100
        assert config.pagination.query_result_cap == 80
        assert config.lookup.output == "json"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.yaml"))
        assert config.api.title == "Postcode Hierarchy API"
        assert config.api.cors_origins == ["*"]
        assert config.api.allowed_hosts == []
        assert config.database.url is None

    def test_partial_sections(self, write_config):
        config = ConfigManager(write_config(
            "pagination:\n"
            "  default_limit: 10\n"
            "lookup:\n"
            "  base_url: https://api.example.org/\n"
            "  timeout_seconds: 3\n"
        ))
        assert config.pagination.default_limit == 10
        assert config.pagination.max_limit == 100
        assert config.lookup.base_url == "https://api.example.org/"
        assert config.lookup.timeout_seconds == 3
        assert config.logging.level == "INFO"

    def test_empty_file(self, write_config):
        config = ConfigManager(write_config(""))
        assert config.pagination.default_limit == 20

    def test_to_dict_hides_secrets(self, write_config):
        config = ConfigManager(write_config(
            "lookup:\n  base_url: https://secret.example.org/\n"
            "database:\n  url: postgresql://user:pw@db/postcodes\n"
        ))
        exported = config.to_dict()
        assert exported["lookup"]["configured"] is True
        assert exported["database"]["configured"] is True
        assert "secret" not in str(exported)
        assert "pw@" not in str(exported)


class TestConfigValidation:
    """Tests for rejected configurations."""

    @pytest.mark.parametrize("text", [
        "api: [\n",
        "- just\n- a list\n",
        "pagination: 5\n",
        "pagination:\n  default_limit: 0\n",
        "pagination:\n  default_limit: 200\n  max_limit: 100\n",
        "pagination:\n  max_limit: many\n",
        "pagination:\n  query_result_cap: true\n",
        "lookup:\n  timeout_seconds: 0\n",
        "logging:\n  level: CHATTY\n",
    ])
    def test_invalid(self, write_config, text):
        with pytest.raises(ConfigurationError):
            ConfigManager(write_config(text))

    def test_level_case_insensitive(self, write_config):
        config = ConfigManager(write_config("logging:\n  level: debug\n"))
        assert config.logging.level == "debug"


class TestEnvironmentOverrides:
    """Tests for deployment settings read from the environment."""

    def test_overrides(self, monkeypatch, write_config):
        monkeypatch.setenv("LOOKUP_API_URL", "https://env.example.org/")
        monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")
        monkeypatch.setenv("API_DOMAIN", "postcodes.example.org, api.example.org ,")

        config = ConfigManager(write_config("lookup:\n  base_url: https://file.example.org/\n"))

        assert config.lookup.base_url == "https://env.example.org/"
        assert config.database.url == "sqlite:///env.db"
        assert config.api.allowed_hosts == ["postcodes.example.org", "api.example.org"]

    def test_blank_env_ignored(self, monkeypatch, write_config):
        monkeypatch.setenv("LOOKUP_API_URL", "")
        config = ConfigManager(write_config("lookup:\n  base_url: https://file.example.org/\n"))
        assert config.lookup.base_url == "https://file.example.org/"


class TestSingleton:
    """Tests for the shared instance."""

    def test_get_config_reuses_instance(self, write_config):
        ConfigManager.reset_instance()
        try:
            first = get_config(write_config("pagination:\n  default_limit: 7\n"))
            assert get_config() is first
            assert first.pagination.default_limit == 7

            ConfigManager.reset_instance()
            assert get_config() is not first
        finally:
            ConfigManager.reset_instance()

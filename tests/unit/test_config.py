"""Unit tests for configuration management."""

import json
from pathlib import Path

import pytest

from mivna.config import (
    AuthConfig,
    BackendConfig,
    ConfigError,
    LoggingConfig,
    MivnaConfig,
    _expand_env_vars,
    clean_env_value,
    find_config_file,
    load_config,
    load_config_file,
    load_config_from_env,
    validate_config,
)

ENV_VARS = (
    "MIVNA_SUPABASE_URL", "MIVNA_SUPABASE_ANON_KEY", "VITE_SUPABASE_URL", "VITE_SUPABASE_ANON_KEY",
    "SUPABASE_URL", "SUPABASE_ANON_KEY", "MIVNA_AUTH_CALLBACK_PORT", "MIVNA_AUTH_BOOTSTRAP_TIMEOUT",
    "MIVNA_SESSION_DIR", "MIVNA_HTTP_TIMEOUT", "MIVNA_HTTP_MAX_RETRIES", "MIVNA_HTTP_BASE_DELAY",
    "MIVNA_HTTP_MAX_DELAY", "MIVNA_LOG_LEVEL", "LOG_LEVEL",
    "MIVNA_LOG_FORMAT", "LOG_FORMAT", "MIVNA_LOG_FILE", "LOG_FILE", "MIVNA_SENTRY_DSN", "SENTRY_DSN",
    "VITE_SENTRY_DSN", "MIVNA_ENVIRONMENT", "ENVIRONMENT", "MIVNA_PLAUSIBLE_DOMAIN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _valid_config(**backend) -> MivnaConfig:
    config = MivnaConfig()
    config.backend = BackendConfig(
        url=backend.get("url", "https://abcd.supabase.co"),
        anon_key=backend.get("anon_key", "anon"),
    )
    return config


class TestConfigDataClasses:
    """Test configuration data classes."""

    def test_auth_config_defaults(self):
        config = AuthConfig()
        assert config.callback_port == 8787
        assert config.callback_path == "/callback"
        assert config.bootstrap_timeout == 5.0
        assert config.scopes == "repo read:user"

    def test_logging_config_defaults(self):
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.format == "human"
        assert config.file is None

    def test_from_dict_builds_sections(self):
        config = MivnaConfig.from_dict({
            "backend": {"url": "https://x.supabase.co", "anon_key": "k"},
            "http": {"max_retries": 5},
        })
        assert config.backend.url == "https://x.supabase.co"
        assert config.http.max_retries == 5
        assert config.auth.callback_port == 8787

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            MivnaConfig.from_dict({"backend": {"endpoint": "nope"}})

    def test_session_dir_defaults_to_home(self):
        assert MivnaConfig().session_dir == Path.home() / ".mivna"

    def test_session_dir_override(self, tmp_path):
        config = MivnaConfig.from_dict({"auth": {"session_dir": str(tmp_path)}})
        assert config.session_dir == tmp_path

    def test_to_dict_round_trips_sections(self):
        data = MivnaConfig().to_dict()
        assert set(data) == {"backend", "auth", "http", "logging", "sentry", "analytics"}


class TestEnvValues:
    def test_clean_env_value_strips_whitespace_and_breaks(self):
        assert clean_env_value("  https://abcd.supabase.co\n") == "https://abcd.supabase.co"
        assert clean_env_value("ab\r\ncd\t") == "abcd"

    def test_clean_env_value_empty(self):
        assert clean_env_value(None) == ""
        assert clean_env_value("   ") == ""

    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("MIVNA_SUPABASE_URL", "https://abcd.supabase.co\n")
        monkeypatch.setenv("MIVNA_SUPABASE_ANON_KEY", " key ")
        monkeypatch.setenv("MIVNA_HTTP_MAX_RETRIES", "2")
        monkeypatch.setenv("MIVNA_HTTP_TIMEOUT", "7.5")
        monkeypatch.setenv("MIVNA_HTTP_MAX_DELAY", "4")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("MIVNA_PLAUSIBLE_DOMAIN", "mivna.app")

        data = load_config_from_env()

        assert data["backend"] == {"url": "https://abcd.supabase.co", "anon_key": "key"}
        assert data["http"] == {"timeout": 7.5, "max_retries": 2, "max_delay": 4.0}
        assert data["logging"]["level"] == "DEBUG"
        assert data["analytics"]["domain"] == "mivna.app"

    def test_deprecated_names_still_read(self, monkeypatch):
        monkeypatch.setenv("VITE_SUPABASE_URL", "https://old.supabase.co")
        data = load_config_from_env()
        assert data["backend"]["url"] == "https://old.supabase.co"

    def test_new_name_wins_over_deprecated(self, monkeypatch):
        monkeypatch.setenv("VITE_SUPABASE_URL", "https://old.supabase.co")
        monkeypatch.setenv("MIVNA_SUPABASE_URL", "https://new.supabase.co")
        assert load_config_from_env()["backend"]["url"] == "https://new.supabase.co"

    def test_invalid_number_is_ignored(self, monkeypatch):
        monkeypatch.setenv("MIVNA_AUTH_CALLBACK_PORT", "not-a-port")
        assert "auth" not in load_config_from_env()

    def test_expand_env_vars(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        data = _expand_env_vars({"backend": {"anon_key": "${MY_KEY}", "url": "$MISSING_VAR"}})
        assert data["backend"]["anon_key"] == "secret"
        assert data["backend"]["url"] == "$MISSING_VAR"


class TestConfigFiles:
    def test_load_yaml_rc(self, tmp_path):
        path = tmp_path / ".mivnarc"
        path.write_text("backend:\n  url: https://abcd.supabase.co\nlogging:\n  level: DEBUG\n")
        data = load_config_file(path)
        assert data["backend"]["url"] == "https://abcd.supabase.co"
        assert data["logging"]["level"] == "DEBUG"

    def test_load_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"http": {"timeout": 5}}))
        assert load_config_file(path) == {"http": {"timeout": 5}}

    def test_load_toml(self, tmp_path):
        path = tmp_path / "mivna.toml"
        path.write_text('[analytics]\ndomain = "mivna.app"\n')
        assert load_config_file(path) == {"analytics": {"domain": "mivna.app"}}

    def test_invalid_toml_raises(self, tmp_path):
        path = tmp_path / "mivna.toml"
        path.write_text("[analytics\n")
        with pytest.raises(ConfigError):
            load_config_file(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config_file(tmp_path / "nope.toml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("[x]")
        with pytest.raises(ConfigError, match="Unsupported"):
            load_config_file(path)

    def test_find_config_in_parent(self, tmp_path):
        (tmp_path / "mivna.toml").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == tmp_path / "mivna.toml"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "mivna.toml"
        path.write_text('[backend]\nurl = "https://file.supabase.co"\nanon_key = "file-key"\n')
        monkeypatch.setenv("MIVNA_SUPABASE_URL", "https://env.supabase.co")

        config = load_config(config_file=path)

        assert config.backend.url == "https://env.supabase.co"
        assert config.backend.anon_key == "file-key"


class TestValidateConfig:
    def test_valid_config_has_no_warnings(self):
        assert validate_config(_valid_config()) == []

    def test_missing_backend_settings(self):
        with pytest.raises(ConfigError, match="MIVNA_SUPABASE_URL, MIVNA_SUPABASE_ANON_KEY"):
            validate_config(MivnaConfig())

    def test_relative_url_rejected(self):
        with pytest.raises(ConfigError, match="not a valid URL"):
            validate_config(_valid_config(url="abcd.supabase.co"))

    def test_plain_http_warns_except_localhost(self):
        assert validate_config(_valid_config(url="http://localhost:54321")) == []
        warnings = validate_config(_valid_config(url="http://abcd.example.com"))
        assert any("plain HTTP" in w for w in warnings)

    def test_negative_retries_rejected(self):
        config = _valid_config()
        config.http.max_retries = -1
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_non_positive_timeout_rejected(self):
        config = _valid_config()
        config.http.timeout = 0
        with pytest.raises(ConfigError, match="http.timeout"):
            validate_config(config)

    def test_base_delay_above_max_delay_rejected(self):
        config = _valid_config()
        config.http.base_delay = 20.0
        with pytest.raises(ConfigError, match="base_delay"):
            validate_config(config)

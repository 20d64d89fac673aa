"""Configuration management for Mivna.

Configuration Priority Chain (highest to lowest):
1. Command-line arguments (--log-level, --log-format, etc.)
2. Environment variables (MIVNA_SUPABASE_URL, MIVNA_SUPABASE_ANON_KEY, etc.)
3. Config file (.mivnarc, mivna.toml)
4. Built-in defaults

Config files are searched hierarchically:
1. Current directory
2. Parent directories (up to root)
3. User home directory (~/.mivnarc or ~/.config/mivna.toml)

Environment Variable Names:
- MIVNA_SUPABASE_URL (required)
- MIVNA_SUPABASE_ANON_KEY (required)
- MIVNA_AUTH_CALLBACK_PORT
- MIVNA_AUTH_BOOTSTRAP_TIMEOUT
- MIVNA_HTTP_TIMEOUT
- MIVNA_HTTP_MAX_RETRIES
- MIVNA_HTTP_BASE_DELAY
- MIVNA_HTTP_MAX_DELAY
- MIVNA_LOG_LEVEL (or LOG_LEVEL)
- MIVNA_LOG_FORMAT (or LOG_FORMAT)
- MIVNA_LOG_FILE (or LOG_FILE)
- MIVNA_SENTRY_DSN (or SENTRY_DSN)
- MIVNA_ENVIRONMENT
- MIVNA_PLAUSIBLE_DOMAIN

The browser build used VITE_SUPABASE_URL / VITE_SUPABASE_ANON_KEY; those names
are still read, with a deprecation warning.

Example .mivnarc (YAML):
```yaml
backend:
  url: https://abcd.supabase.co
  anon_key: ${MIVNA_SUPABASE_ANON_KEY}

auth:
  callback_port: 8787
  bootstrap_timeout: 5.0

logging:
  level: INFO
  format: human
```

Example mivna.toml:
```toml
[backend]
url = "https://abcd.supabase.co"
anon_key = "${MIVNA_SUPABASE_ANON_KEY}"

[analytics]
domain = "mivna.app"
```
"""

import json
import os
import re
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlparse

import yaml

from mivna.logging_config import get_logger

logger = get_logger(__name__)


CONFIG_FILE_NAMES = (".mivnarc", "mivna.toml")

# Mapping of deprecated env vars to their new names
_DEPRECATED_ENV_VARS = {
    "VITE_SUPABASE_URL": "MIVNA_SUPABASE_URL",
    "VITE_SUPABASE_ANON_KEY": "MIVNA_SUPABASE_ANON_KEY",
    "VITE_SENTRY_DSN": "MIVNA_SENTRY_DSN",
    "SUPABASE_URL": "MIVNA_SUPABASE_URL",
    "SUPABASE_ANON_KEY": "MIVNA_SUPABASE_ANON_KEY",
}

REQUIRED_ENV_VARS = ("MIVNA_SUPABASE_URL", "MIVNA_SUPABASE_ANON_KEY")


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


def clean_env_value(value: Optional[str]) -> str:
    """Trim a value and strip embedded newlines and tabs.

    Values pasted into hosting dashboards regularly pick up stray line breaks,
    which silently corrupt URLs and keys.
    """
    if not value:
        return ""
    return re.sub(r"[\n\r\t]", "", value.strip())


def _get_env_with_fallback(new_key: str, old_key: Optional[str] = None) -> Optional[str]:
    """Get environment variable with deprecation warning for old keys.

    Args:
        new_key: The new (preferred) environment variable name
        old_key: The deprecated environment variable name (optional)

    Returns:
        The cleaned environment variable value, or None if not set
    """
    if value := clean_env_value(os.getenv(new_key)):
        return value

    if old_key:
        if value := clean_env_value(os.getenv(old_key)):
            return value

    for deprecated, replacement in _DEPRECATED_ENV_VARS.items():
        if replacement == new_key:
            if value := clean_env_value(os.getenv(deprecated)):
                logger.warning(
                    f"Environment variable '{deprecated}' is deprecated, use '{new_key}' instead"
                )
                return value

    return None


@dataclass
class BackendConfig:
    """Hosted backend (Supabase) connection settings."""
    url: str = ""
    anon_key: str = ""


@dataclass
class AuthConfig:
    """Authentication flow settings."""
    callback_port: int = 8787
    callback_path: str = "/callback"
    oauth_timeout: float = 300.0  # 5 minutes for the browser round trip
    bootstrap_timeout: float = 5.0  # Hard cap on session reconciliation
    scopes: str = "repo read:user"
    session_dir: Optional[str] = None  # Defaults to ~/.mivna


@dataclass
class HttpConfig:
    """HTTP client and retry settings."""
    timeout: float = 30.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "human"  # "human" or "json"
    file: Optional[str] = None


@dataclass
class SentryConfig:
    """Sentry error tracking configuration."""
    dsn: Optional[str] = None
    environment: str = "development"
    traces_sample_rate: float = 1.0


@dataclass
class AnalyticsConfig:
    """Plausible analytics configuration (disabled without a domain)."""
    domain: Optional[str] = None
    endpoint: str = "https://plausible.io/api/event"
    app_url: str = "https://mivna.app"


@dataclass
class MivnaConfig:
    """Complete Mivna configuration."""
    backend: BackendConfig = field(default_factory=BackendConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MivnaConfig":
        """Create config from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            MivnaConfig instance

        Raises:
            ConfigError: If a section contains unknown keys
        """
        data = _expand_env_vars(data)

        try:
            return cls(
                backend=BackendConfig(**data.get("backend", {})),
                auth=AuthConfig(**data.get("auth", {})),
                http=HttpConfig(**data.get("http", {})),
                logging=LoggingConfig(**data.get("logging", {})),
                sentry=SentryConfig(**data.get("sentry", {})),
                analytics=AnalyticsConfig(**data.get("analytics", {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    @property
    def session_dir(self) -> Path:
        """Directory holding the cached session and org selection."""
        if self.auth.session_dir:
            return Path(self.auth.session_dir).expanduser()
        return Path.home() / ".mivna"


def _expand_env_vars(data: Union[Dict, list, str, Any]) -> Any:
    """Recursively expand environment variables in config data.

    Supports ${VAR_NAME} and $VAR_NAME syntax.
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = re.compile(r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)')

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return pattern.sub(replace_var, data)
    else:
        return data


def find_config_file(start_dir: Optional[Path] = None) -> Optional[Path]:
    """Find config file using hierarchical search.

    Searches start_dir (or the current directory), then each parent up to
    the filesystem root, then ``~/.mivnarc`` and ``~/.config/mivna.toml``.

    Args:
        start_dir: Starting directory for search (default: current directory)

    Returns:
        Path to config file, or None if not found
    """
    current = Path.cwd() if start_dir is None else Path(start_dir).resolve()

    while True:
        for name in CONFIG_FILE_NAMES:
            candidate = current / name
            if candidate.is_file():
                logger.info(f"Found config file: {candidate}")
                return candidate

        parent = current.parent
        if parent == current:
            break
        current = parent

    home = Path.home()
    for candidate in (home / ".mivnarc", home / ".config" / "mivna.toml"):
        if candidate.is_file():
            logger.info(f"Found config file: {candidate}")
            return candidate

    logger.debug("No config file found")
    return None


def load_config_file(file_path: Path) -> Dict[str, Any]:
    """Load configuration from file.

    Supports:
    - .mivnarc (YAML or JSON)
    - mivna.toml (TOML)

    Args:
        file_path: Path to config file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be parsed or format not supported
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise ConfigError(f"Config file not found: {file_path}")

    try:
        content = file_path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config file {file_path}: {e}")

    if file_path.name == ".mivnarc" or file_path.suffix in (".yaml", ".yml", ".json"):
        if file_path.suffix != ".json":
            try:
                data = yaml.safe_load(content)
                logger.debug(f"Loaded YAML config from {file_path}")
                return data or {}
            except yaml.YAMLError:
                pass  # Try JSON

        try:
            data = json.loads(content)
            logger.debug(f"Loaded JSON config from {file_path}")
            return data
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse {file_path} as YAML or JSON: {e}")

    elif file_path.suffix == ".toml":
        try:
            data = tomllib.loads(content)
            logger.debug(f"Loaded TOML config from {file_path}")
            return data
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse TOML config {file_path}: {e}")

    else:
        raise ConfigError(f"Unsupported config file format: {file_path}")


def _env_number(key: str, cast, old_key: Optional[str] = None):
    raw = _get_env_with_fallback(key, old_key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid {key} value: {raw}, ignoring")
        return None


def load_config_from_env() -> Dict[str, Any]:
    """Load configuration from environment variables.

    Returns:
        Configuration dictionary with values from environment
    """
    config: Dict[str, Any] = {}

    backend = {}
    if url := _get_env_with_fallback("MIVNA_SUPABASE_URL"):
        backend["url"] = url
    if anon_key := _get_env_with_fallback("MIVNA_SUPABASE_ANON_KEY"):
        backend["anon_key"] = anon_key
    if backend:
        config["backend"] = backend

    auth = {}
    if (port := _env_number("MIVNA_AUTH_CALLBACK_PORT", int)) is not None:
        auth["callback_port"] = port
    if (timeout := _env_number("MIVNA_AUTH_BOOTSTRAP_TIMEOUT", float)) is not None:
        auth["bootstrap_timeout"] = timeout
    if session_dir := _get_env_with_fallback("MIVNA_SESSION_DIR"):
        auth["session_dir"] = session_dir
    if auth:
        config["auth"] = auth

    http = {}
    if (timeout := _env_number("MIVNA_HTTP_TIMEOUT", float)) is not None:
        http["timeout"] = timeout
    if (retries := _env_number("MIVNA_HTTP_MAX_RETRIES", int)) is not None:
        http["max_retries"] = retries
    if (base_delay := _env_number("MIVNA_HTTP_BASE_DELAY", float)) is not None:
        http["base_delay"] = base_delay
    if (max_delay := _env_number("MIVNA_HTTP_MAX_DELAY", float)) is not None:
        http["max_delay"] = max_delay
    if http:
        config["http"] = http

    logging_cfg = {}
    if level := _get_env_with_fallback("MIVNA_LOG_LEVEL", "LOG_LEVEL"):
        logging_cfg["level"] = level.upper()
    if log_format := _get_env_with_fallback("MIVNA_LOG_FORMAT", "LOG_FORMAT"):
        logging_cfg["format"] = log_format.lower()
    if log_file := _get_env_with_fallback("MIVNA_LOG_FILE", "LOG_FILE"):
        logging_cfg["file"] = log_file
    if logging_cfg:
        config["logging"] = logging_cfg

    sentry = {}
    if dsn := _get_env_with_fallback("MIVNA_SENTRY_DSN", "SENTRY_DSN"):
        sentry["dsn"] = dsn
    if environment := _get_env_with_fallback("MIVNA_ENVIRONMENT", "ENVIRONMENT"):
        sentry["environment"] = environment
    if sentry:
        config["sentry"] = sentry

    if domain := _get_env_with_fallback("MIVNA_PLAUSIBLE_DOMAIN"):
        config["analytics"] = {"domain": domain}

    return config


def _deep_merge_dicts(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries (base is not modified)."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value

    return result


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    search_path: Optional[Path] = None,
    use_env: bool = True,
) -> MivnaConfig:
    """Load Mivna configuration with fallback chain.

    Args:
        config_file: Explicit path to config file (optional)
        search_path: Starting directory for hierarchical search (default: current dir)
        use_env: Whether to load from environment variables (default: True)

    Returns:
        MivnaConfig instance with merged configuration

    Raises:
        ConfigError: If specified config file cannot be loaded
    """
    merged_data: Dict[str, Any] = {}

    config_path = Path(config_file) if config_file else find_config_file(search_path)
    if config_path:
        file_data = load_config_file(config_path)
        logger.info(f"Loaded configuration from {config_path}")
        merged_data = _deep_merge_dicts(merged_data, file_data)

    if use_env:
        env_data = load_config_from_env()
        if env_data:
            logger.debug("Loaded configuration from environment variables")
            merged_data = _deep_merge_dicts(merged_data, env_data)

    return MivnaConfig.from_dict(merged_data)


def validate_config(config: MivnaConfig) -> List[str]:
    """Validate configuration and return warnings.

    Args:
        config: The configuration to validate

    Returns:
        List of warning messages (empty if no warnings)

    Raises:
        ConfigError: If the backend connection settings are unusable
    """
    missing = []
    if not clean_env_value(config.backend.url):
        missing.append("MIVNA_SUPABASE_URL")
    if not clean_env_value(config.backend.anon_key):
        missing.append("MIVNA_SUPABASE_ANON_KEY")
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    parsed = urlparse(config.backend.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"MIVNA_SUPABASE_URL is not a valid URL: {config.backend.url}")

    warnings = []
    if parsed.scheme == "http" and parsed.hostname not in ("localhost", "127.0.0.1"):
        warnings.append("Backend URL uses plain HTTP; credentials will be sent unencrypted")
    if config.http.max_retries < 0:
        raise ConfigError("http.max_retries must be >= 0")
    if config.http.max_retries > 10:
        warnings.append(f"http.max_retries={config.http.max_retries} is unusually high")
    if config.http.timeout <= 0:
        raise ConfigError("http.timeout must be positive")
    if config.http.base_delay > config.http.max_delay:
        raise ConfigError("http.base_delay must not exceed http.max_delay")
    if config.auth.bootstrap_timeout <= 0:
        raise ConfigError("auth.bootstrap_timeout must be positive")
    if config.logging.format not in ("human", "json"):
        warnings.append(f"Unknown log format '{config.logging.format}', using human")

    return warnings

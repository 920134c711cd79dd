"""
Configuration for the progress log module.

Values are resolved in this order, later sources winning:
1. Built-in defaults
2. The first readable JSON config file:
   - $AGENT_PROGRESS_CONFIG_PATH
   - ./agent-progress.config.json
   - ~/.agent-progress.config.json
3. Environment variables
4. The config dict passed to mount()

Example config file::

    {
      "dbPath": "~/.agent-progress/data.db",
      "openai": {"apiKey": "${OPENAI_API_KEY}", "model": "gpt-4o-mini"},
      "logging": {"level": "info"}
    }
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from .summariser import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "agent-progress.config.json"
DEFAULT_DB_PATH = "~/.agent-progress/data.db"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_ENV_VAR = re.compile(r"\$\{([^}]+)\}")


class ConfigError(ValueError):
    """Configuration is present but invalid."""


@dataclass
class ProgressConfig:
    """Resolved module configuration."""
    db_path: Path
    openai_api_key: str = ""
    openai_base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    log_level: str = "info"
    summary_timeout: float = DEFAULT_TIMEOUT


def expand_home(path: str) -> str:
    if path.startswith("~/"):
        return str(Path.home()) + path[1:]
    return path


def expand_env_vars(value: str) -> str:
    """Replace ${VAR} references with environment values (empty if unset)."""
    return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1), ""), value)


def config_file_candidates() -> list[Path]:
    candidates = []
    override = os.environ.get("AGENT_PROGRESS_CONFIG_PATH")
    if override:
        candidates.append(Path(override).expanduser())
    candidates.append(Path.cwd() / CONFIG_FILENAME)
    candidates.append(Path.home() / f".{CONFIG_FILENAME}")
    return candidates


def read_config_file() -> Optional[dict]:
    """Return the first config file that parses, or None."""
    for path in config_file_candidates():
        if not path.exists():
            continue
        try:
            with open(path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read config file at {path}: {e}; continuing with defaults")
            continue
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file at {path}: top level must be an object")
            continue
        logger.debug(f"Loaded config file {path}")
        return data
    return None


def config_section(config: dict, key: str) -> dict:
    """Return a nested config object, or {} when absent."""
    section = config.get(key)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config file key '{key}' must be an object")
    return section


def parse_timeout(value: Any, source: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{source} must be a number of seconds, got {value!r}") from None


def validate_url(url: str, field: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"{field} must be a valid HTTP or HTTPS URL (e.g., https://api.openai.com/v1)")


def validate_log_level(level: str) -> None:
    if level not in LOG_LEVELS:
        raise ConfigError(f"Log level must be one of: {', '.join(LOG_LEVELS)}")


def validate_db_path(path: str) -> None:
    if not path.startswith("/") and not path.startswith("~/"):
        raise ConfigError("Database path must be absolute or start with ~/")
    for bad in ("..", "\0", "\r", "\n"):
        if bad in path:
            raise ConfigError("Database path contains invalid characters")


def load_config(overrides: Optional[dict[str, Any]] = None) -> ProgressConfig:
    """
    Resolve configuration from defaults, config file, environment and overrides.

    Args:
        overrides: mount() config with optional keys storage_path,
            openai_api_key, openai_base_url, model, log_level, summary_timeout

    Raises:
        ConfigError: A resolved value is invalid
    """
    overrides = overrides or {}

    db_path = DEFAULT_DB_PATH
    api_key = ""
    base_url = DEFAULT_BASE_URL
    model = DEFAULT_MODEL
    log_level = "info"
    timeout = DEFAULT_TIMEOUT

    file_config = read_config_file() or {}
    if file_config.get("dbPath"):
        db_path = file_config["dbPath"]
    openai_section = config_section(file_config, "openai")
    if openai_section.get("apiKey"):
        api_key = expand_env_vars(openai_section["apiKey"])
    if openai_section.get("baseUrl"):
        base_url = openai_section["baseUrl"]
    if openai_section.get("model"):
        model = openai_section["model"]
    if openai_section.get("timeout"):
        timeout = parse_timeout(openai_section["timeout"], "openai.timeout")
    logging_section = config_section(file_config, "logging")
    if logging_section.get("level"):
        log_level = logging_section["level"]

    env = os.environ
    db_path = env.get("AGENT_PROGRESS_DB_PATH") or db_path
    api_key = env.get("OPENAI_API_KEY") or api_key
    base_url = env.get("OPENAI_BASE_URL") or base_url
    model = env.get("AGENT_PROGRESS_MODEL") or model
    env_level = env.get("AGENT_PROGRESS_LOG_LEVEL")
    if env_level in LOG_LEVELS:
        log_level = env_level

    db_path = str(overrides.get("storage_path") or db_path)
    api_key = overrides.get("openai_api_key") or api_key
    base_url = overrides.get("openai_base_url") or base_url
    model = overrides.get("model") or model
    log_level = overrides.get("log_level") or log_level
    timeout = parse_timeout(overrides.get("summary_timeout") or timeout, "summary_timeout")

    if not model:
        raise ConfigError("Model name cannot be empty")
    if timeout <= 0:
        raise ConfigError("Summary timeout must be positive")
    validate_url(base_url, "OpenAI base URL")
    validate_log_level(log_level)
    validate_db_path(db_path)

    return ProgressConfig(
        db_path=Path(expand_home(db_path)),
        openai_api_key=api_key,
        openai_base_url=base_url,
        model=model,
        log_level=log_level,
        summary_timeout=timeout,
    )


def configure_logging(level: str) -> None:
    """Set the package logger to the configured level."""
    logging.getLogger(__package__).setLevel(LOG_LEVELS.get(level, logging.INFO))

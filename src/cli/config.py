"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./dbchat.yaml (working directory)
3. ~/.dbchat/config.yaml (user home)

Environment variables override YAML: DBCHAT_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

LOG_FORMATS = {
    "text": "%(levelname)s:%(name)s:%(message)s",
    "detailed": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
}


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ApiConfig(BaseModel):
    """Where the backend lives and how long to wait for it."""

    base_url: str = "http://localhost:8000"
    # None means requests wait indefinitely.
    timeout: float | None = None

    @field_validator("timeout", mode="before")
    @classmethod
    def _blank_timeout(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "none", "null"):
            return None
        return value


class CredentialsConfig(BaseModel):
    """Where the bearer token is kept."""

    backend: Literal["keyring", "memory"] = "keyring"
    service_name: str = "com.dbchat.client"


class ChatConfig(BaseModel):
    """Conversation defaults."""

    page_name: str = "chat"
    history_limit: int = 50


class LoggingConfig(BaseModel):
    """Client-side logging."""

    level: str = "warning"
    format: Literal["text", "detailed"] = "text"
    file: str | None = None


class DbChatConfig(BaseModel):
    """Top-level configuration for the dbchat client."""

    api: ApiConfig = ApiConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    chat: ChatConfig = ChatConfig()
    logging: LoggingConfig = LoggingConfig()


def _find_config_file() -> Path | None:
    candidates = [
        Path.cwd() / "dbchat.yaml",
        Path.cwd() / "dbchat.yml",
        Path.home() / ".dbchat" / "config.yaml",
        Path.home() / ".dbchat" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply DBCHAT_<SECTION>_<KEY> env var overrides to config data.

    For example, ``DBCHAT_API_BASE_URL`` maps to section ``api``, field
    ``base_url``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "DBCHAT_"
    known_sections = sorted(DbChatConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if not isinstance(data.get(matched_section), dict):
            data[matched_section] = {}
        # Pydantic coerces numeric and boolean strings during validation
        data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> DbChatConfig:
    """Load dbchat configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.dbchat/).

    Returns:
        Parsed and validated DbChatConfig. Defaults (plus env overrides)
        when no config file exists.

    Raises:
        FileNotFoundError: An explicit config_path does not exist.
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return DbChatConfig(**data)


def configure_logging(cfg: LoggingConfig) -> None:
    """Configure root logging once for the CLI process."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.file:
        handlers.append(logging.FileHandler(Path(cfg.file).expanduser()))
    logging.basicConfig(
        level=getattr(logging, cfg.level.upper(), logging.WARNING),
        format=LOG_FORMATS[cfg.format],
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

"""Configuration loading for vicare-auth.

Settings come from environment variables, optionally seeded from a ``.env``
file (project directory first, then the user config directory).
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .callback import DEFAULT_PORT, DEFAULT_TIMEOUT
from .flow import DEFAULT_SCOPE
from .store import DEFAULT_SETTINGS_PATH

CONFIG_DIR = Path.home() / ".config" / "vicare-auth"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    CONFIG_DIR / ".env",
]


class ConfigError(Exception):
    """Missing or invalid configuration value."""

    pass


@dataclass
class AuthConfig:
    """Complete vicare-auth configuration."""

    client_id: str
    scope: str = DEFAULT_SCOPE
    callback_host: str | None = None
    callback_port: int = DEFAULT_PORT
    callback_timeout: float = DEFAULT_TIMEOUT
    settings_path: Path = DEFAULT_SETTINGS_PATH
    env_path: Path | None = None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def load_config(env_path: Path | None = None) -> AuthConfig:
    """Load configuration from the environment.

    Args:
        env_path: Explicit path to .env file (optional)

    Returns:
        AuthConfig built from VICARE_* environment variables

    Raises:
        ConfigError: If VICARE_CLIENT_ID is missing or a value is invalid
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    client_id = os.environ.get("VICARE_CLIENT_ID", "").strip()
    if not client_id:
        raise ConfigError(
            "No client ID configured.\n\n"
            "Register a client at the Viessmann developer portal with the redirect URI\n"
            f"http://<this machine's address>:{DEFAULT_PORT} and set VICARE_CLIENT_ID\n"
            "in the environment or in a .env file, e.g.:\n\n"
            "  VICARE_CLIENT_ID=0123456789abcdef"
        )

    settings_path = os.environ.get("VICARE_SETTINGS_PATH")

    return AuthConfig(
        client_id=client_id,
        scope=os.environ.get("VICARE_SCOPE") or DEFAULT_SCOPE,
        callback_host=os.environ.get("VICARE_CALLBACK_HOST") or None,
        callback_port=_int_env("VICARE_CALLBACK_PORT", DEFAULT_PORT),
        callback_timeout=_float_env("VICARE_CALLBACK_TIMEOUT", DEFAULT_TIMEOUT),
        settings_path=Path(settings_path).expanduser() if settings_path else DEFAULT_SETTINGS_PATH,
        env_path=env_file,
    )

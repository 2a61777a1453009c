"""Runtime configuration for the devops engine.

Values come from the process environment, optionally seeded from a
``.env`` file in the working directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from einodev.errors import ConfigError


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class DevConfig:
    """Settings shared by the container and debug services."""

    log_level: str = "INFO"
    log_json: bool = False
    max_graphs: int = 100
    state_buffer: int = 100

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> DevConfig:
        """Build a config from ``EINODEV_*`` environment variables."""
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        return cls(
            log_level=os.getenv("EINODEV_LOG_LEVEL", cls.log_level).upper(),
            log_json=_env_bool("EINODEV_LOG_JSON", cls.log_json),
            max_graphs=_env_int("EINODEV_MAX_GRAPHS", cls.max_graphs),
            state_buffer=_env_int("EINODEV_STATE_BUFFER", cls.state_buffer),
        )

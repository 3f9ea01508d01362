"""Client configuration (no hidden globals).

Every component that needs configuration receives a :class:`Settings`
instance at construction time.  ``Settings.from_env()`` is the convenience
path for applications; tests build the dataclass directly so several
configurations can live side by side in the same process.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from pathlib import Path
from typing import Any
from typing import Mapping

from dotenv import load_dotenv

from relay.errors import ConfigError

# ``_REPO_ROOT`` points at the repository root (one level above ``relay``).
_REPO_ROOT = Path(__file__).resolve().parents[2]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


@dataclass(frozen=True)
class Settings:  # noqa: D401 – simple data container
    """Immutable settings container for the dispatcher stack."""

    # Backend ----------------------------------------------------------
    api_base_url: str = "http://10.0.2.2:3000/api"
    refresh_path: str = "/auth/refresh"
    health_path: str = "/health"

    # Timeouts (seconds) ----------------------------------------------
    default_timeout: float = 30.0
    media_timeout: float = 120.0

    # Offline queue -----------------------------------------------------
    max_queue_retries: int = 3
    drain_retry_enabled: bool = True
    drain_retry_base_delay: float = 2.0
    drain_retry_max_delay: float = 60.0

    # Connectivity probe ------------------------------------------------
    health_interval: float = 15.0

    # Persistence -------------------------------------------------------
    database_url: str = "sqlite:///./relay.db"
    fernet_secret: str | None = None

    # Misc
    log_level: str = "INFO"
    default_headers: Mapping[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json", "Accept": "application/json"}
    )

    def __post_init__(self) -> None:
        _validate(self)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, load_dotenv_file: bool = True) -> Settings:
        """Populate :class:`Settings` from environment variables.

        When *env* is omitted ``os.environ`` is used, after loading the
        optional ``.env`` file at the repository root.
        """

        if env is None:
            env_path = _REPO_ROOT / ".env"
            if load_dotenv_file and env_path.exists():
                load_dotenv(env_path, override=False)
            env = os.environ

        defaults = cls()
        return cls(
            api_base_url=env.get("RELAY_API_BASE_URL", defaults.api_base_url),
            refresh_path=env.get("RELAY_REFRESH_PATH", defaults.refresh_path),
            health_path=env.get("RELAY_HEALTH_PATH", defaults.health_path),
            default_timeout=_float(env, "RELAY_DEFAULT_TIMEOUT_SECONDS", defaults.default_timeout),
            media_timeout=_float(env, "RELAY_MEDIA_TIMEOUT_SECONDS", defaults.media_timeout),
            max_queue_retries=_int(env, "RELAY_MAX_QUEUE_RETRIES", defaults.max_queue_retries),
            drain_retry_enabled=(
                _truthy(env["RELAY_DRAIN_RETRY_ENABLED"])
                if "RELAY_DRAIN_RETRY_ENABLED" in env
                else defaults.drain_retry_enabled
            ),
            drain_retry_base_delay=_float(env, "RELAY_DRAIN_RETRY_BASE_DELAY", defaults.drain_retry_base_delay),
            drain_retry_max_delay=_float(env, "RELAY_DRAIN_RETRY_MAX_DELAY", defaults.drain_retry_max_delay),
            health_interval=_float(env, "RELAY_HEALTH_INTERVAL_SECONDS", defaults.health_interval),
            database_url=env.get("RELAY_DATABASE_URL", defaults.database_url),
            fernet_secret=env.get("RELAY_FERNET_SECRET") or None,
            log_level=env.get("LOG_LEVEL", defaults.log_level),
        )

    # Helper for tests to derive a variant without mutating the original
    def override(self, **kwargs: Any) -> Settings:
        for key in kwargs:
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no attribute '{key}'")
        return replace(self, **kwargs)

    def timeout_for(self, timeout_class: str) -> float:
        """Return the transport timeout for an operation's timeout class."""

        if timeout_class == "media":
            return self.media_timeout
        return self.default_timeout


def _validate(settings: Settings) -> None:  # noqa: D401 – helper
    """Fail fast on values the dispatcher cannot work with."""

    problems = []

    if not settings.api_base_url:
        problems.append("api_base_url must not be empty")
    if settings.default_timeout <= 0 or settings.media_timeout <= 0:
        problems.append("timeouts must be positive")
    if settings.max_queue_retries < 1:
        problems.append("max_queue_retries must be >= 1")
    if settings.drain_retry_base_delay < 0 or settings.drain_retry_max_delay < settings.drain_retry_base_delay:
        problems.append("drain retry delays must satisfy 0 <= base <= max")
    if settings.health_interval <= 0:
        problems.append("health_interval must be positive")
    if not settings.refresh_path.startswith("/"):
        problems.append("refresh_path must start with '/'")

    if problems:
        raise ConfigError("Invalid relay settings: " + "; ".join(problems))


__all__ = [
    "Settings",
]

"""
Process settings for kraken_dca.

Philosophy:
- ENV = secrets and deployment-specific values (credentials, ntfy topic, log level)
- Strategy JSON = what to buy and when (see strategy.py)
- Code = sane defaults for timing knobs, overridable via ENV
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from kraken_dca.core.application.ports import ExchangeCredentials
from kraken_dca.utils.exceptions import ConfigError

DEFAULT_API_URL = "https://api.kraken.com"
DEFAULT_NTFY_URL = "https://ntfy.sh"


# ============= CODE DEFAULTS =============

@dataclass
class PollingDefaults:
    """Fill confirmation polling (seconds)"""
    INTERVAL_SEC: float = 1.5
    TIMEOUT_SEC: float = 30.0


@dataclass
class TechnicalDefaults:
    HTTP_TIMEOUT_SEC: float = 30.0


# ============= HELPERS =============

def _get_env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _get_float(name: str, default: float) -> float:
    val = _get_env(name)
    if not val:
        return default
    try:
        return float(val)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {val!r}") from exc


def _get_secret(name: str, default: str = "") -> str:
    """
    Read a secret from ENV.
    `<NAME>_FILE` takes precedence and points to a file holding the value.
    """
    file_path = _get_env(f"{name}_FILE")
    if file_path:
        try:
            return Path(file_path).read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"cannot read {name}_FILE={file_path}: {exc}") from exc
    return _get_env(name, default)


# ============= SETTINGS =============

@dataclass
class Settings:
    KRAKEN_API_KEY: str = ""
    KRAKEN_API_SECRET: str = ""
    KRAKEN_API_URL: str = DEFAULT_API_URL

    NTFY_TOPIC: str = ""
    NTFY_URL: str = DEFAULT_NTFY_URL
    NTFY_CLICK_URL: str = ""

    LOG_LEVEL: str = "INFO"

    polling: PollingDefaults = field(default_factory=PollingDefaults)
    technical: TechnicalDefaults = field(default_factory=TechnicalDefaults)

    def __post_init__(self) -> None:
        self.polling.INTERVAL_SEC = _get_float("DCA_POLL_INTERVAL_SEC", self.polling.INTERVAL_SEC)
        self.polling.TIMEOUT_SEC = _get_float("DCA_POLL_TIMEOUT_SEC", self.polling.TIMEOUT_SEC)
        self.technical.HTTP_TIMEOUT_SEC = _get_float("HTTP_TIMEOUT_SEC", self.technical.HTTP_TIMEOUT_SEC)
        self._validate()

    def _validate(self) -> None:
        if self.polling.INTERVAL_SEC <= 0:
            raise ConfigError("DCA_POLL_INTERVAL_SEC must be > 0")
        if self.polling.TIMEOUT_SEC <= 0:
            raise ConfigError("DCA_POLL_TIMEOUT_SEC must be > 0")
        if self.technical.HTTP_TIMEOUT_SEC <= 0:
            raise ConfigError("HTTP_TIMEOUT_SEC must be > 0")

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from ENV"""
        return cls(
            KRAKEN_API_KEY=_get_secret("KRAKEN_API_KEY"),
            KRAKEN_API_SECRET=_get_secret("KRAKEN_API_SECRET"),
            KRAKEN_API_URL=_get_env("KRAKEN_API_URL", DEFAULT_API_URL) or DEFAULT_API_URL,
            NTFY_TOPIC=_get_env("NTFY_TOPIC"),
            NTFY_URL=_get_env("NTFY_URL", DEFAULT_NTFY_URL) or DEFAULT_NTFY_URL,
            NTFY_CLICK_URL=_get_env("NTFY_CLICK_URL"),
            LOG_LEVEL=_get_env("LOG_LEVEL", "INFO") or "INFO",
        )

    def kraken_credentials(self) -> ExchangeCredentials:
        """Credentials for private calls; both key and secret are mandatory."""
        if not self.KRAKEN_API_KEY or not self.KRAKEN_API_SECRET:
            raise ConfigError(
                "Missing required Kraken API credentials: KRAKEN_API_KEY and KRAKEN_API_SECRET"
            )
        return ExchangeCredentials(
            api_key=self.KRAKEN_API_KEY,
            api_secret=self.KRAKEN_API_SECRET,
            api_url=self.KRAKEN_API_URL,
        )


# ============= SINGLETON =============

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.load()
    return _settings_instance


def reload_settings() -> Settings:
    """Drop the cached instance and read ENV again (tests)"""
    global _settings_instance
    _settings_instance = None
    return get_settings()


__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_NTFY_URL",
    "PollingDefaults",
    "Settings",
    "TechnicalDefaults",
    "get_settings",
    "reload_settings",
]

"""
DCA strategy files.

One JSON file describes one independent strategy:

    {
      "name": "bitcoin-weekly",
      "description": "Buy 50 USD of BTC every Monday",
      "dca": {"pair": "XBTUSD", "amount": 50, "currency": "USD",
              "low_balance_threshold": 100},
      "schedule": {"cron": "0 9 * * 1", "timezone": "America/New_York"},
      "notifications": {"ntfy_topic": "my-topic"}
    }

Older files with `amount_usd` / `low_balance_threshold_usd` are still read
(currency is then USD).
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from kraken_dca.core.application.ports import PurchaseOrder
from kraken_dca.utils.decimal import parse_decimal
from kraken_dca.utils.exceptions import ConfigError

DEFAULT_CONFIGS_DIR = "configs"


@dataclass(frozen=True)
class DCAConfig:
    pair: str
    amount: Decimal
    currency: str
    low_balance_threshold: Decimal
    userref: Optional[int] = None

    def purchase_order(self) -> PurchaseOrder:
        return PurchaseOrder(pair=self.pair, amount=self.amount, currency=self.currency, tag=self.userref)


@dataclass(frozen=True)
class ScheduleConfig:
    cron: str
    timezone: str

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class StrategyConfig:
    name: str
    description: str
    dca: DCAConfig
    schedule: ScheduleConfig
    ntfy_topic: Optional[str] = None
    source: Optional[str] = None

    def summary(self) -> dict[str, Any]:
        return {
            "strategy": self.name,
            "description": self.description,
            "pair": self.dca.pair,
            "amount": str(self.dca.amount),
            "currency": self.dca.currency,
            "threshold": str(self.dca.low_balance_threshold),
            "schedule": self.schedule.cron,
            "timezone": self.schedule.timezone,
        }


# ============= VALIDATION =============

def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config must have a '{key}' section")
    return value


def _non_empty_str(section: Mapping[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{where} config must have a valid '{key}' field")
    return value.strip()


def _positive(section: Mapping[str, Any], keys: tuple[str, ...], where: str) -> Decimal:
    key = next((k for k in keys if k in section), keys[0])
    try:
        value = parse_decimal(section.get(key))
    except ValueError as exc:
        raise ConfigError(f"{where} config must have a positive '{key}' field") from exc
    if value <= 0:
        raise ConfigError(f"{where} config must have a positive '{key}' field")
    return value


def validate_cron_expression(expr: str) -> None:
    parts = expr.split()
    if len(parts) != 5:
        raise ConfigError(
            f"Invalid cron expression: {expr} (must have 5 parts: minute hour day month weekday)"
        )
    if not croniter.is_valid(expr):
        raise ConfigError(f"Invalid cron expression: {expr}")


def validate_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone: {name}") from exc


def parse_strategy(raw: Any, *, source: Optional[str] = None) -> StrategyConfig:
    """Validate a decoded JSON document and build a StrategyConfig"""
    if not isinstance(raw, Mapping):
        raise ConfigError("Config must be a JSON object")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("Config must have a 'name' field")

    dca = _section(raw, "dca")
    schedule = _section(raw, "schedule")

    pair = _non_empty_str(dca, "pair", "DCA")
    legacy_usd = "amount_usd" in dca and "amount" not in dca
    if legacy_usd:
        currency = "USD"
    else:
        currency = _non_empty_str(dca, "currency", "DCA").upper()
    amount = _positive(dca, ("amount", "amount_usd"), "DCA")
    threshold = _positive(dca, ("low_balance_threshold", "low_balance_threshold_usd"), "DCA")

    userref = dca.get("userref")
    if userref is not None and (isinstance(userref, bool) or not isinstance(userref, int)):
        raise ConfigError("DCA config 'userref' must be an integer")

    cron = _non_empty_str(schedule, "cron", "Schedule")
    validate_cron_expression(cron)
    tz = _non_empty_str(schedule, "timezone", "Schedule")
    validate_timezone(tz)

    topic: Optional[str] = None
    notifications = raw.get("notifications")
    if notifications is not None:
        if not isinstance(notifications, Mapping):
            raise ConfigError("'notifications' must be an object")
        if notifications.get("ntfy_topic") is not None:
            topic = _non_empty_str(notifications, "ntfy_topic", "Notifications")

    return StrategyConfig(
        name=name.strip(),
        description=str(raw.get("description") or ""),
        dca=DCAConfig(
            pair=pair,
            amount=amount,
            currency=currency,
            low_balance_threshold=threshold,
            userref=userref,
        ),
        schedule=ScheduleConfig(cron=cron, timezone=tz),
        ntfy_topic=topic,
        source=source,
    )


def load_strategy(path: str | Path) -> StrategyConfig:
    """
    Load and validate a strategy file.

    Raises:
        ConfigError: unreadable file, invalid JSON or invalid fields
    """
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to load config from {p}: {exc}") from exc

    try:
        return parse_strategy(raw, source=str(p))
    except ConfigError as exc:
        raise ConfigError(f"Failed to load config from {p}: {exc}") from exc


def list_strategy_files(directory: str | Path = DEFAULT_CONFIGS_DIR) -> list[Path]:
    d = Path(directory)
    if not d.is_dir():
        return []
    return sorted(p for p in d.glob("*.json") if p.is_file())


__all__ = [
    "DCAConfig",
    "DEFAULT_CONFIGS_DIR",
    "ScheduleConfig",
    "StrategyConfig",
    "list_strategy_files",
    "load_strategy",
    "parse_strategy",
    "validate_cron_expression",
    "validate_timezone",
]

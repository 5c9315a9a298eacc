from __future__ import annotations

__all__ = [
    "ConfigError",
    "DCAError",
    "ExchangeApiError",
    "ExchangeError",
    "ExchangeHttpError",
    "NotificationDeliveryError",
    "SignatureError",
]


class DCAError(Exception):
    """Base error for the DCA system."""


class ConfigError(DCAError):
    """Raised on invalid settings or strategy files (fatal at startup only)."""


class SignatureError(DCAError):
    """Raised when a request cannot be signed, e.g. the API secret is not valid base64."""


class ExchangeError(DCAError):
    """Raised when a venue call fails. Never retried automatically."""


class ExchangeHttpError(ExchangeError):
    """The venue answered with a non-2xx HTTP status."""

    def __init__(self, status: int, body: str = "") -> None:
        self.status = int(status)
        self.body = body
        super().__init__(f"Kraken HTTP {self.status}: {body}")


class ExchangeApiError(ExchangeError):
    """The venue answered 2xx but reported errors in the response envelope."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Kraken error: {'; '.join(self.errors)}")


class NotificationDeliveryError(DCAError):
    """The notification endpoint answered with a non-2xx HTTP status."""

    def __init__(self, status: int, body: str = "") -> None:
        self.status = int(status)
        self.body = body
        super().__init__(f"ntfy HTTP {self.status}: {body}")

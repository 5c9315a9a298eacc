from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

import httpx

from kraken_dca.core.application.ports import Notification, Severity
from kraken_dca.utils.exceptions import NotificationDeliveryError
from kraken_dca.utils.http_client import apost
from kraken_dca.utils.logging import get_logger
from kraken_dca.utils.trace import get_trace_id

_log = get_logger("notify.ntfy")

DEFAULT_TAGS: tuple[str, ...] = ("kraken", "dca")


@dataclass(frozen=True)
class SeverityStyle:
    prefix: str
    tag: str
    priority: Optional[str] = None


# severity -> (title prefix, ntfy tag/emoji, priority)
SEVERITY_STYLES: Mapping[Severity, SeverityStyle] = MappingProxyType(
    {
        Severity.SUCCESS: SeverityStyle("✅", "white_check_mark"),
        Severity.WARNING: SeverityStyle("⚠️", "warning"),
        Severity.ERROR: SeverityStyle("🚨", "rotating_light", "high"),
        Severity.INFO: SeverityStyle("ℹ️", "information_source"),
    }
)


@dataclass(frozen=True)
class NtfyConfig:
    topic: str
    base_url: str = "https://ntfy.sh"
    click_url: Optional[str] = None
    timeout_sec: float = 30.0

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.topic}"


class NtfyNotifier:
    """Adapter for ntfy.sh (plain-text POST to {base_url}/{topic})."""

    def __init__(self, config: NtfyConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def config(self) -> NtfyConfig:
        return self._config

    async def send(self, message: Notification, *, priority: Optional[str] = None) -> None:
        """
        POST one message. At-most-once: no retry here or upstream.

        Raises:
            NotificationDeliveryError: on a non-2xx response
        """
        # httpx encodes str header values as ascii; emoji titles need utf-8 bytes
        headers: dict[str, str | bytes] = {
            "Content-Type": "text/plain; charset=utf-8",
            "Title": message.title.encode("utf-8"),
        }
        if message.tags:
            headers["Tags"] = ",".join(message.tags)
        if priority:
            headers["Priority"] = priority
        if self._config.click_url:
            headers["Click"] = self._config.click_url

        resp = await apost(
            self._config.endpoint,
            content=message.body.encode("utf-8"),
            headers=headers,  # type: ignore[arg-type]
            timeout=self._config.timeout_sec,
            client=self._client,
        )
        if not resp.is_success:
            _log.error("ntfy_http_error", extra={"status": resp.status_code, "text": resp.text})
            raise NotificationDeliveryError(resp.status_code, resp.text)

        _log.info("notification_sent", extra={"title": message.title, "tags": list(message.tags)})

    async def notify(self, severity: Severity, title: str, body: str, tags: Sequence[str] = ()) -> None:
        """Decorate by severity (title prefix, tag, priority) and send."""
        message = build_message(severity, title, body, tags)
        await self.send(message, priority=SEVERITY_STYLES[severity].priority)

    async def success(self, title: str, body: str, tags: Sequence[str] = ()) -> None:
        await self.notify(Severity.SUCCESS, title, body, tags)

    async def warning(self, title: str, body: str, tags: Sequence[str] = ()) -> None:
        await self.notify(Severity.WARNING, title, body, tags)

    async def error(self, title: str, body: str, tags: Sequence[str] = ()) -> None:
        await self.notify(Severity.ERROR, title, body, tags)

    async def info(self, title: str, body: str, tags: Sequence[str] = ()) -> None:
        await self.notify(Severity.INFO, title, body, tags)


def build_message(severity: Severity, title: str, body: str, tags: Sequence[str] = ()) -> Notification:
    style = SEVERITY_STYLES[severity]
    all_tags = [style.tag]
    for t in (*DEFAULT_TAGS, *tags):
        if t not in all_tags:
            all_tags.append(t)

    cid = get_trace_id()
    if cid:
        body = f"{body}\n\n[trace:{cid[:12]}]"

    return Notification(title=f"{style.prefix} {title}", body=body, tags=tuple(all_tags))


__all__ = [
    "DEFAULT_TAGS",
    "NtfyConfig",
    "NtfyNotifier",
    "SEVERITY_STYLES",
    "SeverityStyle",
    "build_message",
]

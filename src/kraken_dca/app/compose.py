"""
Dependency assembly.

One process may run several strategies; they share one KrakenClient (and so
one nonce source) but each gets its own job, notifier and scheduler.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from kraken_dca.core.application.scheduler import CronScheduler
from kraken_dca.core.application.use_cases.execute_purchase import DCAJob, OrderExecutor
from kraken_dca.core.infrastructure.brokers.kraken import KrakenClient
from kraken_dca.core.infrastructure.notify.ntfy import NtfyConfig, NtfyNotifier
from kraken_dca.core.infrastructure.settings import Settings
from kraken_dca.core.infrastructure.strategy import StrategyConfig
from kraken_dca.utils.exceptions import ConfigError
from kraken_dca.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StrategyRuntime:
    strategy: StrategyConfig
    job: DCAJob
    scheduler: CronScheduler


@dataclass
class AppContainer:
    settings: Settings
    exchange: KrakenClient
    runtimes: list[StrategyRuntime] = field(default_factory=list)

    def stop(self) -> None:
        for rt in self.runtimes:
            rt.scheduler.stop()


def build_exchange(settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> KrakenClient:
    return KrakenClient(
        credentials=settings.kraken_credentials(),
        client=client,
        timeout_sec=settings.technical.HTTP_TIMEOUT_SEC,
    )


def build_notifier(
    settings: Settings,
    strategy: Optional[StrategyConfig] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> NtfyNotifier:
    """Strategy topic wins over NTFY_TOPIC."""
    topic = (strategy.ntfy_topic if strategy else None) or settings.NTFY_TOPIC
    if not topic:
        raise ConfigError("Missing ntfy topic: set NTFY_TOPIC or notifications.ntfy_topic")
    return NtfyNotifier(
        NtfyConfig(
            topic=topic,
            base_url=settings.NTFY_URL,
            click_url=settings.NTFY_CLICK_URL or None,
            timeout_sec=settings.technical.HTTP_TIMEOUT_SEC,
        ),
        client=client,
    )


def build_job(
    settings: Settings,
    strategy: StrategyConfig,
    exchange: KrakenClient,
    notifier: NtfyNotifier,
) -> DCAJob:
    executor = OrderExecutor(
        exchange,
        poll_interval_sec=settings.polling.INTERVAL_SEC,
        poll_timeout_sec=settings.polling.TIMEOUT_SEC,
    )
    return DCAJob(
        name=strategy.name,
        exchange=exchange,
        notifier=notifier,
        order=strategy.dca.purchase_order(),
        low_balance_threshold=strategy.dca.low_balance_threshold,
        executor=executor,
    )


def compose(
    settings: Settings,
    strategies: Sequence[StrategyConfig],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> AppContainer:
    """Build everything up front so configuration errors surface before any pass runs."""
    exchange = build_exchange(settings, client=client)
    container = AppContainer(settings=settings, exchange=exchange)

    for strategy in strategies:
        notifier = build_notifier(settings, strategy, client=client)
        job = build_job(settings, strategy, exchange, notifier)
        scheduler = CronScheduler(
            job.run_once,
            cron=strategy.schedule.cron,
            timezone=strategy.schedule.timezone,
            name=strategy.name,
        )
        container.runtimes.append(StrategyRuntime(strategy=strategy, job=job, scheduler=scheduler))
        logger.info(
            "strategy_composed",
            extra={**strategy.summary(), "notifications": notifier.config.topic},
        )

    return container


__all__ = [
    "AppContainer",
    "StrategyRuntime",
    "build_exchange",
    "build_job",
    "build_notifier",
    "compose",
]

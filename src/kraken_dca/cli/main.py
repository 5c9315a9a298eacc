"""kraken-dca command line.

Subcommands:
  run <config>...            run one scheduler per strategy until SIGINT/SIGTERM
  balance [--currency CUR]   show account balances
  list [--dir DIR]           list strategy files
  validate <config>          validate a strategy file
  generate-service <config>  write a launchd plist
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Optional, Sequence

import httpx
from dotenv import find_dotenv, load_dotenv

from kraken_dca import __version__
from kraken_dca.app.compose import AppContainer, build_exchange, build_notifier, compose
from kraken_dca.app.service import DEFAULT_LABEL, write_plist
from kraken_dca.core.infrastructure.brokers.kraken import is_fiat_code, normalize_balance
from kraken_dca.core.infrastructure.settings import Settings
from kraken_dca.core.infrastructure.strategy import (
    DEFAULT_CONFIGS_DIR,
    list_strategy_files,
    load_strategy,
)
from kraken_dca.utils import http_client
from kraken_dca.utils.decimal import dec
from kraken_dca.utils.exceptions import ConfigError, DCAError
from kraken_dca.utils.logging import configure_root, get_logger, level_from_name

_log = get_logger(__name__)


# ============== Commands ==============

async def _run_schedulers(container: AppContainer) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, container.stop)

    try:
        await asyncio.gather(*(rt.scheduler.run_forever() for rt in container.runtimes))
    finally:
        await http_client.aclose()


def cmd_run(args: argparse.Namespace) -> int:
    try:
        settings = Settings.load()
        strategies = [load_strategy(p) for p in args.configs]
        container = compose(settings, strategies)
    except ConfigError as exc:
        _log.error("configuration_error", extra={"error": str(exc)})
        return 1

    for rt in container.runtimes:
        _log.info("starting_dca", extra=rt.strategy.summary())

    asyncio.run(_run_schedulers(container))
    return 0


async def _fetch_balances(settings: Settings) -> dict[str, str]:
    exchange = build_exchange(settings)
    try:
        return dict(await exchange.get_balances())
    finally:
        await http_client.aclose()


def cmd_balance(args: argparse.Namespace) -> int:
    try:
        settings = Settings.load()
        balances = asyncio.run(_fetch_balances(settings))
    except (DCAError, httpx.HTTPError, OSError) as exc:
        _log.error("balance_fetch_failed", extra={"error": str(exc)})
        return 1

    if args.currency:
        code = args.currency.upper()
        print(f"{code}: {normalize_balance(balances, code)}")
        return 0

    rows = sorted(
        (asset, amount) for asset, amount in balances.items() if args.verbose or dec(amount) > 0
    )
    if not rows:
        print("No balances found")
        return 0

    fiat = [r for r in rows if is_fiat_code(r[0])]
    crypto = [r for r in rows if not is_fiat_code(r[0])]
    for title, group in (("Fiat", fiat), ("Crypto", crypto)):
        if group:
            print(f"{title}:")
            for asset, amount in group:
                print(f"  {asset:<10} {amount}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    files = list_strategy_files(args.dir)
    if not files:
        print(f"No configurations found in {args.dir}")
        return 0
    for p in files:
        print(p)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        strategy = load_strategy(args.config)
        settings = Settings.load()
        notifier = build_notifier(settings, strategy)
    except ConfigError as exc:
        _log.error("configuration_invalid", extra={"config_path": args.config, "error": str(exc)})
        print(f"INVALID: {exc}")
        return 1

    _log.info(
        "configuration_valid",
        extra={"config_path": args.config, **strategy.summary(), "notifications": notifier.config.topic},
    )
    print(f"OK: {strategy.name} ({strategy.dca.pair}, {strategy.dca.amount} {strategy.dca.currency}, "
          f"'{strategy.schedule.cron}' {strategy.schedule.timezone})")
    return 0


def cmd_generate_service(args: argparse.Namespace) -> int:
    try:
        path = write_plist(
            args.configs,
            output=Path(args.output) if args.output else None,
            label=args.label,
        )
    except (ConfigError, OSError) as exc:
        _log.error("plist_generation_failed", extra={"error": str(exc)})
        return 1
    print(path)
    return 0


# ============== Parser ==============

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kraken-dca", description="Recurring Kraken market buys (DCA)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="run strategies on their schedules")
    p_run.add_argument("configs", nargs="+", help="strategy JSON files")
    p_run.set_defaults(func=cmd_run)

    p_bal = sub.add_parser("balance", help="show Kraken account balances")
    p_bal.add_argument("-c", "--currency", help="single currency (e.g. USD, XBT, ETH)")
    p_bal.add_argument("-v", "--verbose", action="store_true", help="include zero balances")
    p_bal.set_defaults(func=cmd_balance)

    p_list = sub.add_parser("list", help="list available strategy files")
    p_list.add_argument("--dir", default=DEFAULT_CONFIGS_DIR)
    p_list.set_defaults(func=cmd_list)

    p_val = sub.add_parser("validate", help="validate a strategy file without running it")
    p_val.add_argument("config")
    p_val.set_defaults(func=cmd_validate)

    p_gen = sub.add_parser("generate-service", help="write a launchd plist")
    p_gen.add_argument("configs", nargs="+")
    p_gen.add_argument("-o", "--output", default=None)
    p_gen.add_argument("--label", default=DEFAULT_LABEL)
    p_gen.set_defaults(func=cmd_generate_service)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_root(level_from_name(args.log_level) if args.log_level else None)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())

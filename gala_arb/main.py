from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import Sequence

from gala_arb.config import load_settings
from gala_arb.engine import ArbEngine
from gala_arb.logging_setup import configure_logging

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="GalaSwap / Binance spatial arbitrage bot",
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Submit orders when an opportunity clears the profit threshold (default: dry-run)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit",
    )
    parser.add_argument(
        "--token-config",
        type=str,
        default=None,
        help="JSON file with venue mappings (overrides ARB_TOKEN_CONFIG_PATH)",
    )
    return parser.parse_args(argv)


async def _run(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()

    if args.live:
        settings = replace(settings, live_mode=True)
    if args.once:
        settings = replace(settings, run_once=True)
    if args.token_config:
        settings = replace(settings, token_config_path=args.token_config)

    configure_logging(settings.log_level)

    engine = ArbEngine(settings)
    LOGGER.info(
        "bot mode=%s loop_wait=%.1fs check_interval=%.1fs threshold=%.4f order_style=%s",
        "live" if settings.live_mode else "dry-run",
        settings.loop_wait_seconds,
        settings.strategy.check_interval_seconds,
        settings.strategy.profit_threshold,
        settings.strategy.cex_order_style.value,
    )
    await engine.run_forever()


def main(argv: Sequence[str] | None = None) -> None:
    asyncio.run(_run(argv))


if __name__ == "__main__":
    main()

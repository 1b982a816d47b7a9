from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Sequence

from gala_arb.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState
from gala_arb.config import AppSettings
from gala_arb.evaluator import OpportunityEvaluator
from gala_arb.exchanges import BinanceAdapter, CexVenue, DexVenue, GalaSwapDexAdapter
from gala_arb.executor import DualVenueExecutor
from gala_arb.fee_model import FeeModel, FeeSchedule, fee_tier_percentage_string
from gala_arb.models import ExecutionReport, Opportunity, VenueMapping
from gala_arb.reporting import StatusReporter, build_reporter
from gala_arb.strategy import ArbitrageFinder
from gala_arb.token_config import load_venue_mappings

LOGGER = logging.getLogger(__name__)


class TickRateLimiter:
    """Lets an arbitrage cycle through at most once per ``interval_seconds``."""

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._interval_seconds = max(0.0, interval_seconds)
        self._clock = clock
        self._last_run: float | None = None

    def seconds_until_ready(self) -> float:
        if self._last_run is None:
            return 0.0
        return max(0.0, self._interval_seconds - (self._clock() - self._last_run))

    def try_acquire(self) -> bool:
        if self.seconds_until_ready() > 0:
            return False
        self._last_run = self._clock()
        return True


@dataclass
class CycleReport:
    started_at: datetime
    rate_limited: bool = False
    dry_run: bool = True
    opportunity: Opportunity | None = None
    execution: ExecutionReport | None = None
    error: str | None = None
    open_circuits: list[str] = field(default_factory=list)


class ArbEngine:
    def __init__(
        self,
        settings: AppSettings,
        mappings: Sequence[VenueMapping] | None = None,
        dex: DexVenue | None = None,
        cex: CexVenue | None = None,
        reporter: StatusReporter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._mappings = list(mappings) if mappings is not None else load_venue_mappings(settings.token_config_path)
        self._dex = dex or GalaSwapDexAdapter(settings.galaswap)
        self._cex = cex or BinanceAdapter(
            settings.binance,
            symbol_assets={m.cex_symbol: (m.cex_base_asset, m.cex_quote_asset) for m in self._mappings},
        )
        self._reporter = reporter or build_reporter(settings.reporter)

        strategy = settings.strategy
        fee_model = FeeModel(
            FeeSchedule(
                fee_tier_rates=dict(strategy.fee_tier_rates),
                cex_maker_fee_rate=strategy.cex_maker_fee_rate,
                cex_taker_fee_rate=strategy.cex_taker_fee_rate,
                cex_order_style=strategy.cex_order_style,
                gas_fee=strategy.gas_fee,
            )
        )
        breakers = CircuitBreakerRegistry(
            CircuitBreakerConfig(
                max_failures=settings.circuit_breaker.max_failures,
                retry_interval_seconds=settings.circuit_breaker.retry_interval_seconds,
            ),
            clock=clock,
        )
        self._finder = ArbitrageFinder(
            OpportunityEvaluator(self._dex, self._cex, fee_model),
            breakers,
            profit_threshold=strategy.profit_threshold,
            enable_reverse=strategy.enable_reverse,
        )
        self._executor = DualVenueExecutor(
            self._dex,
            self._cex,
            self._reporter,
            mappings=self._mappings,
            limit_price_offset=strategy.limit_price_offset,
        )
        self._rate_limiter = TickRateLimiter(strategy.check_interval_seconds, clock=clock)

    @property
    def finder(self) -> ArbitrageFinder:
        return self._finder

    async def aclose(self) -> None:
        for closable in (self._dex, self._cex, self._reporter):
            try:
                await closable.aclose()
            except Exception:
                LOGGER.exception("error closing %s", type(closable).__name__)

    async def run_forever(self, run_once: bool | None = None) -> None:
        single = self._settings.run_once if run_once is None else run_once
        try:
            while True:
                loop_start = time.perf_counter()
                await self.run_once()

                if single:
                    return

                elapsed = time.perf_counter() - loop_start
                sleep_seconds = max(0.0, self._settings.loop_wait_seconds - elapsed)
                if sleep_seconds > 0:
                    await asyncio.sleep(sleep_seconds)
        finally:
            await self.aclose()

    async def run_once(self) -> CycleReport:
        report = CycleReport(started_at=datetime.now(timezone.utc), dry_run=not self._settings.live_mode)
        if not self._rate_limiter.try_acquire():
            LOGGER.debug("arbitrage check rate limited; next in %.1fs", self._rate_limiter.seconds_until_ready())
            report.rate_limited = True
            return report
        try:
            await self._tick(report)
        except Exception as exc:
            LOGGER.exception("tick failed; continuing with next tick")
            report.error = f"{type(exc).__name__}: {exc}"
        report.open_circuits = self._record_circuits()
        return report

    def _record_circuits(self) -> list[str]:
        open_routes = []
        for snapshot in self._finder.breakers.snapshots():
            if snapshot.state is CircuitState.CLOSED:
                continue
            LOGGER.info(
                "circuit %s %s failures=%d trips=%d",
                snapshot.name,
                snapshot.state.value,
                snapshot.consecutive_failures,
                snapshot.total_trips,
            )
            if snapshot.state is CircuitState.OPEN:
                open_routes.append(snapshot.name)
        return open_routes

    async def _tick(self, report: CycleReport) -> None:
        dex_balances = await self._dex.get_balances()
        cex_free = await self._cex_free_balances() if self._settings.strategy.enable_reverse else None

        best = await self._finder.find_best_opportunity(dex_balances, self._mappings, cex_free)
        if best is None:
            return
        report.opportunity = best

        tier = fee_tier_percentage_string(best.fee_tier, self._settings.strategy.fee_tier_rates)
        await self._reporter.send_info(
            f"Arbitrage opportunity {best.direction.value} {best.pair_label} size={best.trade_size:g} "
            f"net_profit={best.net_profit:.4f} fees={best.total_fees:.4f} tier={tier}"
        )
        if not self._settings.live_mode:
            LOGGER.info(
                "dry-run: not executing %s %s size=%.4f net_profit=%.4f",
                best.direction.value,
                best.pair_label,
                best.trade_size,
                best.net_profit,
            )
            return
        report.execution = await self._executor.execute(best)

    async def _cex_free_balances(self) -> Dict[str, float] | None:
        try:
            balances = await self._cex.get_balances()
        except Exception as exc:
            LOGGER.warning("cex balances unavailable; reverse direction skipped this tick: %s", exc)
            return None
        return {asset: balance.free for asset, balance in balances.items()}

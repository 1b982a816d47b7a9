"""Two-leg execution across the DEX and the CEX.

Forward (DEX to CEX) swaps on the DEX first and buys the source back on the
CEX second. Reverse (CEX to DEX) buys the source on the CEX first and sells
it on the DEX second.

Legs run strictly in order. A failed first leg leaves no position and the
second leg is never sent. A failed second leg after a successful first one
leaves an unhedged position: it is logged at CRITICAL and raised once through
the reporter's alert channel. Nothing is unwound automatically and no leg is
retried here.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Sequence

from gala_arb.exchanges.base import CexVenue, DexVenue
from gala_arb.models import (
    CexOrder,
    CexOrderResult,
    Direction,
    ExecutionReport,
    LegResult,
    Opportunity,
    OrderSide,
    OrderStyle,
    OrderType,
    SwapAmount,
    VenueMapping,
)
from gala_arb.reporting import StatusReporter

LOGGER = logging.getLogger(__name__)

_FAILED_ORDER_STATUSES = {"REJECTED", "EXPIRED", "CANCELED", "EXPIRED_IN_MATCH"}


def _floor_to(value: float, decimals: int) -> float:
    factor = 10 ** max(0, decimals)
    return math.floor(value * factor + 1e-9) / factor


class DualVenueExecutor:
    def __init__(
        self,
        dex: DexVenue,
        cex: CexVenue,
        reporter: StatusReporter,
        mappings: Sequence[VenueMapping] = (),
        limit_price_offset: float = 0.0005,
    ) -> None:
        self._dex = dex
        self._cex = cex
        self._reporter = reporter
        self._limit_price_offset = limit_price_offset
        self._decimals: Mapping[str, tuple[int, int]] = {
            m.cex_symbol: (m.cex_price_decimals, m.cex_quantity_decimals) for m in mappings
        }

    async def execute(self, opportunity: Opportunity) -> ExecutionReport:
        LOGGER.info(
            "executing %s %s size=%.4f expected_net=%.4f",
            opportunity.direction.value,
            opportunity.pair_label,
            opportunity.trade_size,
            opportunity.net_profit,
        )

        order = self.build_cex_order(opportunity)
        try:
            await self._cex.check_order(order)
        except Exception as exc:
            LOGGER.warning("pre-trade check refused %s %s: %s; nothing sent", order.side.value, order.symbol, exc)
            refused = LegResult(venue=getattr(self._cex, "venue", "cex"), success=False, error=str(exc))
            return ExecutionReport(opportunity=opportunity, first_leg=refused)

        if opportunity.direction is Direction.DEX_TO_CEX:
            legs = (lambda: self._dex_leg(opportunity), lambda: self._cex_leg(order))
        else:
            legs = (lambda: self._cex_leg(order), lambda: self._dex_leg(opportunity))

        first_leg = await legs[0]()
        if not first_leg.success:
            LOGGER.warning(
                "first leg failed for %s on %s (%s); aborting, no position taken",
                opportunity.pair_label,
                first_leg.venue,
                first_leg.error,
            )
            return ExecutionReport(opportunity=opportunity, first_leg=first_leg)

        second_leg = await legs[1]()
        report = ExecutionReport(opportunity=opportunity, first_leg=first_leg, second_leg=second_leg)

        if not second_leg.success:
            message = (
                f"UNBALANCED POSITION: {opportunity.direction.value} {opportunity.pair_label} "
                f"{first_leg.venue} leg {first_leg.reference_id} succeeded but {second_leg.venue} leg failed "
                f"(CEX {order.side.value} {order.type.value} {order.symbol}): {second_leg.error}. "
                "Manual intervention required."
            )
            LOGGER.critical(message)
            await self._notify(message, alert=True)
            return report

        await self._notify(
            f"Arbitrage executed {opportunity.direction.value} {opportunity.pair_label} "
            f"size={opportunity.trade_size:g} expected_net={opportunity.net_profit:.4f} "
            f"{first_leg.venue}={first_leg.reference_id} {second_leg.venue}={second_leg.reference_id}",
            alert=False,
        )
        return report

    def build_cex_order(self, opportunity: Opportunity) -> CexOrder:
        """CEX BUY of the source token matching the fee assumption baked into the opportunity.

        Forward buys back ``counter_amount`` with the intermediate's USD value
        after the swap; reverse buys ``trade_size`` ahead of selling it on the DEX.
        """
        price_decimals, quantity_decimals = self._decimals.get(opportunity.cex_symbol, (8, 8))
        forward = opportunity.direction is Direction.DEX_TO_CEX
        quantity = opportunity.counter_amount if forward else opportunity.trade_size

        if opportunity.cex_order_style is OrderStyle.MAKER:
            return CexOrder(
                symbol=opportunity.cex_symbol,
                side=OrderSide.BUY,
                type=OrderType.LIMIT,
                quantity=_floor_to(quantity, quantity_decimals),
                price=round(opportunity.cex_price * (1 - self._limit_price_offset), price_decimals),
            )
        spend = opportunity.intermediate_usd_value if forward else opportunity.trade_size * opportunity.cex_price
        return CexOrder(
            symbol=opportunity.cex_symbol,
            side=OrderSide.BUY,
            type=OrderType.MARKET,
            quote_order_qty=_floor_to(spend, 8),
        )

    async def _dex_leg(self, opportunity: Opportunity) -> LegResult:
        offered = SwapAmount(opportunity.source_token, opportunity.trade_size)
        wanted = SwapAmount(opportunity.intermediate_token, opportunity.intermediate_amount)

        venue = getattr(self._dex, "venue", "dex")
        try:
            receipt = await self._dex.request_swap([offered], [wanted])
        except Exception as exc:
            return LegResult(venue=venue, success=False, error=str(exc) or type(exc).__name__)
        LOGGER.info("dex leg submitted tx=%s status=%s", receipt.transaction_id, receipt.status)
        return LegResult(
            venue=venue,
            success=True,
            reference_id=receipt.transaction_id,
            status=receipt.status,
            executed_quantity=offered.quantity,
        )

    async def _cex_leg(self, order: CexOrder) -> LegResult:
        venue = getattr(self._cex, "venue", "cex")
        try:
            result: CexOrderResult = await self._cex.execute_trade(order)
        except Exception as exc:
            return LegResult(venue=venue, success=False, error=str(exc) or type(exc).__name__)
        if result.status.upper() in _FAILED_ORDER_STATUSES:
            return LegResult(
                venue=venue,
                success=False,
                reference_id=result.order_id,
                status=result.status,
                error=f"order {result.order_id} ended {result.status}",
            )
        return LegResult(
            venue=venue,
            success=True,
            reference_id=result.order_id,
            status=result.status,
            executed_quantity=result.executed_qty,
        )

    async def _notify(self, text: str, *, alert: bool) -> None:
        try:
            if alert:
                await self._reporter.send_alert(text)
            else:
                await self._reporter.send_info(text)
        except Exception:
            LOGGER.exception("status reporter raised while sending %s", "alert" if alert else "info")

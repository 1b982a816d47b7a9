"""Fee accounting for the DEX and CEX legs of an arbitrage.

The DEX fee comes from the pool fee tier returned with each quote. Tiers are
expressed in hundredths of a basis point, so the documented tiers map as
follows::

    500   -> 0.05%
    3000  -> 0.30%
    10000 -> 1.00%

Tiers outside the table are rejected instead of being converted with a
guessed divisor.

Usage::

    model = FeeModel(FeeSchedule(cex_order_style=OrderStyle.MAKER))
    fees = model.estimate(Direction.DEX_TO_CEX, trade_size=1000, counter_amount=1012, fee_tier=3000)
    fees.total
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from gala_arb.models import Direction, OrderStyle


FEE_TIER_RATES: Dict[int, float] = {
    500: 0.0005,
    3000: 0.003,
    10000: 0.01,
}


class UnknownFeeTierError(ValueError):
    def __init__(self, fee_tier: int) -> None:
        super().__init__(f"unknown DEX fee tier: {fee_tier}")
        self.fee_tier = fee_tier


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeSchedule:
    """Fee parameters for one venue pair.

    Parameters
    ----------
    fee_tier_rates:
        DEX fee tier -> proportional rate. Defaults to the documented tiers.
    cex_maker_fee_rate:
        CEX fee for resting limit orders. Default 0.1%.
    cex_taker_fee_rate:
        CEX fee for immediately matched market orders. Default 0.1%.
    cex_order_style:
        Which CEX rate the evaluator assumes. The executor places limit orders
        for MAKER and market orders for TAKER, so this must agree with how
        orders are actually sent.
    gas_fee:
        Fixed network fee per DEX swap, in source-token units.
    """

    fee_tier_rates: Mapping[int, float] = field(default_factory=lambda: dict(FEE_TIER_RATES))
    cex_maker_fee_rate: float = 0.001
    cex_taker_fee_rate: float = 0.001
    cex_order_style: OrderStyle = OrderStyle.TAKER
    gas_fee: float = 1.0


@dataclass(frozen=True)
class FeeBreakdown:
    fee_tier: int
    venue_a_rate: float
    venue_b_rate: float
    venue_a_fee: float
    venue_b_fee: float
    gas_fee: float

    @property
    def total(self) -> float:
        return self.venue_a_fee + self.venue_b_fee + self.gas_fee


# ---------------------------------------------------------------------------
# Fee model
# ---------------------------------------------------------------------------


class FeeModel:
    def __init__(self, schedule: FeeSchedule | None = None) -> None:
        self._schedule = schedule or FeeSchedule()

    @property
    def schedule(self) -> FeeSchedule:
        return self._schedule

    @property
    def cex_order_style(self) -> OrderStyle:
        return self._schedule.cex_order_style

    def dex_fee_rate(self, fee_tier: int) -> float:
        rate = self._schedule.fee_tier_rates.get(int(fee_tier))
        if rate is None:
            raise UnknownFeeTierError(fee_tier)
        return rate

    def cex_fee_rate(self, style: OrderStyle | None = None) -> float:
        style = style or self._schedule.cex_order_style
        if style is OrderStyle.MAKER:
            return self._schedule.cex_maker_fee_rate
        return self._schedule.cex_taker_fee_rate

    def estimate(
        self,
        direction: Direction,
        trade_size: float,
        counter_amount: float,
        fee_tier: int,
    ) -> FeeBreakdown:
        """Fees for one candidate, all in source-token units.

        The DEX fee applies to the source-token quantity sold into the pool
        and the CEX fee to the source quantity bought on the exchange:
        ``counter_amount`` bought back after the swap going forward, and
        ``trade_size`` bought ahead of the swap in reverse.
        """
        a_rate = self.dex_fee_rate(fee_tier)
        b_rate = self.cex_fee_rate()
        dex_quantity = trade_size
        cex_quantity = counter_amount if direction is Direction.DEX_TO_CEX else trade_size
        return FeeBreakdown(
            fee_tier=int(fee_tier),
            venue_a_rate=a_rate,
            venue_b_rate=b_rate,
            venue_a_fee=dex_quantity * a_rate,
            venue_b_fee=cex_quantity * b_rate,
            gas_fee=self._schedule.gas_fee,
        )


def fee_tier_percentage_string(fee_tier: int, rates: Mapping[int, float] = FEE_TIER_RATES) -> str:
    rate = rates.get(int(fee_tier))
    if rate is None:
        raise UnknownFeeTierError(fee_tier)
    return f"{rate * 100:.2f}%"

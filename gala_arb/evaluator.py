from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Awaitable, Callable, TypeVar

from gala_arb.exceptions import LiquidityError
from gala_arb.exchanges.base import CexVenue, DexVenue
from gala_arb.fee_model import FeeModel, UnknownFeeTierError
from gala_arb.models import (
    DexQuote,
    Direction,
    Failure,
    FailureKind,
    Ok,
    Opportunity,
    TokenKey,
    VenueResult,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _valid_price(value: float | None) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class OpportunityEvaluator:
    """Prices one (size, pair, direction) candidate across both venues.

    Every outcome is returned as ``Ok(Opportunity)`` or a ``Failure`` tagged
    with its cause; adapter errors never propagate to the caller. A failure
    that happened after the DEX quote succeeded carries ``quoted=True``.
    """

    def __init__(self, dex: DexVenue, cex: CexVenue, fee_model: FeeModel) -> None:
        self._dex = dex
        self._cex = cex
        self._fee_model = fee_model

    async def evaluate(
        self,
        source: TokenKey,
        intermediate: TokenKey,
        cex_symbol: str,
        quote_symbol: str | None,
        trade_size: float,
    ) -> VenueResult[Opportunity]:
        """Sell ``trade_size`` source on the DEX, buy it back on the CEX."""
        quote = await self._quote(source, intermediate, trade_size)
        if isinstance(quote, Failure):
            return quote

        prices = await self._prices(cex_symbol, quote_symbol)
        if isinstance(prices, Failure):
            return replace(prices, quoted=True)
        return self._priced(
            Direction.DEX_TO_CEX, source, intermediate, cex_symbol, quote_symbol, trade_size, quote.value, prices.value
        )

    async def evaluate_reverse(
        self,
        source: TokenKey,
        intermediate: TokenKey,
        cex_symbol: str,
        quote_symbol: str | None,
        trade_size: float,
    ) -> VenueResult[Opportunity]:
        """Buy ``trade_size`` source on the CEX with quote currency, sell it on the DEX.

        Prices come first so an unpriceable candidate never spends a DEX quote.
        """
        prices = await self._prices(cex_symbol, quote_symbol)
        if isinstance(prices, Failure):
            return prices

        quote = await self._quote(source, intermediate, trade_size)
        if isinstance(quote, Failure):
            return quote
        return self._priced(
            Direction.CEX_TO_DEX, source, intermediate, cex_symbol, quote_symbol, trade_size, quote.value, prices.value
        )

    async def source_price(self, cex_symbol: str) -> float | None:
        """Valid CEX price of the source token, or None."""
        price = await self._price(cex_symbol)
        return float(price) if _valid_price(price) else None

    def _priced(
        self,
        direction: Direction,
        source: TokenKey,
        intermediate: TokenKey,
        cex_symbol: str,
        quote_symbol: str | None,
        trade_size: float,
        quote: DexQuote,
        prices: tuple[float, float],
    ) -> VenueResult[Opportunity]:
        # Both directions move trade_size source through the pool; the
        # intermediate received is valued back into source units at the CEX price.
        source_price, intermediate_usd = prices
        intermediate_usd_value = quote.amount_out * intermediate_usd
        counter_amount = intermediate_usd_value / source_price
        result = self._build(
            direction,
            source,
            intermediate,
            cex_symbol,
            quote_symbol,
            trade_size,
            quote.amount_out,
            counter_amount,
            quote,
            source_price,
            intermediate_usd_value,
        )
        if isinstance(result, Failure):
            return replace(result, quoted=True)
        return result

    async def _quote(self, token_in: TokenKey, token_out: TokenKey, amount_in: float) -> VenueResult[DexQuote]:
        try:
            quote = await self._dex.get_quote(token_in, token_out, amount_in)
        except LiquidityError as exc:
            LOGGER.info(
                "insufficient liquidity %s->%s amount=%.4f: %s",
                token_in.collection,
                token_out.collection,
                amount_in,
                exc,
            )
            return Failure(FailureKind.LIQUIDITY, str(exc))
        except Exception as exc:
            LOGGER.warning("dex quote failed %s->%s amount=%.4f: %s", token_in.collection, token_out.collection, amount_in, exc)
            return Failure(FailureKind.TRANSPORT, str(exc))
        return Ok(quote)

    async def _prices(self, cex_symbol: str, quote_symbol: str | None) -> VenueResult[tuple[float, float]]:
        source_price = await self._price(cex_symbol)
        if not _valid_price(source_price):
            LOGGER.debug("price unavailable for %s (got %r)", cex_symbol, source_price)
            return Failure(FailureKind.PRICE_UNAVAILABLE, f"{cex_symbol} price unavailable")

        if quote_symbol is None:
            intermediate_usd: float | None = 1.0
        else:
            intermediate_usd = await self._price(quote_symbol)
        if not _valid_price(intermediate_usd):
            LOGGER.debug("price unavailable for %s (got %r)", quote_symbol, intermediate_usd)
            return Failure(FailureKind.PRICE_UNAVAILABLE, f"{quote_symbol} price unavailable")
        return Ok((float(source_price), float(intermediate_usd)))

    async def _price(self, symbol: str) -> float | None:
        return await _guarded(lambda: self._cex.get_price(symbol), f"cex price {symbol}")

    def _build(
        self,
        direction: Direction,
        source: TokenKey,
        intermediate: TokenKey,
        cex_symbol: str,
        quote_symbol: str | None,
        trade_size: float,
        intermediate_amount: float,
        counter_amount: float,
        quote: DexQuote,
        source_price: float,
        intermediate_usd_value: float,
    ) -> VenueResult[Opportunity]:
        try:
            fees = self._fee_model.estimate(direction, trade_size, counter_amount, quote.fee_tier)
        except UnknownFeeTierError as exc:
            LOGGER.warning("%s", exc)
            return Failure(FailureKind.FEE_TIER, str(exc))

        opportunity = Opportunity(
            direction=direction,
            source_token=source,
            intermediate_token=intermediate,
            trade_size=trade_size,
            intermediate_amount=intermediate_amount,
            counter_amount=counter_amount,
            fee_tier=fees.fee_tier,
            venue_a_fee=fees.venue_a_fee,
            venue_b_fee=fees.venue_b_fee,
            gas_fee=fees.gas_fee,
            cex_symbol=cex_symbol,
            cex_price=source_price,
            intermediate_usd_value=intermediate_usd_value,
            cex_order_style=self._fee_model.cex_order_style,
            metadata={
                "quote_symbol": quote_symbol,
                "venue_a_rate": fees.venue_a_rate,
                "venue_b_rate": fees.venue_b_rate,
            },
        )
        LOGGER.debug(
            "candidate %s %s size=%.4f counter=%.4f fees=%.4f net=%.4f",
            direction.value,
            opportunity.pair_label,
            trade_size,
            counter_amount,
            opportunity.total_fees,
            opportunity.net_profit,
        )
        return Ok(opportunity)


async def _guarded(call: Callable[[], Awaitable[T]], what: str) -> T | None:
    try:
        return await call()
    except Exception as exc:
        LOGGER.warning("%s failed: %s", what, exc)
        return None

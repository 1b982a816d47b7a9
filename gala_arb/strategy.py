from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Mapping, Sequence

from gala_arb.circuit_breaker import CircuitBreakerRegistry
from gala_arb.evaluator import OpportunityEvaluator
from gala_arb.models import (
    Direction,
    Failure,
    FailureKind,
    Ok,
    Opportunity,
    TokenKey,
    TradingPair,
    VenueMapping,
    VenueResult,
    dex_route_key,
)

LOGGER = logging.getLogger(__name__)


def trade_size_ladder(mapping: VenueMapping, balance: float) -> list[float]:
    """Configured sizes that the balance and the mapping's bounds allow, ascending."""
    ceiling = balance if mapping.max_trade_size is None else min(balance, mapping.max_trade_size)
    return [s for s in sorted(mapping.trade_sizes) if mapping.min_trade_size <= s <= ceiling]


class ArbitrageFinder:
    """Walks sizes, pairs and directions and keeps the most profitable candidate.

    Breaker state is owned by this instance and survives across ticks for as
    long as the finder does.
    """

    def __init__(
        self,
        evaluator: OpportunityEvaluator,
        breakers: CircuitBreakerRegistry,
        profit_threshold: float = 1.0,
        enable_reverse: bool = True,
    ) -> None:
        self._evaluator = evaluator
        self._breakers = breakers
        self._profit_threshold = profit_threshold
        self._enable_reverse = enable_reverse

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def profit_threshold(self) -> float:
        return self._profit_threshold

    async def iter_opportunities(
        self,
        dex_balances: Mapping[TokenKey, float],
        mappings: Sequence[VenueMapping],
        cex_balances: Mapping[str, float] | None = None,
    ) -> AsyncIterator[Opportunity]:
        """Yield every priced candidate in search order.

        Sizes ascend per mapping. At each size the forward direction is tried
        before the reverse one, and within a direction the primary pair before
        the alternates. Forward sizes are bounded by the DEX source balance,
        reverse sizes by what the CEX quote-currency balance can buy.
        """
        for mapping in mappings:
            source_held = float(dex_balances.get(mapping.source, 0.0))
            forward_sizes = set(trade_size_ladder(mapping, source_held))
            reverse_sizes = await self._reverse_sizes(mapping, cex_balances)

            if not forward_sizes and not reverse_sizes:
                LOGGER.debug(
                    "skipping %s: balance %.4f below minimum trade size %.4f",
                    mapping.source.collection,
                    source_held,
                    mapping.min_trade_size,
                )
                continue

            for size in sorted(forward_sizes | reverse_sizes):
                if size in forward_sizes:
                    found = await self._first_available(mapping, size, Direction.DEX_TO_CEX)
                    if found is not None:
                        yield found
                if size in reverse_sizes:
                    found = await self._first_available(mapping, size, Direction.CEX_TO_DEX)
                    if found is not None:
                        yield found

    async def find_best_opportunity(
        self,
        dex_balances: Mapping[TokenKey, float],
        mappings: Sequence[VenueMapping],
        cex_balances: Mapping[str, float] | None = None,
    ) -> Opportunity | None:
        best: Opportunity | None = None
        seen = 0
        async for candidate in self.iter_opportunities(dex_balances, mappings, cex_balances):
            seen += 1
            if best is None or candidate.net_profit > best.net_profit:
                best = candidate

        if best is None:
            LOGGER.info("no candidates could be priced this tick")
            return None
        if best.net_profit >= self._profit_threshold:
            LOGGER.info(
                "best opportunity %s %s size=%.4f net_profit=%.4f (of %d candidates)",
                best.direction.value,
                best.pair_label,
                best.trade_size,
                best.net_profit,
                seen,
            )
            return best
        LOGGER.info(
            "no opportunity above threshold %.4f; best seen net_profit=%.4f size=%.4f pair=%s direction=%s",
            self._profit_threshold,
            best.net_profit,
            best.trade_size,
            best.pair_label,
            best.direction.value,
        )
        return None

    async def _reverse_sizes(
        self,
        mapping: VenueMapping,
        cex_balances: Mapping[str, float] | None,
    ) -> set[float]:
        """Sizes the CEX quote-currency balance can buy at the current source price."""
        if not self._enable_reverse or cex_balances is None:
            return set()
        quote_free = float(cex_balances.get(mapping.cex_quote_asset, 0.0))
        if quote_free <= 0:
            return set()
        price = await self._evaluator.source_price(mapping.cex_symbol)
        if price is None:
            LOGGER.debug("no %s price; reverse direction skipped for %s", mapping.cex_symbol, mapping.source.collection)
            return set()
        return set(trade_size_ladder(mapping, quote_free / price))

    async def _first_available(
        self,
        mapping: VenueMapping,
        size: float,
        direction: Direction,
    ) -> Opportunity | None:
        for index, pair in enumerate(mapping.pairs):
            result = await self._evaluate_pair(mapping, pair, size, direction)
            if isinstance(result, Ok):
                return result.value
            if index == 0 and len(mapping.pairs) > 1:
                LOGGER.info(
                    "primary pair %s/%s unavailable at size %.4f (%s); trying alternates",
                    mapping.source.collection,
                    pair.description,
                    size,
                    result.kind.value,
                )
        return None

    async def _evaluate_pair(
        self,
        mapping: VenueMapping,
        pair: TradingPair,
        size: float,
        direction: Direction,
    ) -> VenueResult[Opportunity]:
        key = dex_route_key(mapping.source, pair.intermediate)
        breaker = self._breakers.get(key)
        if not breaker.allows_request():
            LOGGER.debug("circuit open for %s; skipping", key)
            return Failure(FailureKind.CIRCUIT_OPEN, key)

        quote_symbol = None if pair.stable else pair.quote_symbol
        if direction is Direction.DEX_TO_CEX:
            result = await self._evaluator.evaluate(
                mapping.source, pair.intermediate, mapping.cex_symbol, quote_symbol, size
            )
        else:
            result = await self._evaluator.evaluate_reverse(
                mapping.source, pair.intermediate, mapping.cex_symbol, quote_symbol, size
            )

        # Breakers track the pool: any successful quote resets them, whatever
        # happened to the candidate afterwards.
        if isinstance(result, Ok) or result.quoted:
            breaker.record_success()
        elif result.kind is FailureKind.LIQUIDITY:
            breaker.record_failure()
        return result

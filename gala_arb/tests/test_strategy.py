from __future__ import annotations

import asyncio
import logging
from typing import Dict, Sequence, Union

import pytest

from gala_arb.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState
from gala_arb.evaluator import OpportunityEvaluator
from gala_arb.exceptions import LiquidityError
from gala_arb.exchanges.base import CexVenue, DexVenue
from gala_arb.fee_model import FeeModel
from gala_arb.models import (
    CexBalance,
    CexOrder,
    CexOrderResult,
    DexQuote,
    Direction,
    Failure,
    FailureKind,
    Ok,
    Opportunity,
    OrderStyle,
    SwapAmount,
    SwapReceipt,
    TokenKey,
    TradingPair,
    VenueMapping,
    VenueResult,
)
from gala_arb.strategy import ArbitrageFinder, trade_size_ladder

GALA = TokenKey("GALA")
GWETH = TokenKey("GWETH")
GUSDC = TokenKey("GUSDC")
GUSDT = TokenKey("GUSDT")

GALA_GWETH = "GALA|Unit|none|none->GWETH|Unit|none|none"

Scripted = Union[float, FailureKind, Failure]


def make_opportunity(
    size: float,
    profit: float,
    intermediate: TokenKey = GWETH,
    direction: Direction = Direction.DEX_TO_CEX,
) -> Opportunity:
    return Opportunity(
        direction=direction,
        source_token=GALA,
        intermediate_token=intermediate,
        trade_size=size,
        intermediate_amount=size * 0.03,
        counter_amount=size + profit,
        fee_tier=3000,
        venue_a_fee=0.0,
        venue_b_fee=0.0,
        gas_fee=0.0,
        cex_symbol="GALAUSDT",
        cex_price=0.03,
        intermediate_usd_value=size * 0.03,
        cex_order_style=OrderStyle.TAKER,
    )


class ScriptedEvaluator:
    """Answers from a table keyed by (direction, intermediate collection, size)."""

    def __init__(self, script: Dict[tuple[Direction, str, float], Scripted], default: Scripted = FailureKind.LIQUIDITY) -> None:
        self.script = script
        self.default = default
        self.calls: list[tuple[Direction, str, float]] = []
        self.price: float | None = 0.03

    async def evaluate(self, source, intermediate, cex_symbol, quote_symbol, trade_size) -> VenueResult[Opportunity]:
        return self._answer(Direction.DEX_TO_CEX, intermediate, trade_size)

    async def evaluate_reverse(self, source, intermediate, cex_symbol, quote_symbol, trade_size) -> VenueResult[Opportunity]:
        return self._answer(Direction.CEX_TO_DEX, intermediate, trade_size)

    async def source_price(self, cex_symbol: str) -> float | None:
        return self.price

    def _answer(self, direction: Direction, intermediate: TokenKey, size: float) -> VenueResult[Opportunity]:
        key = (direction, intermediate.collection, size)
        self.calls.append(key)
        outcome = self.script.get(key, self.default)
        if isinstance(outcome, Failure):
            return outcome
        if isinstance(outcome, FailureKind):
            return Failure(outcome, "scripted")
        return Ok(make_opportunity(size, outcome, intermediate, direction))


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class SequencedDex(DexVenue):
    """Quotes succeed or run out of liquidity in a fixed order."""

    def __init__(self, outcomes: Sequence[bool]) -> None:
        self.outcomes = list(outcomes)
        self.quotes = 0

    async def get_quote(self, token_in: TokenKey, token_out: TokenKey, amount_in: float) -> DexQuote:
        self.quotes += 1
        if not self.outcomes.pop(0):
            raise LiquidityError("CONFLICT: not enough liquidity")
        return DexQuote(amount_in, amount_in * 0.03, 3000)

    async def request_swap(self, offered: Sequence[SwapAmount], wanted: Sequence[SwapAmount]) -> SwapReceipt:
        raise AssertionError("not used")

    async def get_balances(self) -> Dict[TokenKey, float]:
        return {}


class PricelessCex(CexVenue):
    async def get_price(self, symbol: str) -> float | None:
        return None

    async def get_balances(self) -> Dict[str, CexBalance]:
        return {}

    async def execute_trade(self, order: CexOrder) -> CexOrderResult:
        raise AssertionError("not used")


def _mapping(sizes: tuple[float, ...] = (1000.0, 2000.0, 3000.0), with_alternates: bool = True) -> VenueMapping:
    pairs = [TradingPair(GWETH, quote_symbol="ETHUSDT")]
    if with_alternates:
        pairs += [TradingPair(GUSDC, stable=True), TradingPair(GUSDT, stable=True)]
    return VenueMapping(
        source=GALA,
        cex_symbol="GALAUSDT",
        cex_base_asset="GALA",
        cex_quote_asset="USDT",
        pairs=tuple(pairs),
        trade_sizes=sizes,
        min_trade_size=sizes[0],
    )


def _finder(evaluator: ScriptedEvaluator, threshold: float = 0.5, clock: FakeClock | None = None, **kwargs) -> ArbitrageFinder:
    registry = CircuitBreakerRegistry(
        CircuitBreakerConfig(max_failures=3, retry_interval_seconds=300.0),
        clock=clock or FakeClock(),
    )
    return ArbitrageFinder(evaluator, registry, profit_threshold=threshold, **kwargs)


# ---------------------------------------------------------------------------
# Ladder
# ---------------------------------------------------------------------------


class TestLadder:
    def test_filters_by_balance_and_bounds(self) -> None:
        mapping = VenueMapping(
            source=GALA,
            cex_symbol="GALAUSDT",
            cex_base_asset="GALA",
            cex_quote_asset="USDT",
            pairs=(TradingPair(GUSDC, stable=True),),
            trade_sizes=(5000.0, 1000.0, 500.0, 3000.0),
            min_trade_size=1000.0,
            max_trade_size=4000.0,
        )
        assert trade_size_ladder(mapping, 10_000.0) == [1000.0, 3000.0]
        assert trade_size_ladder(mapping, 2500.0) == [1000.0]
        assert trade_size_ladder(mapping, 999.0) == []


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelection:
    def test_monotonic_best(self) -> None:
        sizes = (1000.0, 2000.0, 3000.0, 4000.0, 5000.0)
        profits = [2.0, 5.0, 3.0, 8.0, 1.0]
        evaluator = ScriptedEvaluator({(Direction.DEX_TO_CEX, "GWETH", s): p for s, p in zip(sizes, profits)})
        finder = _finder(evaluator, enable_reverse=False)

        best = asyncio.run(finder.find_best_opportunity({GALA: 10_000.0}, [_mapping(sizes, with_alternates=False)]))

        assert best is not None
        assert best.net_profit == pytest.approx(8.0)
        assert best.trade_size == 4000.0

    def test_ties_keep_first_found(self) -> None:
        evaluator = ScriptedEvaluator(
            {(Direction.DEX_TO_CEX, "GWETH", 1000.0): 4.0, (Direction.DEX_TO_CEX, "GWETH", 2000.0): 4.0}
        )
        best = asyncio.run(
            _finder(evaluator).find_best_opportunity({GALA: 2000.0}, [_mapping((1000.0, 2000.0), with_alternates=False)])
        )
        assert best is not None
        assert best.trade_size == 1000.0

    def test_below_threshold_returns_none_and_logs_best(self, caplog: pytest.LogCaptureFixture) -> None:
        evaluator = ScriptedEvaluator(
            {
                (Direction.DEX_TO_CEX, "GWETH", 1000.0): -3.0,
                (Direction.DEX_TO_CEX, "GWETH", 2000.0): -1.25,
                (Direction.DEX_TO_CEX, "GWETH", 3000.0): -7.0,
            }
        )
        finder = _finder(evaluator, enable_reverse=False)

        with caplog.at_level(logging.INFO, logger="gala_arb.strategy"):
            best = asyncio.run(finder.find_best_opportunity({GALA: 5000.0}, [_mapping(with_alternates=False)]))

        assert best is None
        diagnostic = [r.getMessage() for r in caplog.records if "no opportunity above threshold" in r.getMessage()]
        assert len(diagnostic) == 1
        assert "net_profit=-1.2500" in diagnostic[0]
        assert "size=2000.0000" in diagnostic[0]
        assert "pair=GALA/GWETH" in diagnostic[0]

    def test_no_loss_guard(self) -> None:
        evaluator = ScriptedEvaluator({(Direction.DEX_TO_CEX, "GWETH", 1000.0): 0.49})
        best = asyncio.run(
            _finder(evaluator, threshold=0.5).find_best_opportunity({GALA: 1000.0}, [_mapping((1000.0,), False)])
        )
        assert best is None

    def test_loss_tolerance_threshold(self) -> None:
        evaluator = ScriptedEvaluator({(Direction.DEX_TO_CEX, "GWETH", 1000.0): -0.4})
        best = asyncio.run(
            _finder(evaluator, threshold=-0.5).find_best_opportunity({GALA: 1000.0}, [_mapping((1000.0,), False)])
        )
        assert best is not None
        assert best.net_profit == pytest.approx(-0.4)

    def test_unheld_source_is_skipped(self) -> None:
        evaluator = ScriptedEvaluator({})
        best = asyncio.run(_finder(evaluator).find_best_opportunity({}, [_mapping()]))
        assert best is None
        assert evaluator.calls == []


# ---------------------------------------------------------------------------
# Alternate pairs
# ---------------------------------------------------------------------------


class TestAlternates:
    def test_primary_liquidity_falls_through_to_alternate(self) -> None:
        evaluator = ScriptedEvaluator(
            {
                (Direction.DEX_TO_CEX, "GUSDC", 1000.0): 1.2,
                (Direction.DEX_TO_CEX, "GUSDC", 2000.0): 0.1,
                (Direction.DEX_TO_CEX, "GUSDC", 3000.0): -0.3,
            }
        )
        finder = _finder(evaluator, enable_reverse=False)

        best = asyncio.run(finder.find_best_opportunity({GALA: 5000.0}, [_mapping()]))

        assert best is not None
        assert best.trade_size == 1000.0
        assert best.intermediate_token == GUSDC
        # first available alternate ends the search for that size
        assert (Direction.DEX_TO_CEX, "GUSDT", 1000.0) not in evaluator.calls

    def test_any_primary_failure_tries_alternates(self) -> None:
        evaluator = ScriptedEvaluator(
            {
                (Direction.DEX_TO_CEX, "GWETH", 1000.0): FailureKind.PRICE_UNAVAILABLE,
                (Direction.DEX_TO_CEX, "GUSDC", 1000.0): FailureKind.TRANSPORT,
                (Direction.DEX_TO_CEX, "GUSDT", 1000.0): 2.0,
            }
        )
        best = asyncio.run(_finder(evaluator, enable_reverse=False).find_best_opportunity({GALA: 1000.0}, [_mapping()]))
        assert best is not None
        assert best.intermediate_token == GUSDT


# ---------------------------------------------------------------------------
# Circuit breaking
# ---------------------------------------------------------------------------


class TestCircuitBreaking:
    def test_open_breaker_skips_adapter_until_retry_interval(self) -> None:
        clock = FakeClock()
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator, clock=clock, enable_reverse=False)
        mapping = _mapping((1000.0,), with_alternates=False)
        balances = {GALA: 1000.0}

        for _ in range(3):
            asyncio.run(finder.find_best_opportunity(balances, [mapping]))
        assert len(evaluator.calls) == 3

        clock.now = 100.0
        asyncio.run(finder.find_best_opportunity(balances, [mapping]))
        assert len(evaluator.calls) == 3

        clock.now = 300.0
        asyncio.run(finder.find_best_opportunity(balances, [mapping]))
        assert len(evaluator.calls) == 4

    def test_non_liquidity_failures_do_not_trip(self) -> None:
        evaluator = ScriptedEvaluator({}, default=FailureKind.TRANSPORT)
        finder = _finder(evaluator, enable_reverse=False)
        mapping = _mapping((1000.0,), with_alternates=False)
        for _ in range(5):
            asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping]))
        assert len(evaluator.calls) == 5
        assert [s.state for s in finder.breakers.snapshots()] == [CircuitState.CLOSED]

    def test_success_resets_breaker(self) -> None:
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator, enable_reverse=False)
        mapping = _mapping((1000.0,), with_alternates=False)
        for _ in range(2):
            asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping]))
        evaluator.script[(Direction.DEX_TO_CEX, "GWETH", 1000.0)] = 1.0
        asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping]))
        breaker = finder.breakers.get(GALA_GWETH)
        assert breaker.consecutive_failures == 0

    def test_quote_without_price_still_resets_breaker(self) -> None:
        # liquidity, liquidity, a good quote that cannot be priced, liquidity
        dex = SequencedDex([False, False, True, False])
        evaluator = OpportunityEvaluator(dex, PricelessCex(), FeeModel())
        finder = _finder(evaluator, enable_reverse=False)
        mapping = _mapping((1000.0,), with_alternates=False)

        for _ in range(4):
            assert asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping])) is None

        breaker = finder.breakers.get(GALA_GWETH)
        assert dex.quotes == 4
        assert breaker.consecutive_failures == 1
        assert breaker.state is CircuitState.CLOSED

    def test_failure_after_quote_counts_as_success(self) -> None:
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator, enable_reverse=False)
        mapping = _mapping((1000.0,), with_alternates=False)
        for _ in range(2):
            asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping]))

        evaluator.script[(Direction.DEX_TO_CEX, "GWETH", 1000.0)] = Failure(FailureKind.FEE_TIER, quoted=True)
        asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping]))

        assert finder.breakers.get(GALA_GWETH).consecutive_failures == 0

    def test_directions_share_the_dex_route_breaker(self) -> None:
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator)
        mapping = _mapping((1000.0,), with_alternates=False)

        # forward and reverse both quote GALA->GWETH: two failures per tick
        asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping], cex_balances={"USDT": 100.0}))
        asyncio.run(finder.find_best_opportunity({GALA: 1000.0}, [mapping], cex_balances={"USDT": 100.0}))

        assert evaluator.calls == [
            (Direction.DEX_TO_CEX, "GWETH", 1000.0),
            (Direction.CEX_TO_DEX, "GWETH", 1000.0),
            (Direction.DEX_TO_CEX, "GWETH", 1000.0),
        ]
        assert finder.breakers.get(GALA_GWETH).is_open is True


# ---------------------------------------------------------------------------
# Reverse direction
# ---------------------------------------------------------------------------


class TestReverseDirection:
    def test_reverse_sized_by_cex_quote_balance(self) -> None:
        evaluator = ScriptedEvaluator({(Direction.CEX_TO_DEX, "GWETH", 1000.0): 3.0})
        finder = _finder(evaluator)

        # 40 USDT buys about 1333 GALA at 0.03: only the 1000 rung fits
        best = asyncio.run(
            finder.find_best_opportunity({}, [_mapping(with_alternates=False)], cex_balances={"USDT": 40.0})
        )

        assert best is not None
        assert best.direction is Direction.CEX_TO_DEX
        assert evaluator.calls == [(Direction.CEX_TO_DEX, "GWETH", 1000.0)]

    def test_reverse_needs_no_source_on_either_venue(self) -> None:
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator)

        asyncio.run(
            finder.find_best_opportunity(
                {GALA: 0.0}, [_mapping(with_alternates=False)], cex_balances={"USDT": 10000.0, "GALA": 0.0}
            )
        )

        reverse = [call for call in evaluator.calls if call[0] is Direction.CEX_TO_DEX]
        assert len(reverse) >= 1
        assert all(call[0] is Direction.CEX_TO_DEX for call in evaluator.calls)

    def test_source_on_cex_without_quote_currency_is_not_enough(self) -> None:
        evaluator = ScriptedEvaluator({})
        best = asyncio.run(
            _finder(evaluator).find_best_opportunity({}, [_mapping()], cex_balances={"GALA": 5000.0, "USDT": 0.0})
        )
        assert best is None
        assert evaluator.calls == []

    def test_missing_source_price_skips_reverse(self) -> None:
        evaluator = ScriptedEvaluator({})
        evaluator.price = None
        best = asyncio.run(_finder(evaluator).find_best_opportunity({}, [_mapping()], cex_balances={"USDT": 10000.0}))
        assert best is None
        assert evaluator.calls == []

    def test_reverse_disabled(self) -> None:
        evaluator = ScriptedEvaluator({})
        finder = _finder(evaluator, enable_reverse=False)
        asyncio.run(finder.find_best_opportunity({}, [_mapping()], cex_balances={"USDT": 10000.0}))
        assert evaluator.calls == []

    def test_iterates_lazily_in_search_order(self) -> None:
        evaluator = ScriptedEvaluator(
            {
                (Direction.DEX_TO_CEX, "GWETH", 1000.0): 1.0,
                (Direction.CEX_TO_DEX, "GWETH", 1000.0): 2.0,
                (Direction.DEX_TO_CEX, "GWETH", 2000.0): 3.0,
            }
        )
        finder = _finder(evaluator)

        async def collect() -> list[tuple[Direction, float]]:
            seen = []
            async for opp in finder.iter_opportunities(
                {GALA: 2000.0},
                [_mapping((1000.0, 2000.0), False)],
                cex_balances={"USDT": 45.0},
            ):
                seen.append((opp.direction, opp.trade_size))
            return seen

        assert asyncio.run(collect()) == [
            (Direction.DEX_TO_CEX, 1000.0),
            (Direction.CEX_TO_DEX, 1000.0),
            (Direction.DEX_TO_CEX, 2000.0),
        ]

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, order=True)
class TokenKey:
    """GalaChain token class key, rendered as ``collection|category|type|additional_key``."""

    collection: str
    category: str = "Unit"
    type: str = "none"
    additional_key: str = "none"

    @classmethod
    def parse(cls, value: str) -> TokenKey:
        raw = value.strip()
        for separator in ("|", "$"):
            if separator in raw:
                parts = raw.split(separator)
                if len(parts) != 4 or not all(part.strip() for part in parts):
                    raise ValueError(f"invalid token class key: {value!r}")
                return cls(*(part.strip() for part in parts))
        if not raw:
            raise ValueError("empty token class key")
        return cls(collection=raw)

    def as_dict(self) -> Dict[str, str]:
        return {
            "collection": self.collection,
            "category": self.category,
            "type": self.type,
            "additionalKey": self.additional_key,
        }

    def __str__(self) -> str:
        return f"{self.collection}|{self.category}|{self.type}|{self.additional_key}"


class Direction(str, Enum):
    DEX_TO_CEX = "dex_to_cex"  # sell on venue A, buy back on venue B
    CEX_TO_DEX = "cex_to_dex"  # buy on venue B, sell on venue A


def dex_route_key(token_in: TokenKey, token_out: TokenKey) -> str:
    """``token_in->token_out`` of a DEX swap route."""
    return f"{token_in}->{token_out}"


class OrderStyle(str, Enum):
    MAKER = "maker"
    TAKER = "taker"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class FailureKind(str, Enum):
    LIQUIDITY = "liquidity"
    PRICE_UNAVAILABLE = "price_unavailable"
    TRANSPORT = "transport"
    CIRCUIT_OPEN = "circuit_open"
    FEE_TIER = "fee_tier"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    detail: str = ""
    # True when the DEX quote itself succeeded before a later step failed.
    quoted: bool = False
    ok: bool = field(default=False, init=False)


VenueResult = Union[Ok[T], Failure]


@dataclass(frozen=True)
class DexQuote:
    amount_in: float
    amount_out: float
    fee_tier: int


@dataclass(frozen=True)
class SwapAmount:
    token: TokenKey
    quantity: float


@dataclass(frozen=True)
class SwapReceipt:
    transaction_id: str
    status: str = "pending"


@dataclass(frozen=True)
class CexBalance:
    free: float
    locked: float = 0.0


@dataclass(frozen=True)
class CexOrder:
    """Venue-B order request.

    MARKET BUY orders spend ``quote_order_qty`` of the quote asset; every other
    order trades ``quantity`` of the base asset. LIMIT orders need ``price``.
    """

    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float = 0.0
    price: float | None = None
    quote_order_qty: float | None = None


@dataclass(frozen=True)
class CexOrderResult:
    order_id: str
    executed_qty: float
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TradingPair:
    """One way of routing a source token through venue A.

    ``quote_symbol`` prices the intermediate token on venue B when it is not a
    stable asset (e.g. ``ETHUSDT`` for GWETH).
    """

    intermediate: TokenKey
    quote_symbol: str | None = None
    stable: bool = False

    @property
    def description(self) -> str:
        return self.intermediate.collection


@dataclass(frozen=True)
class VenueMapping:
    source: TokenKey
    cex_symbol: str
    cex_base_asset: str
    cex_quote_asset: str
    pairs: tuple[TradingPair, ...]
    trade_sizes: tuple[float, ...]
    min_trade_size: float = 0.0
    max_trade_size: float | None = None
    cex_price_decimals: int = 8
    cex_quantity_decimals: int = 8

    @property
    def primary_pair(self) -> TradingPair:
        return self.pairs[0]

    @property
    def alternate_pairs(self) -> tuple[TradingPair, ...]:
        return self.pairs[1:]


@dataclass(frozen=True)
class Opportunity:
    direction: Direction
    source_token: TokenKey
    intermediate_token: TokenKey
    trade_size: float
    intermediate_amount: float
    counter_amount: float
    fee_tier: int
    venue_a_fee: float
    venue_b_fee: float
    gas_fee: float
    cex_symbol: str
    cex_price: float
    intermediate_usd_value: float
    cex_order_style: OrderStyle
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_fees(self) -> float:
        return self.venue_a_fee + self.venue_b_fee + self.gas_fee

    @property
    def net_profit(self) -> float:
        return self.counter_amount - self.trade_size - self.total_fees

    @property
    def pair_label(self) -> str:
        return f"{self.source_token.collection}/{self.intermediate_token.collection}"

    @property
    def pair_key(self) -> str:
        return dex_route_key(self.source_token, self.intermediate_token)


@dataclass(frozen=True)
class LegResult:
    venue: str
    success: bool
    reference_id: Optional[str] = None
    status: str = ""
    executed_quantity: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class ExecutionReport:
    opportunity: Opportunity
    first_leg: LegResult
    second_leg: LegResult | None = None

    @property
    def success(self) -> bool:
        return self.first_leg.success and self.second_leg is not None and self.second_leg.success

    @property
    def unbalanced(self) -> bool:
        return self.first_leg.success and (self.second_leg is None or not self.second_leg.success)

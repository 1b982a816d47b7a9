from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Sequence

from gala_arb.models import CexBalance, CexOrder, CexOrderResult, DexQuote, SwapAmount, SwapReceipt, TokenKey


class DexVenue(ABC):
    """Venue A: an on-chain constant-function DEX."""

    venue: str

    @abstractmethod
    async def get_quote(self, token_in: TokenKey, token_out: TokenKey, amount_in: float) -> DexQuote:
        """Exact-input quote. Raises ``LiquidityError`` when the pool cannot fill."""
        raise NotImplementedError

    @abstractmethod
    async def request_swap(self, offered: Sequence[SwapAmount], wanted: Sequence[SwapAmount]) -> SwapReceipt:
        raise NotImplementedError

    @abstractmethod
    async def get_balances(self) -> Dict[TokenKey, float]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class CexVenue(ABC):
    """Venue B: a centralized order-book exchange."""

    venue: str

    @abstractmethod
    async def get_price(self, symbol: str) -> float | None:
        """Last traded price, or None when it cannot be fetched."""
        raise NotImplementedError

    @abstractmethod
    async def get_balances(self) -> Dict[str, CexBalance]:
        raise NotImplementedError

    @abstractmethod
    async def execute_trade(self, order: CexOrder) -> CexOrderResult:
        raise NotImplementedError

    async def check_order(self, order: CexOrder) -> None:
        """Raise if ``order`` would be refused; called before any leg is sent."""
        return None

    async def get_free_balance(self, asset: str) -> float:
        balances = await self.get_balances()
        balance = balances.get(asset.upper())
        return balance.free if balance is not None else 0.0

    async def aclose(self) -> None:
        return None

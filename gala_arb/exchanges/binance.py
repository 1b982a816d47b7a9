from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Tuple
from urllib.parse import urlencode

import httpx

from gala_arb.config import BinanceSettings
from gala_arb.exceptions import TradeRejectedError, TradingDisabledError, VenueError, VenueRequestError
from gala_arb.models import CexBalance, CexOrder, CexOrderResult, OrderSide, OrderType

from .base import CexVenue
from .formatting import format_amount

LOGGER = logging.getLogger(__name__)

_KNOWN_QUOTE_ASSETS = ("USDT", "USDC", "FDUSD", "BUSD", "BTC", "ETH", "BNB")


def split_symbol(symbol: str) -> Tuple[str, str]:
    upper = symbol.upper()
    for quote in _KNOWN_QUOTE_ASSETS:
        if upper.endswith(quote) and len(upper) > len(quote):
            return upper[: -len(quote)], quote
    raise ValueError(f"cannot infer base/quote assets for symbol {symbol!r}")


class BinanceAdapter(CexVenue):
    venue = "binance"

    def __init__(
        self,
        settings: BinanceSettings,
        symbol_assets: Mapping[str, Tuple[str, str]] | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._symbol_assets = {k.upper(): v for k, v in (symbol_assets or {}).items()}
        self._clock = clock
        self._sleep = sleep
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_price(self, symbol: str) -> float | None:
        try:
            body = await self._request("GET", "/api/v3/ticker/price", params={"symbol": symbol.upper()})
            price = float(body["price"])
        except (VenueError, httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("binance price lookup failed for %s: %s", symbol, exc)
            return None
        if price <= 0:
            LOGGER.warning("binance returned non-positive price for %s: %s", symbol, price)
            return None
        return price

    async def get_balances(self) -> Dict[str, CexBalance]:
        body = await self._request("GET", "/api/v3/account", signed=True)
        balances: Dict[str, CexBalance] = {}
        for row in body.get("balances", []):
            try:
                balances[str(row["asset"]).upper()] = CexBalance(
                    free=float(row.get("free", 0)),
                    locked=float(row.get("locked", 0)),
                )
            except (KeyError, TypeError, ValueError):
                LOGGER.debug("binance skipping unparseable balance row: %r", row)
        return balances

    async def execute_trade(self, order: CexOrder) -> CexOrderResult:
        await self.check_order(order)

        params: Dict[str, Any] = {
            "symbol": order.symbol.upper(),
            "side": order.side.value,
            "type": order.type.value,
        }
        if order.type is OrderType.MARKET and order.side is OrderSide.BUY:
            params["quoteOrderQty"] = format_amount(order.quote_order_qty or 0.0)
        elif order.type is OrderType.MARKET:
            params["quantity"] = format_amount(order.quantity)
        else:
            params["quantity"] = format_amount(order.quantity)
            params["price"] = format_amount(order.price or 0.0)
            params["timeInForce"] = "GTC"

        LOGGER.info("binance placing order %s", params)
        # Order placement is not idempotent; a 5xx here is surfaced, not retried.
        body = await self._request("POST", "/api/v3/order", params=params, signed=True, retry=False)
        result = CexOrderResult(
            order_id=str(body.get("orderId", "")),
            executed_qty=float(body.get("executedQty", 0) or 0),
            status=str(body.get("status", "UNKNOWN")),
            raw=body,
        )
        LOGGER.info(
            "binance order placed id=%s symbol=%s side=%s status=%s",
            result.order_id,
            order.symbol,
            order.side.value,
            result.status,
        )
        return result

    def assets_for(self, symbol: str) -> Tuple[str, str]:
        assets = self._symbol_assets.get(symbol.upper())
        if assets is not None:
            return assets
        return split_symbol(symbol)

    async def check_order(self, order: CexOrder) -> None:
        if not self._settings.trading_enabled:
            raise TradingDisabledError("binance trading is not enabled")
        if not self._settings.api_key or not self._settings.api_secret:
            raise TradingDisabledError("binance API key/secret not configured")

        if order.type is OrderType.LIMIT:
            if order.price is None or order.price <= 0:
                raise TradeRejectedError("limit orders need a positive price")
            notional = order.quantity * order.price
        elif order.side is OrderSide.BUY:
            if not order.quote_order_qty or order.quote_order_qty <= 0:
                raise TradeRejectedError("market buys need a positive quote order quantity")
            notional = order.quote_order_qty
        else:
            reference = await self.get_price(order.symbol)
            if reference is None:
                raise TradeRejectedError(f"no reference price for {order.symbol}; cannot size market sell")
            notional = order.quantity * reference

        if notional < self._settings.min_trade_amount:
            raise TradeRejectedError(
                f"trade amount {notional:.8f} is below minimum {self._settings.min_trade_amount}"
            )
        if notional > self._settings.max_trade_amount:
            raise TradeRejectedError(
                f"trade amount {notional:.8f} exceeds maximum {self._settings.max_trade_amount}"
            )

        base_asset, quote_asset = self.assets_for(order.symbol)
        if order.side is OrderSide.BUY:
            available = await self.get_free_balance(quote_asset)
            required = notional
            asset = quote_asset
        else:
            available = await self.get_free_balance(base_asset)
            required = order.quantity
            asset = base_asset
        if available < required:
            raise TradeRejectedError(
                f"insufficient {asset} balance: required {required:.8f}, available {available:.8f}"
            )

    def _signed_query(self, params: Mapping[str, Any]) -> str:
        secret = self._settings.api_secret
        if not self._settings.api_key or not secret:
            raise VenueError("binance API key and secret are required for signed requests")
        payload = dict(params)
        payload["recvWindow"] = self._settings.recv_window_ms
        payload["timestamp"] = int(self._clock() * 1000)
        query = urlencode(payload)
        signature = hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{query}&signature={signature}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        signed: bool = False,
        retry: bool = True,
    ) -> Dict[str, Any]:
        attempts = max(1, self._settings.max_retries + 1) if retry else 1
        for attempt in range(1, attempts + 1):
            last_attempt = attempt == attempts
            headers: Dict[str, str] = {}
            if signed:
                # Timestamp must be fresh on every attempt.
                url = f"{path}?{self._signed_query(params or {})}"
                headers["X-MBX-APIKEY"] = self._settings.api_key or ""
                request_params = None
            else:
                url = path
                request_params = dict(params) if params else None
            try:
                response = await self._client.request(method, url, params=request_params, headers=headers)
            except httpx.RequestError as exc:
                if last_attempt:
                    raise
                LOGGER.warning("binance %s %s failed (attempt %d/%d): %s", method, path, attempt, attempts, exc)
                await self._sleep(self._settings.retry_delay_seconds)
                continue

            if response.is_success:
                body = response.json()
                return body if isinstance(body, dict) else {"data": body}

            error = VenueRequestError(path, response.status_code, response.text)
            if not error.retryable or last_attempt:
                raise error
            if response.status_code == 429:
                LOGGER.warning("binance rate limited on %s; waiting %.1fs", path, self._settings.rate_limit_delay_seconds)
                await self._sleep(self._settings.rate_limit_delay_seconds)
            else:
                LOGGER.warning("binance %s %s -> %d (attempt %d/%d)", method, path, response.status_code, attempt, attempts)
                await self._sleep(self._settings.retry_delay_seconds)
        raise RuntimeError("binance request loop exited without a response")

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Sequence

import httpx
from eth_keys import keys
from eth_utils import keccak

from gala_arb.config import GalaSwapSettings
from gala_arb.exceptions import LiquidityError, VenueError, VenueRequestError
from gala_arb.models import DexQuote, SwapAmount, SwapReceipt, TokenKey

from .base import DexVenue
from .formatting import format_amount

LOGGER = logging.getLogger(__name__)

_LIQUIDITY_MARKERS = ("liquidity", "not enough")


def canonical_json(payload: Any) -> str:
    """Compact, key-sorted JSON with any signature/trace fields removed."""

    def strip(node: Any) -> Any:
        if isinstance(node, dict):
            return {k: strip(v) for k, v in node.items() if k not in ("signature", "trace")}
        if isinstance(node, list):
            return [strip(item) for item in node]
        return node

    return json.dumps(strip(payload), separators=(",", ":"), sort_keys=True)


def sign_payload(private_key: str, payload: Any) -> str:
    """Base64 ``r||s||v`` secp256k1 signature of keccak256(canonical JSON), v in {27, 28}."""
    key_hex = private_key[2:] if private_key.startswith("0x") else private_key
    signing_key = keys.PrivateKey(bytes.fromhex(key_hex))
    digest = keccak(canonical_json(payload).encode("utf-8"))
    signature = signing_key.sign_msg_hash(digest)
    raw = bytearray(signature.to_bytes())
    raw[64] = (raw[64] % 2) + 27
    return base64.b64encode(bytes(raw)).decode()


def is_liquidity_failure(status: int, message: str) -> bool:
    text = message.lower()
    conflict = status == 409 or "conflict" in text
    return conflict and any(marker in text for marker in _LIQUIDITY_MARKERS)


def _parse_token(raw: Any) -> TokenKey:
    if isinstance(raw, dict):
        return TokenKey(
            collection=str(raw["collection"]),
            category=str(raw.get("category", "Unit")),
            type=str(raw.get("type", "none")),
            additional_key=str(raw.get("additionalKey", "none")),
        )
    return TokenKey.parse(str(raw))


class GalaSwapDexAdapter(DexVenue):
    venue = "galaswap"

    def __init__(
        self,
        settings: GalaSwapSettings,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._sleep = sleep
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=httpx.Timeout(
                settings.request_timeout_seconds,
                connect=settings.connect_timeout_seconds,
            ),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_quote(self, token_in: TokenKey, token_out: TokenKey, amount_in: float) -> DexQuote:
        body = await self._request(
            "GET",
            "/v1/trade/quote",
            params={
                "tokenIn": str(token_in),
                "tokenOut": str(token_out),
                "amountIn": format_amount(amount_in),
            },
        )
        data = body.get("data") or {}
        try:
            amount_out = float(data["amountOut"])
            fee_tier = int(data["fee"])
        except (KeyError, TypeError, ValueError) as exc:
            raise VenueError(f"malformed quote response for {token_in}->{token_out}: {body!r}") from exc
        if amount_out <= 0:
            raise LiquidityError(f"pool returned no output for {token_in}->{token_out} amount={amount_in}")
        return DexQuote(
            amount_in=float(data.get("amountIn", amount_in)),
            amount_out=amount_out,
            fee_tier=fee_tier,
        )

    async def request_swap(self, offered: Sequence[SwapAmount], wanted: Sequence[SwapAmount]) -> SwapReceipt:
        if not offered or not wanted:
            raise VenueError("swap request needs one offered and one wanted amount")
        wallet = self._require_wallet()
        private_key = self._settings.private_key
        if not private_key:
            raise VenueError("GALA_PRIVATE_KEY is required to sign swaps")

        give, receive = offered[0], wanted[0]
        quote = await self.get_quote(give.token, receive.token, give.quantity)
        minimum_out = receive.quantity * (1.0 - self._settings.slippage_tolerance)
        LOGGER.info(
            "galaswap swap %s %s -> %s quoted=%.8f min_out=%.8f fee_tier=%d",
            format_amount(give.quantity),
            give.token.collection,
            receive.token.collection,
            quote.amount_out,
            minimum_out,
            quote.fee_tier,
        )

        payload_body = await self._request(
            "POST",
            "/v1/trade/swap",
            json_body={
                "tokenIn": str(give.token),
                "tokenOut": str(receive.token),
                "amountIn": format_amount(give.quantity),
                "amountOut": format_amount(quote.amount_out),
                "fee": quote.fee_tier,
                "sqrtPriceLimit": "0",
                "amountInMaximum": format_amount(give.quantity),
                "amountOutMinimum": format_amount(minimum_out),
            },
        )
        payload = payload_body.get("data")
        if not isinstance(payload, dict):
            raise VenueError(f"malformed swap payload response: {payload_body!r}")

        bundle = await self._request(
            "POST",
            "/v1/trade/bundle",
            json_body={
                "payload": payload,
                "type": "swap",
                "signature": sign_payload(private_key, payload),
                "user": f"eth|{wallet}",
            },
        )
        inner = bundle.get("data") or {}
        transaction_id = inner.get("data") if isinstance(inner, dict) else None
        if not transaction_id:
            raise VenueError(f"bundle response carried no transaction id: {bundle!r}")
        return SwapReceipt(transaction_id=str(transaction_id), status="pending")

    async def get_balances(self) -> Dict[TokenKey, float]:
        wallet = self._require_wallet()
        body = await self._request("GET", "/v1/user/balances", headers={"X-Wallet-Address": wallet})
        balances: Dict[TokenKey, float] = {}
        for item in body.get("balances", []):
            try:
                token = _parse_token(item["token"])
                amount = float(item.get("available", item.get("balance", 0)) or 0)
            except (KeyError, TypeError, ValueError):
                LOGGER.debug("galaswap skipping unparseable balance row: %r", item)
                continue
            balances[token] = balances.get(token, 0.0) + amount
        return balances

    def _require_wallet(self) -> str:
        wallet = self._settings.wallet_address
        if not wallet:
            raise VenueError("GALA_WALLET_ADDRESS is required for wallet operations")
        return wallet.removeprefix("eth|")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Dict[str, Any] | None = None,
        json_body: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        attempts = max(1, self._settings.max_retries + 1)
        for attempt in range(1, attempts + 1):
            last_attempt = attempt == attempts
            try:
                response = await self._client.request(method, path, params=params, json=json_body, headers=headers)
            except httpx.RequestError as exc:
                if last_attempt:
                    raise
                LOGGER.warning("galaswap %s %s failed (attempt %d/%d): %s", method, path, attempt, attempts, exc)
                await self._sleep(self._settings.retry_delay_seconds)
                continue

            if response.is_success:
                body = response.json()
                if isinstance(body, dict) and body.get("error") is True:
                    message = str(body.get("message", ""))
                    if is_liquidity_failure(int(body.get("status", response.status_code)), message):
                        raise LiquidityError(message)
                    raise VenueRequestError(str(response.request.url), response.status_code, message)
                return body if isinstance(body, dict) else {"data": body}

            text = response.text
            if is_liquidity_failure(response.status_code, text):
                raise LiquidityError(text)
            error = VenueRequestError(str(response.request.url), response.status_code, text)
            if not error.retryable or last_attempt:
                raise error
            if response.status_code == 429:
                LOGGER.warning("galaswap rate limited on %s; waiting %.1fs", path, self._settings.rate_limit_delay_seconds)
                await self._sleep(self._settings.rate_limit_delay_seconds)
            else:
                LOGGER.warning("galaswap %s %s -> %d (attempt %d/%d)", method, path, response.status_code, attempt, attempts)
                await self._sleep(self._settings.retry_delay_seconds)
        raise RuntimeError("galaswap request loop exited without a response")

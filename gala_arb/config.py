from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

from gala_arb.fee_model import FEE_TIER_RATES
from gala_arb.models import OrderStyle


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _as_optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_csv(value: str | None) -> List[str]:
    if value is None or not value.strip():
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _as_fee_tier_map(value: str | None) -> Dict[int, float]:
    """Parses `500=0.0005,3000=0.003` on top of the documented tier table."""
    rates: Dict[int, float] = dict(FEE_TIER_RATES)
    for chunk in _as_csv(value):
        if "=" not in chunk:
            raise ValueError(f"invalid fee tier override {chunk!r}; expected tier=rate")
        tier, rate = chunk.split("=", 1)
        rates[int(tier.strip())] = float(rate.strip())
    return rates


def _as_order_style(value: str | None, default: OrderStyle) -> OrderStyle:
    if value is None or not value.strip():
        return default
    try:
        return OrderStyle(value.strip().lower())
    except ValueError:
        raise ValueError(f"ARB_CEX_ORDER_STYLE must be 'maker' or 'taker', got {value!r}") from None


def _optional_path(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return str(Path(value.strip()).expanduser())


@dataclass(frozen=True)
class StrategySettings:
    min_profit: float = 1.0
    # When set, candidates down to -max_accepted_loss are acted on.
    max_accepted_loss: float | None = None
    check_interval_seconds: float = 60.0
    gas_fee: float = 1.0
    cex_order_style: OrderStyle = OrderStyle.TAKER
    cex_maker_fee_rate: float = 0.001
    cex_taker_fee_rate: float = 0.001
    limit_price_offset: float = 0.0005
    enable_reverse: bool = True
    fee_tier_rates: Dict[int, float] = field(default_factory=lambda: dict(FEE_TIER_RATES))

    @property
    def profit_threshold(self) -> float:
        if self.max_accepted_loss is not None:
            return -abs(self.max_accepted_loss)
        return self.min_profit


@dataclass(frozen=True)
class CircuitBreakerSettings:
    max_failures: int = 3
    retry_interval_seconds: float = 300.0


@dataclass(frozen=True)
class GalaSwapSettings:
    api_base_url: str = "https://dex-backend-prod1.defi.gala.com"
    wallet_address: str | None = None
    private_key: str | None = None
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 15.0
    max_retries: int = 5
    retry_delay_seconds: float = 0.25
    rate_limit_delay_seconds: float = 10.0
    slippage_tolerance: float = 0.05


@dataclass(frozen=True)
class BinanceSettings:
    enabled: bool = True
    api_base_url: str = "https://api.binance.com"
    api_key: str | None = None
    api_secret: str | None = None
    request_timeout_seconds: float = 10.0
    max_retries: int = 5
    retry_delay_seconds: float = 0.25
    rate_limit_delay_seconds: float = 10.0
    recv_window_ms: int = 5000
    trading_enabled: bool = False
    min_trade_amount: float = 10.0
    max_trade_amount: float = 10000.0


@dataclass(frozen=True)
class ReporterSettings:
    slack_webhook_uri: str | None = None
    slack_alert_webhook_uri: str | None = None
    discord_webhook_uri: str | None = None
    discord_alert_webhook_uri: str | None = None
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class AppSettings:
    live_mode: bool
    run_once: bool
    loop_wait_seconds: float
    log_level: str
    token_config_path: str | None

    strategy: StrategySettings
    circuit_breaker: CircuitBreakerSettings
    galaswap: GalaSwapSettings
    binance: BinanceSettings
    reporter: ReporterSettings = field(default_factory=ReporterSettings)


def load_settings() -> AppSettings:
    load_dotenv(override=False)

    loop_wait_ms = _as_int(os.getenv("LOOP_WAIT_MS"), 15000)
    if loop_wait_ms < 0:
        raise ValueError("LOOP_WAIT_MS must be a non-negative integer")

    slack_info = os.getenv("SLACK_WEBHOOK_URI") or None
    discord_info = os.getenv("DISCORD_WEBHOOK_URI") or None

    strategy = StrategySettings(
        min_profit=_as_float(os.getenv("ARB_MIN_PROFIT"), 1.0),
        max_accepted_loss=_as_optional_float(os.getenv("ARB_MAX_ACCEPTED_LOSS")),
        check_interval_seconds=_as_float(os.getenv("ARB_CHECK_INTERVAL_SECONDS"), 60.0),
        gas_fee=_as_float(os.getenv("ARB_GAS_FEE"), 1.0),
        cex_order_style=_as_order_style(os.getenv("ARB_CEX_ORDER_STYLE"), OrderStyle.TAKER),
        cex_maker_fee_rate=_as_float(os.getenv("ARB_CEX_MAKER_FEE_RATE"), 0.001),
        cex_taker_fee_rate=_as_float(os.getenv("ARB_CEX_TAKER_FEE_RATE"), 0.001),
        limit_price_offset=_as_float(os.getenv("ARB_LIMIT_PRICE_OFFSET"), 0.0005),
        enable_reverse=_as_bool(os.getenv("ARB_ENABLE_REVERSE"), True),
        fee_tier_rates=_as_fee_tier_map(os.getenv("ARB_FEE_TIER_RATES")),
    )

    return AppSettings(
        live_mode=_as_bool(os.getenv("ARB_LIVE_MODE"), default=False),
        run_once=_as_bool(os.getenv("ARB_RUN_ONCE"), default=False),
        loop_wait_seconds=loop_wait_ms / 1000.0,
        log_level=os.getenv("ARB_LOG_LEVEL", "INFO"),
        token_config_path=_optional_path(os.getenv("ARB_TOKEN_CONFIG_PATH")),
        strategy=strategy,
        circuit_breaker=CircuitBreakerSettings(
            max_failures=_as_int(os.getenv("ARB_BREAKER_MAX_FAILURES"), 3),
            retry_interval_seconds=_as_float(os.getenv("ARB_BREAKER_RETRY_INTERVAL_SECONDS"), 300.0),
        ),
        galaswap=GalaSwapSettings(
            api_base_url=os.getenv("GALADEFI_API_BASE_URI", "https://dex-backend-prod1.defi.gala.com"),
            wallet_address=os.getenv("GALA_WALLET_ADDRESS") or None,
            private_key=os.getenv("GALA_PRIVATE_KEY") or None,
            request_timeout_seconds=_as_int(os.getenv("GALADEFI_REQUEST_TIMEOUT_MS"), 30000) / 1000.0,
            connect_timeout_seconds=_as_int(os.getenv("GALADEFI_CONNECT_TIMEOUT_MS"), 15000) / 1000.0,
            max_retries=_as_int(os.getenv("GALADEFI_MAX_RETRIES"), 5),
            slippage_tolerance=_as_float(os.getenv("GALADEFI_SLIPPAGE_TOLERANCE"), 0.05),
        ),
        binance=BinanceSettings(
            enabled=_as_bool(os.getenv("BINANCE_ENABLED"), True),
            api_base_url=os.getenv("BINANCE_API_BASE_URI", "https://api.binance.com"),
            api_key=os.getenv("BINANCE_API_KEY") or None,
            api_secret=os.getenv("BINANCE_API_SECRET") or None,
            request_timeout_seconds=_as_float(os.getenv("BINANCE_REQUEST_TIMEOUT_SECONDS"), 10.0),
            max_retries=_as_int(os.getenv("BINANCE_MAX_RETRIES"), 5),
            trading_enabled=_as_bool(os.getenv("BINANCE_TRADING_ENABLED"), False),
            min_trade_amount=_as_float(os.getenv("BINANCE_MIN_TRADE_AMOUNT"), 10.0),
            max_trade_amount=_as_float(os.getenv("BINANCE_MAX_TRADE_AMOUNT"), 10000.0),
        ),
        reporter=ReporterSettings(
            slack_webhook_uri=slack_info,
            slack_alert_webhook_uri=os.getenv("SLACK_ALERT_WEBHOOK_URI") or slack_info,
            discord_webhook_uri=discord_info,
            discord_alert_webhook_uri=os.getenv("DISCORD_ALERT_WEBHOOK_URI") or discord_info,
        ),
    )

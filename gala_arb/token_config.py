"""Token and venue mapping configuration.

Each mapping ties a source token on the DEX to its CEX symbol and lists the
routing pairs to try, primary first. The JSON layout is::

    {
      "mappings": [
        {
          "source": "GALA|Unit|none|none",
          "cex_symbol": "GALAUSDT",
          "cex_base_asset": "GALA",
          "cex_quote_asset": "USDT",
          "trade_sizes": [1000, 2000, 3000, 4000, 5000],
          "min_trade_size": 1000,
          "max_trade_size": 5000,
          "pairs": [
            {"intermediate": "GWETH|Unit|none|none", "quote_symbol": "ETHUSDT"},
            {"intermediate": "GUSDC|Unit|none|none", "stable": true}
          ]
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from gala_arb.models import TokenKey, TradingPair, VenueMapping

LOGGER = logging.getLogger(__name__)


GALA = TokenKey("GALA")
GWETH = TokenKey("GWETH")
GUSDC = TokenKey("GUSDC")
GUSDT = TokenKey("GUSDT")


def default_venue_mappings() -> list[VenueMapping]:
    return [
        VenueMapping(
            source=GALA,
            cex_symbol="GALAUSDT",
            cex_base_asset="GALA",
            cex_quote_asset="USDT",
            pairs=(
                TradingPair(GWETH, quote_symbol="ETHUSDT"),
                TradingPair(GUSDC, stable=True),
                TradingPair(GUSDT, stable=True),
            ),
            trade_sizes=(1000.0, 2000.0, 3000.0, 4000.0, 5000.0),
            min_trade_size=1000.0,
            max_trade_size=5000.0,
            cex_price_decimals=5,
            cex_quantity_decimals=0,
        )
    ]


def _parse_pair(raw: Dict[str, Any], where: str) -> TradingPair:
    if "intermediate" not in raw:
        raise ValueError(f"{where}: pair is missing 'intermediate'")
    stable = bool(raw.get("stable", False))
    quote_symbol = raw.get("quote_symbol")
    if not stable and not quote_symbol:
        raise ValueError(f"{where}: non-stable pair needs a 'quote_symbol' to price it")
    return TradingPair(
        intermediate=TokenKey.parse(str(raw["intermediate"])),
        quote_symbol=str(quote_symbol) if quote_symbol else None,
        stable=stable,
    )


def _parse_mapping(raw: Dict[str, Any], index: int) -> VenueMapping:
    where = f"mappings[{index}]"
    for key in ("source", "cex_symbol", "pairs", "trade_sizes"):
        if key not in raw:
            raise ValueError(f"{where}: missing required key {key!r}")

    source = TokenKey.parse(str(raw["source"]))
    pairs = tuple(_parse_pair(p, f"{where}.pairs[{i}]") for i, p in enumerate(raw["pairs"]))
    if not pairs:
        raise ValueError(f"{where}: at least one pair is required")

    sizes = sorted(float(s) for s in raw["trade_sizes"])
    if not sizes or sizes[0] <= 0:
        raise ValueError(f"{where}: trade_sizes must be non-empty and positive")

    max_trade_size = raw.get("max_trade_size")
    cex_symbol = str(raw["cex_symbol"]).upper()
    quote_asset = str(raw.get("cex_quote_asset", "USDT")).upper()
    base_asset = str(raw.get("cex_base_asset") or cex_symbol.removesuffix(quote_asset)).upper()

    return VenueMapping(
        source=source,
        cex_symbol=cex_symbol,
        cex_base_asset=base_asset,
        cex_quote_asset=quote_asset,
        pairs=pairs,
        trade_sizes=tuple(sizes),
        min_trade_size=float(raw.get("min_trade_size", 0.0)),
        max_trade_size=float(max_trade_size) if max_trade_size is not None else None,
        cex_price_decimals=int(raw.get("cex_price_decimals", 8)),
        cex_quantity_decimals=int(raw.get("cex_quantity_decimals", 8)),
    )


def parse_venue_mappings(payload: Dict[str, Any]) -> list[VenueMapping]:
    raw_mappings = payload.get("mappings")
    if not isinstance(raw_mappings, list) or not raw_mappings:
        raise ValueError("token config must contain a non-empty 'mappings' list")
    mappings: List[VenueMapping] = [_parse_mapping(raw, i) for i, raw in enumerate(raw_mappings)]
    seen: set[TokenKey] = set()
    for mapping in mappings:
        if mapping.source in seen:
            raise ValueError(f"duplicate mapping for source token {mapping.source}")
        seen.add(mapping.source)
    return mappings


def load_venue_mappings(path: str | None) -> list[VenueMapping]:
    if not path:
        return default_venue_mappings()
    config_path = Path(path)
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    mappings = parse_venue_mappings(payload)
    LOGGER.info("loaded %d venue mappings from %s", len(mappings), config_path)
    return mappings

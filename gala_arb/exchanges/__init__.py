from .base import CexVenue, DexVenue
from .binance import BinanceAdapter
from .galaswap import GalaSwapDexAdapter

__all__ = ["BinanceAdapter", "CexVenue", "DexVenue", "GalaSwapDexAdapter"]

from __future__ import annotations


class VenueError(Exception):
    """Base class for errors raised by venue adapters."""


class LiquidityError(VenueError):
    """The DEX pool cannot fill the requested amount."""


class VenueRequestError(VenueError):
    def __init__(self, uri: str, status: int, response_text: str) -> None:
        super().__init__(f"Failed to fetch {uri}: {status} {response_text}")
        self.uri = uri
        self.status = status
        self.response_text = response_text

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status == 429


class TradingDisabledError(VenueError):
    """Order placement was requested while trading is switched off."""


class TradeRejectedError(VenueError):
    """A pre-trade guard refused the order before it reached the venue."""

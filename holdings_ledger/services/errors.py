"""Domain errors raised by the ledger engine."""

from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    """Base class for holdings ledger failures."""


class PortfolioNotFound(LedgerError):
    def __init__(self, portfolio_id: int):
        super().__init__(f"Portfolio {portfolio_id} not found")
        self.portfolio_id = portfolio_id


class PriceUnavailable(LedgerError):
    """No current price could be resolved for a symbol."""

    def __init__(self, symbol: str, reason: str | None = None):
        message = f"No price available for {symbol}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.symbol = symbol
        self.reason = reason


class NegativeQuantityDetected(LedgerError):
    """A sell or withdrawal asked for more than the recorded holding."""

    def __init__(self, symbol: str, requested: Decimal, available: Decimal):
        super().__init__(
            f"{symbol or 'asset'}: requested {requested} but only {available} is held"
        )
        self.symbol = symbol
        self.requested = requested
        self.available = available


__all__ = [
    "LedgerError",
    "PortfolioNotFound",
    "PriceUnavailable",
    "NegativeQuantityDetected",
]

"""Database model exports."""

from .portfolio import (
    ClosedPosition,
    Portfolio,
    TRADE_SIDES,
    TRANSFER_TYPES,
    Trade,
    Transfer,
)

__all__ = [
    "Portfolio",
    "Trade",
    "Transfer",
    "ClosedPosition",
    "TRADE_SIDES",
    "TRANSFER_TYPES",
]

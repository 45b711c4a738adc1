"""Immutable value records loaded from storage for ledger replay."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


class TradeSide(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class TransferType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class TradeSource(str, enum.Enum):
    MANUAL = "manual"
    EXCHANGE_SYNC = "exchange-sync"
    IMPORT = "import"
    HOLDINGS_SNAPSHOT = "holdings-snapshot"


@dataclass(frozen=True)
class TradeRecord:
    """An executed order."""

    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    executed_at: datetime
    fee: Decimal = Decimal("0")
    source: str = TradeSource.MANUAL.value
    external_id: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class TransferRecord:
    """A deposit or withdrawal of a single asset."""

    type: TransferType
    asset: str
    amount: Decimal
    executed_at: datetime
    fee: Decimal = Decimal("0")
    known_cost: Decimal | None = None
    source: str = TradeSource.MANUAL.value
    external_id: str | None = None
    tx_id: str | None = None
    network: str | None = None
    notes: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class PortfolioRecord:
    id: int
    owner_id: str
    name: str
    total_invested: Decimal = Decimal("0")
    current_value: Decimal = Decimal("0")
    profit_loss: Decimal = Decimal("0")


@dataclass(frozen=True)
class PortfolioTotals:
    total_invested: Decimal
    current_value: Decimal
    profit_loss: Decimal


__all__ = [
    "PortfolioTotals",
    "TradeSide",
    "TransferType",
    "TradeSource",
    "TradeRecord",
    "TransferRecord",
    "PortfolioRecord",
]

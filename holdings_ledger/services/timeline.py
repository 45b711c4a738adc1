"""Merge trades and transfers into per-symbol event timelines."""

from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from .records import TradeRecord, TradeSide, TransferRecord, TransferType


class EventKind(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


_INCREASING = frozenset({EventKind.BUY, EventKind.DEPOSIT})
_ORIGIN_RANK = {"trade": 0, "transfer": 1}


@dataclass(frozen=True)
class AssetEvent:
    kind: EventKind
    quantity: Decimal
    timestamp: datetime
    price: Decimal | None = None
    fee: Decimal = Decimal("0")
    known_cost: Decimal | None = None
    origin: str = "trade"
    record_id: int | None = None

    @property
    def increases_holding(self) -> bool:
        return self.kind in _INCREASING

    @property
    def source_ref(self) -> str:
        return f"{self.origin}:{self.record_id if self.record_id is not None else '-'}"


def normalize_symbol_key(symbol: str) -> str:
    return symbol.strip().upper()


def as_utc(value: datetime) -> datetime:
    # Naive timestamps are stored as UTC; aware ones are converted.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def event_order_key(event: AssetEvent) -> tuple:
    """Sort key for events: time, then acquisitions before disposals, then trades
    before transfers, then record id."""

    return (
        event.timestamp,
        0 if event.increases_holding else 1,
        _ORIGIN_RANK.get(event.origin, 2),
        event.record_id if event.record_id is not None else -1,
    )


def trade_event(trade: TradeRecord) -> AssetEvent:
    side = TradeSide(trade.side)
    return AssetEvent(
        kind=EventKind.BUY if side is TradeSide.BUY else EventKind.SELL,
        quantity=abs(trade.quantity),
        price=trade.price,
        fee=trade.fee or Decimal("0"),
        timestamp=as_utc(trade.executed_at),
        origin="trade",
        record_id=trade.id,
    )


def transfer_event(transfer: TransferRecord) -> AssetEvent:
    kind = TransferType(transfer.type)
    return AssetEvent(
        kind=EventKind.DEPOSIT if kind is TransferType.DEPOSIT else EventKind.WITHDRAWAL,
        quantity=abs(transfer.amount),
        fee=transfer.fee or Decimal("0"),
        known_cost=transfer.known_cost,
        timestamp=as_utc(transfer.executed_at),
        origin="transfer",
        record_id=transfer.id,
    )


def build_timelines(
    trades: Iterable[TradeRecord],
    transfers: Iterable[TransferRecord],
) -> dict[str, list[AssetEvent]]:
    """Group trades by symbol and transfers by asset, each series ordered in time.

    Trade symbols (``BTCUSDT``) and transfer assets (``BTC``) stay in separate
    series; reconciling the two key spaces is the caller's job.
    """

    timelines: dict[str, list[AssetEvent]] = defaultdict(list)
    for trade in trades:
        timelines[normalize_symbol_key(trade.symbol)].append(trade_event(trade))
    for transfer in transfers:
        timelines[normalize_symbol_key(transfer.asset)].append(transfer_event(transfer))
    return {symbol: sorted(events, key=event_order_key) for symbol, events in sorted(timelines.items())}


__all__ = [
    "AssetEvent",
    "EventKind",
    "as_utc",
    "build_timelines",
    "event_order_key",
    "normalize_symbol_key",
    "trade_event",
    "transfer_event",
]

"""Weighted-average cost ledger.

Folds an ordered stream of :class:`AssetEvent` for one symbol into the open
lot state and the closed-lot summaries produced each time the holding is fully
sold. The processor is pure: it performs no I/O and yields identical output for
identical input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, getcontext
from typing import Iterable

from .errors import NegativeQuantityDetected
from .timeline import AssetEvent, EventKind

getcontext().prec = 28

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DUST_EPSILON = Decimal("0.00000001")
# Bound for percentages so tiny invested amounts cannot overflow storage.
PERCENTAGE_CAP = Decimal("1E15")
AMOUNT_QUANTUM = Decimal("0.00000001")
PERCENTAGE_QUANTUM = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_percentage(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return value.quantize(PERCENTAGE_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass
class LotState:
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO

    @property
    def average_price(self) -> Decimal:
        if self.quantity > 0:
            return self.cost_basis / self.quantity
        return ZERO

    @property
    def is_open(self) -> bool:
        return self.quantity > 0


@dataclass
class _LotTotals:
    """Accumulators scoped to one lot, reset whenever the lot ends."""

    total_bought: Decimal = ZERO
    total_sold: Decimal = ZERO
    total_invested: Decimal = ZERO
    total_received: Decimal = ZERO
    first_buy_at: datetime | None = None
    last_sell_at: datetime | None = None
    trade_count: int = 0

    def acquire(self, quantity: Decimal, timestamp: datetime) -> None:
        self.total_bought += quantity
        if self.first_buy_at is None or timestamp < self.first_buy_at:
            self.first_buy_at = timestamp


@dataclass(frozen=True)
class ClosedPositionData:
    symbol: str
    total_bought: Decimal
    total_sold: Decimal
    average_buy_price: Decimal
    average_sell_price: Decimal
    total_invested: Decimal
    total_received: Decimal
    realized_profit_loss: Decimal
    # None when the lot carried no invested cost and the ratio is undefined.
    realized_profit_loss_percentage: Decimal | None
    opened_at: datetime
    closed_at: datetime
    number_of_trades: int


@dataclass(frozen=True)
class LedgerAnomaly:
    kind: str
    symbol: str
    source_ref: str
    requested: Decimal
    available: Decimal


@dataclass
class LedgerResult:
    symbol: str
    final_lot: LotState
    closed_lots: list[ClosedPositionData] = field(default_factory=list)
    realized_profit_loss: Decimal = ZERO
    anomalies: list[LedgerAnomaly] = field(default_factory=list)


def profit_loss_percentage(profit_loss: Decimal, invested: Decimal) -> Decimal | None:
    """Return ``profit_loss`` as a percentage of ``invested``, or None when undefined."""

    if invested <= 0:
        return None
    pct = profit_loss / invested * HUNDRED
    return max(-PERCENTAGE_CAP, min(PERCENTAGE_CAP, pct))


class LedgerProcessor:
    """Running weighted-average cost state for a single symbol."""

    def __init__(
        self,
        symbol: str = "",
        *,
        dust_epsilon: Decimal = DUST_EPSILON,
        strict: bool = False,
    ):
        self.symbol = symbol
        self.dust_epsilon = dust_epsilon
        self.strict = strict
        self.lot = LotState()
        self._totals = _LotTotals()
        self._realized = ZERO
        self._closed: list[ClosedPositionData] = []
        self._anomalies: list[LedgerAnomaly] = []

    def apply(self, event: AssetEvent) -> ClosedPositionData | None:
        """Apply one event; return the closed position if it liquidated the lot."""

        if event.quantity == 0:
            return None
        if event.kind is EventKind.BUY:
            self._buy(event)
        elif event.kind is EventKind.DEPOSIT:
            self._deposit(event)
        elif event.kind is EventKind.SELL:
            return self._sell(event)
        elif event.kind is EventKind.WITHDRAWAL:
            self._withdraw(event)
        return None

    def result(self) -> LedgerResult:
        return LedgerResult(
            symbol=self.symbol,
            final_lot=LotState(self.lot.quantity, self.lot.cost_basis),
            closed_lots=list(self._closed),
            realized_profit_loss=self._realized,
            anomalies=list(self._anomalies),
        )

    def _buy(self, event: AssetEvent) -> None:
        cost = event.quantity * (event.price or ZERO) + event.fee
        self.lot.quantity += event.quantity
        self.lot.cost_basis += cost
        self._totals.acquire(event.quantity, event.timestamp)
        self._totals.total_invested += cost
        self._totals.trade_count += 1

    def _deposit(self, event: AssetEvent) -> None:
        # Without a known cost the units arrive free and pull the average down.
        self.lot.quantity += event.quantity
        if event.known_cost is not None and event.known_cost > 0:
            self.lot.cost_basis += event.known_cost
            self._totals.total_invested += event.known_cost
        self._totals.acquire(event.quantity, event.timestamp)

    def _sell(self, event: AssetEvent) -> ClosedPositionData | None:
        covered = self._check_available(event)
        proceeds = event.quantity * (event.price or ZERO) - event.fee
        cost_of_sold = self._release(covered)
        self._realized += proceeds - cost_of_sold
        self.lot.quantity -= event.quantity

        self._totals.total_sold += event.quantity
        self._totals.total_received += proceeds
        self._totals.trade_count += 1
        self._totals.last_sell_at = event.timestamp

        if not self._settle():
            return None
        if self._totals.total_bought <= 0:
            # A sale with nothing acquired in this lot has no lifecycle to close.
            self._totals = _LotTotals()
            return None
        closed = self._close(event.timestamp)
        self._closed.append(closed)
        self._totals = _LotTotals()
        return closed

    def _withdraw(self, event: AssetEvent) -> None:
        covered = self._check_available(event)
        self._release(covered)
        self.lot.quantity -= event.quantity
        if self._settle():
            # Custody movement ends the lot without realizing anything.
            self._totals = _LotTotals()

    def _check_available(self, event: AssetEvent) -> Decimal:
        held = self.lot.quantity
        if event.quantity - held <= self.dust_epsilon:
            return min(event.quantity, held)
        if self.strict:
            raise NegativeQuantityDetected(self.symbol, event.quantity, held)
        anomaly = LedgerAnomaly(
            kind="negative_quantity",
            symbol=self.symbol,
            source_ref=event.source_ref,
            requested=event.quantity,
            available=held,
        )
        self._anomalies.append(anomaly)
        logger.warning(
            "%s of %s %s exceeds held quantity %s; clamping to zero",
            event.kind.value,
            event.quantity,
            self.symbol or "asset",
            held,
            extra={"symbol": self.symbol, "source_ref": event.source_ref},
        )
        return held

    def _release(self, quantity: Decimal) -> Decimal:
        """Remove the cost attributed to ``quantity`` units at the average price."""

        if quantity >= self.lot.quantity:
            released = self.lot.cost_basis
        else:
            released = self.lot.average_price * quantity
        self.lot.cost_basis -= released
        return released

    def _settle(self) -> bool:
        """Clamp dust to zero; return True when the holding is now empty."""

        if self.lot.quantity < self.dust_epsilon:
            self.lot.quantity = ZERO
            self.lot.cost_basis = ZERO
            return True
        if self.lot.cost_basis < 0:
            self.lot.cost_basis = ZERO
        return False

    def _close(self, closed_at: datetime) -> ClosedPositionData:
        totals = self._totals
        realized = totals.total_received - totals.total_invested
        average_sell = totals.total_received / totals.total_sold if totals.total_sold > 0 else ZERO
        return ClosedPositionData(
            symbol=self.symbol,
            total_bought=totals.total_bought,
            total_sold=totals.total_sold,
            average_buy_price=totals.total_invested / totals.total_bought,
            average_sell_price=average_sell,
            total_invested=totals.total_invested,
            total_received=totals.total_received,
            realized_profit_loss=realized,
            realized_profit_loss_percentage=profit_loss_percentage(realized, totals.total_invested),
            opened_at=totals.first_buy_at or closed_at,
            closed_at=totals.last_sell_at or closed_at,
            number_of_trades=totals.trade_count,
        )


def process_events(
    events: Iterable[AssetEvent],
    *,
    symbol: str = "",
    dust_epsilon: Decimal = DUST_EPSILON,
    strict: bool = False,
) -> LedgerResult:
    """Replay ``events`` (already ordered) and return the final ledger state."""

    processor = LedgerProcessor(symbol, dust_epsilon=dust_epsilon, strict=strict)
    for event in events:
        processor.apply(event)
    return processor.result()


__all__ = [
    "DUST_EPSILON",
    "ClosedPositionData",
    "LedgerAnomaly",
    "LedgerProcessor",
    "LedgerResult",
    "LotState",
    "process_events",
    "profit_loss_percentage",
    "quantize_amount",
    "quantize_percentage",
]

"""Data access for trades, transfers, closed positions and portfolio totals.

Writes are staged and only become visible on :meth:`commit`, so a portfolio
recomputation lands as a single unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Iterable, Protocol, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ClosedPosition, Portfolio, Trade, Transfer
from .errors import PortfolioNotFound
from .ledger import ClosedPositionData
from .records import (
    PortfolioRecord,
    PortfolioTotals,
    TradeRecord,
    TradeSide,
    TransferRecord,
    TransferType,
)
from .timeline import as_utc, normalize_symbol_key

logger = logging.getLogger(__name__)


class LedgerRepository(Protocol):
    async def get_portfolio(self, portfolio_id: int) -> PortfolioRecord | None:
        ...

    async def list_portfolios(self, owner_id: str | None = None) -> list[PortfolioRecord]:
        ...

    async def load_trades(self, portfolio_id: int) -> list[TradeRecord]:
        ...

    async def load_transfers(self, portfolio_id: int) -> list[TransferRecord]:
        ...

    async def list_closed_positions(
        self, portfolio_id: int, symbol: str | None = None
    ) -> list[ClosedPositionData]:
        ...

    async def save_closed_position(self, portfolio_id: int, symbol: str, data: ClosedPositionData) -> None:
        ...

    async def delete_closed_positions(self, portfolio_id: int, symbol: str | None = None) -> None:
        ...

    async def save_portfolio_summary(self, portfolio_id: int, totals: PortfolioTotals) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


def _portfolio_record(row: Portfolio) -> PortfolioRecord:
    return PortfolioRecord(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        total_invested=Decimal(str(row.total_invested or 0)),
        current_value=Decimal(str(row.current_value or 0)),
        profit_loss=Decimal(str(row.profit_loss or 0)),
    )


def _trade_record(row: Trade) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        symbol=row.symbol,
        side=TradeSide(row.side),
        quantity=Decimal(str(row.quantity)),
        price=Decimal(str(row.price)),
        fee=Decimal(str(row.fee or 0)),
        executed_at=as_utc(row.executed_at),
        source=row.source,
        external_id=row.external_id,
    )


def _transfer_record(row: Transfer) -> TransferRecord:
    return TransferRecord(
        id=row.id,
        type=TransferType(row.type),
        asset=row.asset,
        amount=Decimal(str(row.amount)),
        fee=Decimal(str(row.fee or 0)),
        known_cost=Decimal(str(row.known_cost)) if row.known_cost is not None else None,
        executed_at=as_utc(row.executed_at),
        source=row.source,
        external_id=row.external_id,
        tx_id=row.tx_id,
        network=row.network,
        notes=row.notes,
    )


def _closed_position_data(row: ClosedPosition) -> ClosedPositionData:
    pct = row.realized_profit_loss_percentage
    return ClosedPositionData(
        symbol=row.symbol,
        total_bought=Decimal(str(row.total_bought)),
        total_sold=Decimal(str(row.total_sold)),
        average_buy_price=Decimal(str(row.average_buy_price)),
        average_sell_price=Decimal(str(row.average_sell_price)),
        total_invested=Decimal(str(row.total_invested)),
        total_received=Decimal(str(row.total_received)),
        realized_profit_loss=Decimal(str(row.realized_profit_loss)),
        realized_profit_loss_percentage=Decimal(str(pct)) if pct is not None else None,
        opened_at=as_utc(row.opened_at),
        closed_at=as_utc(row.closed_at),
        number_of_trades=row.number_of_trades,
    )


def _trade_row(portfolio_id: int, trade: TradeRecord) -> Trade:
    return Trade(
        portfolio_id=portfolio_id,
        symbol=normalize_symbol_key(trade.symbol),
        side=TradeSide(trade.side).value,
        quantity=trade.quantity,
        price=trade.price,
        fee=trade.fee,
        executed_at=as_utc(trade.executed_at),
        source=trade.source,
        external_id=trade.external_id,
    )


def _transfer_row(portfolio_id: int, transfer: TransferRecord) -> Transfer:
    return Transfer(
        portfolio_id=portfolio_id,
        type=TransferType(transfer.type).value,
        asset=normalize_symbol_key(transfer.asset),
        amount=transfer.amount,
        fee=transfer.fee,
        known_cost=transfer.known_cost,
        executed_at=as_utc(transfer.executed_at),
        source=transfer.source,
        external_id=transfer.external_id,
        tx_id=transfer.tx_id,
        network=transfer.network,
        notes=transfer.notes,
    )


class SqlAlchemyLedgerRepository:
    """Repository backed by an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _require_portfolio(self, portfolio_id: int) -> Portfolio:
        portfolio = await self.session.get(Portfolio, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFound(portfolio_id)
        return portfolio

    async def get_portfolio(self, portfolio_id: int) -> PortfolioRecord | None:
        portfolio = await self.session.get(Portfolio, portfolio_id)
        return _portfolio_record(portfolio) if portfolio is not None else None

    async def list_portfolios(self, owner_id: str | None = None) -> list[PortfolioRecord]:
        stmt = select(Portfolio).order_by(Portfolio.id)
        if owner_id is not None:
            stmt = stmt.where(Portfolio.owner_id == owner_id)
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_portfolio_record(row) for row in rows]

    async def create_portfolio(
        self, name: str, *, owner_id: str = "system", description: str | None = None
    ) -> PortfolioRecord:
        name = name.strip()
        if not name:
            raise ValueError("Portfolio name must not be empty")
        portfolio = Portfolio(
            name=name,
            owner_id=owner_id,
            description=description,
            total_invested=Decimal("0"),
            current_value=Decimal("0"),
            profit_loss=Decimal("0"),
        )
        self.session.add(portfolio)
        await self.session.commit()
        await self.session.refresh(portfolio)
        return _portfolio_record(portfolio)

    async def load_trades(self, portfolio_id: int) -> list[TradeRecord]:
        await self._require_portfolio(portfolio_id)
        rows = (
            await self.session.execute(
                select(Trade)
                .where(Trade.portfolio_id == portfolio_id)
                .order_by(Trade.executed_at, Trade.id)
            )
        ).scalars().all()
        return [_trade_record(row) for row in rows]

    async def load_transfers(self, portfolio_id: int) -> list[TransferRecord]:
        await self._require_portfolio(portfolio_id)
        rows = (
            await self.session.execute(
                select(Transfer)
                .where(Transfer.portfolio_id == portfolio_id)
                .order_by(Transfer.executed_at, Transfer.id)
            )
        ).scalars().all()
        return [_transfer_record(row) for row in rows]

    async def _existing_external_ids(self, model, portfolio_id: int, external_ids: set[str]) -> set[str]:
        if not external_ids:
            return set()
        rows = (
            await self.session.execute(
                select(model.external_id).where(
                    model.portfolio_id == portfolio_id,
                    model.external_id.in_(sorted(external_ids)),
                )
            )
        ).scalars().all()
        return set(rows)

    async def add_trades(self, portfolio_id: int, trades: Iterable[TradeRecord]) -> tuple[int, int]:
        """Insert trades, skipping any whose external id is already recorded.

        Returns ``(imported, skipped)``.
        """

        await self._require_portfolio(portfolio_id)
        trades = list(trades)
        seen = await self._existing_external_ids(
            Trade, portfolio_id, {t.external_id for t in trades if t.external_id}
        )
        imported = skipped = 0
        for trade in trades:
            if trade.external_id and trade.external_id in seen:
                skipped += 1
                continue
            if trade.external_id:
                seen.add(trade.external_id)
            self.session.add(_trade_row(portfolio_id, trade))
            imported += 1
        await self.session.commit()
        return imported, skipped

    async def add_transfers(self, portfolio_id: int, transfers: Iterable[TransferRecord]) -> tuple[int, int]:
        await self._require_portfolio(portfolio_id)
        transfers = list(transfers)
        seen = await self._existing_external_ids(
            Transfer, portfolio_id, {t.external_id for t in transfers if t.external_id}
        )
        imported = skipped = 0
        for transfer in transfers:
            if transfer.external_id and transfer.external_id in seen:
                skipped += 1
                continue
            if transfer.external_id:
                seen.add(transfer.external_id)
            self.session.add(_transfer_row(portfolio_id, transfer))
            imported += 1
        await self.session.commit()
        return imported, skipped

    async def replace_trades_by_source(
        self, portfolio_id: int, source: str, trades: Iterable[TradeRecord]
    ) -> int:
        """Replace every trade tagged ``source`` with ``trades`` in one commit."""

        await self._require_portfolio(portfolio_id)
        await self.session.execute(
            delete(Trade).where(Trade.portfolio_id == portfolio_id, Trade.source == source)
        )
        inserted = 0
        for trade in trades:
            self.session.add(_trade_row(portfolio_id, replace(trade, source=source)))
            inserted += 1
        await self.session.commit()
        return inserted

    async def list_closed_positions(
        self, portfolio_id: int, symbol: str | None = None
    ) -> list[ClosedPositionData]:
        stmt = select(ClosedPosition).where(ClosedPosition.portfolio_id == portfolio_id)
        if symbol is not None:
            stmt = stmt.where(ClosedPosition.symbol == normalize_symbol_key(symbol))
        stmt = stmt.order_by(ClosedPosition.closed_at.desc(), ClosedPosition.id.desc())
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_closed_position_data(row) for row in rows]

    async def save_closed_position(self, portfolio_id: int, symbol: str, data: ClosedPositionData) -> None:
        self.session.add(
            ClosedPosition(
                portfolio_id=portfolio_id,
                symbol=symbol,
                total_bought=data.total_bought,
                total_sold=data.total_sold,
                average_buy_price=data.average_buy_price,
                average_sell_price=data.average_sell_price,
                total_invested=data.total_invested,
                total_received=data.total_received,
                realized_profit_loss=data.realized_profit_loss,
                realized_profit_loss_percentage=data.realized_profit_loss_percentage,
                opened_at=as_utc(data.opened_at),
                closed_at=as_utc(data.closed_at),
                number_of_trades=data.number_of_trades,
            )
        )

    async def delete_closed_positions(self, portfolio_id: int, symbol: str | None = None) -> None:
        stmt = delete(ClosedPosition).where(ClosedPosition.portfolio_id == portfolio_id)
        if symbol is not None:
            stmt = stmt.where(ClosedPosition.symbol == symbol)
        await self.session.execute(stmt)

    async def save_portfolio_summary(self, portfolio_id: int, totals: PortfolioTotals) -> None:
        portfolio = await self._require_portfolio(portfolio_id)
        portfolio.total_invested = totals.total_invested
        portfolio.current_value = totals.current_value
        portfolio.profit_loss = totals.profit_loss
        portfolio.updated_at = datetime.now(timezone.utc)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


class InMemoryLedgerRepository:
    """Dictionary-backed repository for tests and fixtures.

    Mirrors the SQL repository's unit-of-work behaviour: closed position and
    summary writes are staged until :meth:`commit`.
    """

    def __init__(self) -> None:
        self._ids = count(1)
        self.portfolios: dict[int, PortfolioRecord] = {}
        self.trades: dict[int, list[TradeRecord]] = {}
        self.transfers: dict[int, list[TransferRecord]] = {}
        self.closed_positions: dict[int, list[ClosedPositionData]] = {}
        self.commits = 0
        self._staged_closed: dict[int, list[ClosedPositionData]] | None = None
        self._staged_totals: dict[int, PortfolioTotals] = {}

    def _require(self, portfolio_id: int) -> PortfolioRecord:
        portfolio = self.portfolios.get(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFound(portfolio_id)
        return portfolio

    def _closed_view(self) -> dict[int, list[ClosedPositionData]]:
        if self._staged_closed is None:
            self._staged_closed = {pid: list(rows) for pid, rows in self.closed_positions.items()}
        return self._staged_closed

    async def create_portfolio(
        self, name: str, *, owner_id: str = "system", description: str | None = None
    ) -> PortfolioRecord:
        portfolio = PortfolioRecord(id=next(self._ids), owner_id=owner_id, name=name)
        self.portfolios[portfolio.id] = portfolio
        self.trades[portfolio.id] = []
        self.transfers[portfolio.id] = []
        return portfolio

    async def get_portfolio(self, portfolio_id: int) -> PortfolioRecord | None:
        return self.portfolios.get(portfolio_id)

    async def list_portfolios(self, owner_id: str | None = None) -> list[PortfolioRecord]:
        return [p for p in self.portfolios.values() if owner_id is None or p.owner_id == owner_id]

    async def load_trades(self, portfolio_id: int) -> list[TradeRecord]:
        self._require(portfolio_id)
        return list(self.trades[portfolio_id])

    async def load_transfers(self, portfolio_id: int) -> list[TransferRecord]:
        self._require(portfolio_id)
        return list(self.transfers[portfolio_id])

    async def add_trades(self, portfolio_id: int, trades: Sequence[TradeRecord]) -> tuple[int, int]:
        self._require(portfolio_id)
        seen = {t.external_id for t in self.trades[portfolio_id] if t.external_id}
        imported = skipped = 0
        for trade in trades:
            if trade.external_id and trade.external_id in seen:
                skipped += 1
                continue
            if trade.external_id:
                seen.add(trade.external_id)
            self.trades[portfolio_id].append(replace(trade, id=trade.id or next(self._ids)))
            imported += 1
        return imported, skipped

    async def add_transfers(self, portfolio_id: int, transfers: Sequence[TransferRecord]) -> tuple[int, int]:
        self._require(portfolio_id)
        seen = {t.external_id for t in self.transfers[portfolio_id] if t.external_id}
        imported = skipped = 0
        for transfer in transfers:
            if transfer.external_id and transfer.external_id in seen:
                skipped += 1
                continue
            if transfer.external_id:
                seen.add(transfer.external_id)
            self.transfers[portfolio_id].append(replace(transfer, id=transfer.id or next(self._ids)))
            imported += 1
        return imported, skipped

    async def replace_trades_by_source(
        self, portfolio_id: int, source: str, trades: Iterable[TradeRecord]
    ) -> int:
        self._require(portfolio_id)
        kept = [t for t in self.trades[portfolio_id] if t.source != source]
        fresh = [replace(t, source=source, id=next(self._ids)) for t in trades]
        self.trades[portfolio_id] = kept + fresh
        return len(fresh)

    async def list_closed_positions(
        self, portfolio_id: int, symbol: str | None = None
    ) -> list[ClosedPositionData]:
        rows = [
            row
            for row in self.closed_positions.get(portfolio_id, [])
            if symbol is None or row.symbol == normalize_symbol_key(symbol)
        ]
        return sorted(rows, key=lambda row: row.closed_at, reverse=True)

    async def save_closed_position(self, portfolio_id: int, symbol: str, data: ClosedPositionData) -> None:
        self._closed_view().setdefault(portfolio_id, []).append(replace(data, symbol=symbol))

    async def delete_closed_positions(self, portfolio_id: int, symbol: str | None = None) -> None:
        view = self._closed_view()
        view[portfolio_id] = [
            row for row in view.get(portfolio_id, []) if symbol is not None and row.symbol != symbol
        ]

    async def save_portfolio_summary(self, portfolio_id: int, totals: PortfolioTotals) -> None:
        self._require(portfolio_id)
        self._staged_totals[portfolio_id] = totals

    async def commit(self) -> None:
        if self._staged_closed is not None:
            self.closed_positions = self._staged_closed
        for portfolio_id, totals in self._staged_totals.items():
            self.portfolios[portfolio_id] = replace(
                self.portfolios[portfolio_id],
                total_invested=totals.total_invested,
                current_value=totals.current_value,
                profit_loss=totals.profit_loss,
            )
        self._staged_closed = None
        self._staged_totals = {}
        self.commits += 1

    async def rollback(self) -> None:
        self._staged_closed = None
        self._staged_totals = {}


__all__ = [
    "InMemoryLedgerRepository",
    "LedgerRepository",
    "SqlAlchemyLedgerRepository",
]

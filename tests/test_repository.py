"""SQLAlchemy repository against an on-disk SQLite database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from holdings_ledger.core.config import LedgerSettings
from holdings_ledger.db.session import Database
from holdings_ledger.models import ClosedPosition
from holdings_ledger.services.aggregator import PortfolioAggregator
from holdings_ledger.services.errors import PortfolioNotFound
from holdings_ledger.services.pricing import InMemoryPriceOracle
from holdings_ledger.services.records import TradeRecord, TradeSide, TransferRecord, TransferType
from holdings_ledger.services.repository import SqlAlchemyLedgerRepository

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def _trade(symbol, side, quantity, price, fee="0", *, day=0, external_id=None):
    return TradeRecord(
        symbol=symbol,
        side=TradeSide(side),
        quantity=Decimal(quantity),
        price=Decimal(price),
        fee=Decimal(fee),
        executed_at=T0 + timedelta(days=day),
        external_id=external_id,
    )


async def _database(tmp_path) -> Database:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await database.create_all()
    return database


async def test_add_trades_skips_known_external_ids(tmp_path):
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Binance", owner_id="alice")

            first = await repo.add_trades(
                portfolio.id,
                [
                    _trade("btcusdt", "BUY", "1", "100", external_id="ex-1"),
                    _trade("BTCUSDT", "SELL", "0.5", "120", "0.1", day=1, external_id="ex-2"),
                ],
            )
            second = await repo.add_trades(
                portfolio.id,
                [
                    _trade("BTCUSDT", "BUY", "1", "100", external_id="ex-1"),
                    _trade("ETHUSDT", "BUY", "2", "10", day=2, external_id="ex-3"),
                ],
            )
            trades = await repo.load_trades(portfolio.id)
    finally:
        await database.dispose()

    assert first == (2, 0)
    assert second == (1, 1)
    assert [t.external_id for t in trades] == ["ex-1", "ex-2", "ex-3"]
    assert trades[0].symbol == "BTCUSDT"
    assert trades[1].fee == Decimal("0.1")
    assert trades[1].side is TradeSide.SELL
    assert trades[0].executed_at == T0


async def test_transfers_round_trip_with_optional_fields(tmp_path):
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Wallet")
            await repo.add_transfers(
                portfolio.id,
                [
                    TransferRecord(
                        type=TransferType.DEPOSIT,
                        asset="sol",
                        amount=Decimal("12.5"),
                        fee=Decimal("0.01"),
                        executed_at=T0,
                        tx_id="0xabc",
                        network="SOL",
                        external_id="dep-1",
                    )
                ],
            )
            [loaded] = await repo.load_transfers(portfolio.id)
    finally:
        await database.dispose()

    assert loaded.asset == "SOL"
    assert loaded.type is TransferType.DEPOSIT
    assert loaded.amount == Decimal("12.5")
    assert loaded.known_cost is None
    assert loaded.tx_id == "0xabc"
    assert loaded.executed_at == T0


async def test_replace_trades_by_source_only_touches_that_source(tmp_path):
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Mixed")
            await repo.add_trades(portfolio.id, [_trade("ADAUSDT", "BUY", "10", "1")])
            await repo.replace_trades_by_source(
                portfolio.id, "holdings-snapshot", [_trade("DOTUSDT", "BUY", "3", "5")]
            )
            await repo.replace_trades_by_source(
                portfolio.id, "holdings-snapshot", [_trade("DOTUSDT", "BUY", "4", "5")]
            )
            trades = await repo.load_trades(portfolio.id)
    finally:
        await database.dispose()

    assert sorted((t.symbol, t.quantity, t.source) for t in trades) == [
        ("ADAUSDT", Decimal("10"), "manual"),
        ("DOTUSDT", Decimal("4"), "holdings-snapshot"),
    ]


async def test_missing_portfolio_raises(tmp_path):
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            assert await repo.get_portfolio(99) is None
            with pytest.raises(PortfolioNotFound):
                await repo.load_trades(99)
    finally:
        await database.dispose()


async def test_recompute_persists_closures_and_totals_once(tmp_path):
    database = await _database(tmp_path)
    oracle = InMemoryPriceOracle({"ETHUSDT": "15"})
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Main", owner_id="alice")
            await repo.add_trades(
                portfolio.id,
                [
                    _trade("BTCUSDT", "BUY", "10", "100", "1"),
                    _trade("BTCUSDT", "SELL", "10", "150", "2", day=1),
                    _trade("ETHUSDT", "BUY", "4", "10", day=2),
                ],
            )
            aggregator = PortfolioAggregator(repo, oracle, LedgerSettings())
            await aggregator.recompute(portfolio.id)
            summary = await aggregator.recompute(portfolio.id)

        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            stored = await repo.get_portfolio(portfolio.id)
            closed = await repo.list_closed_positions(portfolio.id, "btcusdt")
            row_count = (await session.execute(select(func.count()).select_from(ClosedPosition))).scalar_one()
    finally:
        await database.dispose()

    assert summary.profit_loss == Decimal("517")
    assert stored.total_invested == Decimal("40")
    assert stored.current_value == Decimal("60")
    assert stored.profit_loss == Decimal("517")
    assert row_count == 1
    [position] = closed
    assert position.realized_profit_loss == Decimal("497")
    assert position.realized_profit_loss_percentage == Decimal("49.65")
    assert position.average_buy_price == Decimal("100.1")
    assert position.opened_at == T0
    assert position.closed_at == T0 + timedelta(days=1)
    assert position.number_of_trades == 2


async def test_closed_position_without_invested_cost_stores_null_percentage(tmp_path):
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Airdrop")
            await repo.add_transfers(
                portfolio.id,
                [TransferRecord(type=TransferType.DEPOSIT, asset="ARB", amount=Decimal("100"), executed_at=T0)],
            )
            await repo.add_trades(portfolio.id, [_trade("ARB", "SELL", "100", "1.5", day=1)])
            await PortfolioAggregator(repo, InMemoryPriceOracle(), LedgerSettings()).recompute(portfolio.id)
            [position] = await repo.list_closed_positions(portfolio.id)
    finally:
        await database.dispose()

    assert position.realized_profit_loss == Decimal("150")
    assert position.realized_profit_loss_percentage is None


async def test_offset_timestamps_are_stored_in_utc_and_replay_in_order(tmp_path):
    dubai = timezone(timedelta(hours=4))
    trades = [
        TradeRecord(
            symbol="BTCUSDT",
            side=TradeSide.BUY,
            quantity=Decimal("1"),
            price=Decimal("100"),
            executed_at=datetime(2024, 3, 1, 10, 0, tzinfo=dubai),
        ),
        TradeRecord(
            symbol="BTCUSDT",
            side=TradeSide.SELL,
            quantity=Decimal("1"),
            price=Decimal("150"),
            executed_at=datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc),
        ),
    ]
    database = await _database(tmp_path)
    try:
        async with database.session() as session:
            repo = SqlAlchemyLedgerRepository(session)
            portfolio = await repo.create_portfolio("Offsets")
            await repo.add_trades(portfolio.id, trades)
            loaded = await repo.load_trades(portfolio.id)
            summary = await PortfolioAggregator(repo, InMemoryPriceOracle(), LedgerSettings()).recompute(portfolio.id)
    finally:
        await database.dispose()

    assert [t.side for t in loaded] == [TradeSide.BUY, TradeSide.SELL]
    assert loaded[0].executed_at == datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)
    assert loaded[0].executed_at.tzinfo is timezone.utc
    assert summary.anomalies == []
    assert summary.realized_profit_loss == Decimal("50")
    [position] = summary.closed_positions
    assert position.opened_at == datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)

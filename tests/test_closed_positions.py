"""Closed position store retention and replacement."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from holdings_ledger.services.closed_positions import ClosedPositionStore, quantize_closed_position
from holdings_ledger.services.ledger import ClosedPositionData
from holdings_ledger.services.repository import InMemoryLedgerRepository

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _closed(realized: str, *, day: int, percentage: str | None = "10") -> ClosedPositionData:
    return ClosedPositionData(
        symbol="",
        total_bought=Decimal("1"),
        total_sold=Decimal("1"),
        average_buy_price=Decimal("1") / Decimal("3"),
        average_sell_price=Decimal("2"),
        total_invested=Decimal("1"),
        total_received=Decimal("2"),
        realized_profit_loss=Decimal(realized),
        realized_profit_loss_percentage=Decimal(percentage) if percentage is not None else None,
        opened_at=T0 + timedelta(days=day),
        closed_at=T0 + timedelta(days=day + 1),
        number_of_trades=2,
    )


def test_quantize_rounds_to_column_precision():
    row = quantize_closed_position(_closed("1.123456789", day=0, percentage="12.345"))

    assert row.average_buy_price == Decimal("0.33333333")
    assert row.realized_profit_loss == Decimal("1.12345679")
    assert row.realized_profit_loss_percentage == Decimal("12.35")
    assert quantize_closed_position(_closed("1", day=0, percentage=None)).realized_profit_loss_percentage is None


def test_unknown_retention_is_rejected():
    with pytest.raises(ValueError):
        ClosedPositionStore(InMemoryLedgerRepository(), retention="forever")


async def test_replace_keeps_only_latest_closure_by_default():
    repo = InMemoryLedgerRepository()
    portfolio = await repo.create_portfolio("Main")
    store = ClosedPositionStore(repo)

    stored = await store.replace(portfolio.id, "BTCUSDT", [_closed("1", day=0), _closed("2", day=5)])
    await repo.commit()

    assert [row.realized_profit_loss for row in stored] == [Decimal("2")]
    assert [row.symbol for row in await repo.list_closed_positions(portfolio.id)] == ["BTCUSDT"]


async def test_replace_with_no_closures_deletes_existing_rows():
    repo = InMemoryLedgerRepository()
    portfolio = await repo.create_portfolio("Main")
    store = ClosedPositionStore(repo, retention="history")
    await store.replace(portfolio.id, "BTCUSDT", [_closed("1", day=0), _closed("2", day=5)])
    await repo.commit()
    assert len(await repo.list_closed_positions(portfolio.id)) == 2

    assert await store.replace(portfolio.id, "BTCUSDT", []) == []
    await repo.commit()

    assert await repo.list_closed_positions(portfolio.id) == []


async def test_upsert_overwrites_previous_row_for_symbol():
    repo = InMemoryLedgerRepository()
    portfolio = await repo.create_portfolio("Main")
    store = ClosedPositionStore(repo)
    await store.upsert(portfolio.id, "ETHUSDT", _closed("1", day=0))
    await store.upsert(portfolio.id, "ETHUSDT", _closed("3", day=2))
    await repo.commit()

    [row] = await repo.list_closed_positions(portfolio.id, "ethusdt")
    assert row.realized_profit_loss == Decimal("3")


async def test_prune_drops_symbols_without_history():
    repo = InMemoryLedgerRepository()
    portfolio = await repo.create_portfolio("Main")
    store = ClosedPositionStore(repo)
    await store.replace(portfolio.id, "BTCUSDT", [_closed("1", day=0)])
    await store.replace(portfolio.id, "ETHUSDT", [_closed("2", day=1)])
    await repo.commit()

    removed = await store.prune(portfolio.id, ["ETHUSDT"])
    await repo.commit()

    assert removed == ["BTCUSDT"]
    assert [row.symbol for row in await repo.list_closed_positions(portfolio.id)] == ["ETHUSDT"]


async def test_uncommitted_writes_are_discarded_on_rollback():
    repo = InMemoryLedgerRepository()
    portfolio = await repo.create_portfolio("Main")
    store = ClosedPositionStore(repo)
    await store.replace(portfolio.id, "BTCUSDT", [_closed("1", day=0)])

    await repo.rollback()

    assert await repo.list_closed_positions(portfolio.id) == []

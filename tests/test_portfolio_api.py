"""Portfolio API tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from httpx import ASGITransport, AsyncClient

from holdings_ledger.db.session import Database
from holdings_ledger.main import create_app
from holdings_ledger.services.pricing import InMemoryPriceOracle
from holdings_ledger.services.records import TradeRecord, TradeSide, TransferRecord, TransferType
from holdings_ledger.services.repository import SqlAlchemyLedgerRepository

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


async def _seed(database: Database) -> int:
    await database.create_all()
    async with database.session() as session:
        repo = SqlAlchemyLedgerRepository(session)
        portfolio = await repo.create_portfolio("Main", owner_id="alice")
        await repo.add_trades(
            portfolio.id,
            [
                TradeRecord(symbol="BTCUSDT", side=TradeSide.BUY, quantity=Decimal("10"), price=Decimal("100"), fee=Decimal("1"), executed_at=T0),
                TradeRecord(symbol="BTCUSDT", side=TradeSide.SELL, quantity=Decimal("10"), price=Decimal("150"), fee=Decimal("2"), executed_at=T0 + timedelta(days=1)),
                TradeRecord(symbol="ETHUSDT", side=TradeSide.BUY, quantity=Decimal("2"), price=Decimal("1000"), executed_at=T0 + timedelta(days=2)),
            ],
        )
        await repo.add_transfers(
            portfolio.id,
            [TransferRecord(type=TransferType.DEPOSIT, asset="SOL", amount=Decimal("10"), fee=Decimal("0.5"), executed_at=T0)],
        )
        return portfolio.id


async def _client(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    portfolio_id = await _seed(database)
    oracle = InMemoryPriceOracle({"ETHUSDT": "1500", "SOLUSDT": "20"})
    app = create_app(database=database, price_oracle=oracle)
    transport = ASGITransport(app=app)
    return database, portfolio_id, AsyncClient(transport=transport, base_url="http://test")


async def test_health(tmp_path):
    database, _, client = await _client(tmp_path)
    async with client:
        response = await client.get("/health")
    await database.dispose()

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_recompute_returns_summary_and_persists_closed_positions(tmp_path):
    database, portfolio_id, client = await _client(tmp_path)
    async with client:
        response = await client.post(f"/portfolios/{portfolio_id}/recompute")
        closed = await client.get(f"/portfolios/{portfolio_id}/closed-positions", params={"symbol": "btcusdt"})
    await database.dispose()

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_invested"] == 2000
    assert payload["current_value"] == 3200
    assert payload["realized_profit_loss"] == 497
    assert payload["profit_loss"] == 1697
    assert [h["symbol"] for h in payload["holdings"]] == ["ETHUSDT", "SOL"]
    sol = payload["holdings"][1]
    assert sol["price_symbol"] == "SOLUSDT"
    assert sol["profit_loss_percentage"] is None

    assert closed.status_code == 200
    [position] = closed.json()
    assert position["symbol"] == "BTCUSDT"
    assert position["realized_profit_loss"] == 497
    assert position["realized_profit_loss_percentage"] == 49.65


async def test_holdings_endpoint_does_not_recompute(tmp_path):
    database, portfolio_id, client = await _client(tmp_path)
    async with client:
        holdings = await client.get(f"/portfolios/{portfolio_id}/holdings")
        closed = await client.get(f"/portfolios/{portfolio_id}/closed-positions")
    await database.dispose()

    assert holdings.status_code == 200
    assert [h["current_value"] for h in holdings.json()] == [3000, 200]
    assert closed.json() == []


async def test_unknown_portfolio_returns_404(tmp_path):
    database, _, client = await _client(tmp_path)
    async with client:
        recompute = await client.post("/portfolios/999/recompute")
        holdings = await client.get("/portfolios/999/holdings")
        closed = await client.get("/portfolios/999/closed-positions")
    await database.dispose()

    assert recompute.status_code == 404
    assert holdings.status_code == 404
    assert closed.status_code == 404


async def test_owner_recompute_and_stats(tmp_path):
    database, portfolio_id, client = await _client(tmp_path)
    async with client:
        recompute = await client.post("/owners/alice/recompute")
        stats = await client.get("/owners/alice/stats")
    await database.dispose()

    assert recompute.status_code == 200
    report = recompute.json()
    assert [s["portfolio_id"] for s in report["summaries"]] == [portfolio_id]
    assert report["failed"] == {}

    assert stats.status_code == 200
    payload = stats.json()
    assert payload["portfolio_count"] == 1
    assert payload["total_deposits"] == 10
    assert payload["total_fees"] == 3.5
    assert payload["total_realized_profit_loss"] == 497
    assert payload["total_unrealized_profit_loss"] == 1200
    assert payload["total_profit_loss"] == 1697

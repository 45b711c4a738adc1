"""Recompute closed positions and totals for one portfolio or every portfolio of an owner."""

from __future__ import annotations

import argparse
import asyncio

from holdings_ledger.core.config import get_settings
from holdings_ledger.core.logging import setup_logging
from holdings_ledger.db.session import Database
from holdings_ledger.services.aggregator import PortfolioAggregator
from holdings_ledger.services.pricing import CachingPriceOracle, HttpPriceOracle
from holdings_ledger.services.repository import SqlAlchemyLedgerRepository


async def _run(portfolio_id: int | None, owner_id: str | None) -> None:
    settings = get_settings()
    database = Database(settings.database_url)
    oracle = CachingPriceOracle(
        HttpPriceOracle(
            settings.price_service_url,
            token=settings.price_service_token,
            timeout=settings.price_timeout_seconds,
        ),
        ttl_seconds=settings.price_cache_ttl_seconds,
    )
    try:
        async with database.session() as session:
            aggregator = PortfolioAggregator(SqlAlchemyLedgerRepository(session), oracle, settings=settings)
            if portfolio_id is not None:
                summary = await aggregator.recompute(portfolio_id)
                print(
                    f"Portfolio {summary.portfolio_id}: invested {summary.total_invested}, "
                    f"value {summary.current_value}, P/L {summary.profit_loss} "
                    f"({len(summary.holdings)} open, {len(summary.closed_positions)} closed)"
                )
                if summary.unpriced_symbols:
                    print(f"Valued at average cost: {', '.join(summary.unpriced_symbols)}")
            else:
                report = await aggregator.recompute_owner(owner_id)
                print(f"Recomputed {len(report.summaries)} portfolios for {owner_id}")
                for failed_id, reason in report.failed.items():
                    print(f"  portfolio {failed_id} failed: {reason}")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute portfolio holdings from trade and transfer history")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--portfolio-id", type=int)
    group.add_argument("--owner-id")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.portfolio_id, args.owner_id))


if __name__ == "__main__":
    main()

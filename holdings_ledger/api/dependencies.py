"""Shared FastAPI dependencies for the holdings ledger API."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..db.session import Database
from ..services.aggregator import PortfolioAggregator
from ..services.repository import SqlAlchemyLedgerRepository


def get_database(request: Request) -> Database:
    return request.app.state.database


async def get_db_session(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    async for session in database.get_session():  # pragma: no cover - FastAPI dependency wrapper
        yield session


def get_aggregator(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> PortfolioAggregator:
    return PortfolioAggregator(
        SqlAlchemyLedgerRepository(session),
        request.app.state.price_oracle,
        settings=get_settings(),
        locks=request.app.state.portfolio_locks,
    )


__all__ = ["get_aggregator", "get_database", "get_db_session"]

"""Recompute and read-model endpoints for portfolios and owners."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...schemas import (
    ClosedPositionSchema,
    HoldingSchema,
    OwnerRecomputeSchema,
    OwnerStatsSchema,
    PortfolioSummarySchema,
)
from ...services.aggregator import PortfolioAggregator
from ...services.errors import NegativeQuantityDetected, PortfolioNotFound
from ..dependencies import get_aggregator

router = APIRouter()


def _not_found(exc: PortfolioNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/portfolios/{portfolio_id}/recompute", response_model=PortfolioSummarySchema)
async def post_recompute(
    portfolio_id: int,
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> PortfolioSummarySchema:
    try:
        summary = await aggregator.recompute(portfolio_id)
    except PortfolioNotFound as exc:
        raise _not_found(exc) from exc
    except NegativeQuantityDetected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return PortfolioSummarySchema.model_validate(summary)


@router.get("/portfolios/{portfolio_id}/holdings", response_model=list[HoldingSchema])
async def get_holdings(
    portfolio_id: int,
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> list[HoldingSchema]:
    try:
        holdings = await aggregator.holdings(portfolio_id)
    except PortfolioNotFound as exc:
        raise _not_found(exc) from exc
    except NegativeQuantityDetected as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return [HoldingSchema.model_validate(holding) for holding in holdings]


@router.get("/portfolios/{portfolio_id}/closed-positions", response_model=list[ClosedPositionSchema])
async def get_closed_positions(
    portfolio_id: int,
    symbol: str | None = Query(default=None, description="Only return closures for this symbol"),
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> list[ClosedPositionSchema]:
    if await aggregator.repository.get_portfolio(portfolio_id) is None:
        raise _not_found(PortfolioNotFound(portfolio_id))
    rows = await aggregator.repository.list_closed_positions(portfolio_id, symbol)
    return [ClosedPositionSchema.model_validate(row) for row in rows]


@router.post("/owners/{owner_id}/recompute", response_model=OwnerRecomputeSchema)
async def post_recompute_owner(
    owner_id: str,
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> OwnerRecomputeSchema:
    report = await aggregator.recompute_owner(owner_id)
    return OwnerRecomputeSchema.model_validate(report)


@router.get("/owners/{owner_id}/stats", response_model=OwnerStatsSchema)
async def get_owner_stats(
    owner_id: str,
    aggregator: PortfolioAggregator = Depends(get_aggregator),
) -> OwnerStatsSchema:
    stats = await aggregator.owner_stats(owner_id)
    return OwnerStatsSchema.model_validate(stats)


__all__ = ["router"]

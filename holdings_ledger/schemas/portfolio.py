"""Pydantic schemas for the holdings ledger API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HoldingSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    price_symbol: str = Field(..., description="Pair queried for the current price", examples=["BTCUSDT"])
    quantity: float
    average_price: float
    cost_basis: float
    price: float
    price_is_fallback: bool = Field(default=False, description="True when valued at average cost")
    current_value: float
    profit_loss: float
    profit_loss_percentage: float | None = None
    realized_to_date: float = 0.0


class ClosedPositionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    total_bought: float
    total_sold: float
    average_buy_price: float
    average_sell_price: float
    total_invested: float
    total_received: float
    realized_profit_loss: float
    realized_profit_loss_percentage: float | None = None
    opened_at: datetime
    closed_at: datetime
    number_of_trades: int


class LedgerAnomalySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    symbol: str
    source_ref: str
    requested: float
    available: float


class PortfolioSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    portfolio_id: int
    total_invested: float
    current_value: float
    profit_loss: float
    unrealized_profit_loss: float
    realized_profit_loss: float
    holdings: list[HoldingSchema] = Field(default_factory=list)
    closed_positions: list[ClosedPositionSchema] = Field(default_factory=list)
    unpriced_symbols: list[str] = Field(default_factory=list)
    anomalies: list[LedgerAnomalySchema] = Field(default_factory=list)


class OwnerRecomputeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: str
    summaries: list[PortfolioSummarySchema] = Field(default_factory=list)
    failed: dict[int, str] = Field(default_factory=dict)


class OwnerStatsSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: str
    portfolio_count: int
    total_deposits: float
    total_withdrawals: float
    total_fees: float
    total_realized_profit_loss: float
    total_unrealized_profit_loss: float
    total_profit_loss: float


__all__ = [
    "ClosedPositionSchema",
    "HoldingSchema",
    "LedgerAnomalySchema",
    "OwnerRecomputeSchema",
    "OwnerStatsSchema",
    "PortfolioSummarySchema",
]

"""Schema exports for the holdings ledger API."""

from .portfolio import (
    ClosedPositionSchema,
    HoldingSchema,
    LedgerAnomalySchema,
    OwnerRecomputeSchema,
    OwnerStatsSchema,
    PortfolioSummarySchema,
)

__all__ = [
    "ClosedPositionSchema",
    "HoldingSchema",
    "LedgerAnomalySchema",
    "OwnerRecomputeSchema",
    "OwnerStatsSchema",
    "PortfolioSummarySchema",
]

"""Service-layer exports."""

from .aggregator import (
    HoldingValuation,
    OwnerRecompute,
    OwnerStats,
    PortfolioAggregator,
    PortfolioLocks,
    PortfolioSummary,
)
from .closed_positions import ClosedPositionStore
from .errors import LedgerError, NegativeQuantityDetected, PortfolioNotFound, PriceUnavailable
from .ledger import ClosedPositionData, LedgerAnomaly, LedgerProcessor, LedgerResult, LotState, process_events
from .pricing import CachingPriceOracle, HttpPriceOracle, InMemoryPriceOracle, PriceOracle
from .records import PortfolioRecord, TradeRecord, TradeSide, TradeSource, TransferRecord, TransferType
from .repository import InMemoryLedgerRepository, LedgerRepository, SqlAlchemyLedgerRepository
from .timeline import AssetEvent, EventKind, build_timelines

__all__ = [
    "AssetEvent",
    "CachingPriceOracle",
    "ClosedPositionData",
    "ClosedPositionStore",
    "EventKind",
    "HoldingValuation",
    "HttpPriceOracle",
    "InMemoryLedgerRepository",
    "InMemoryPriceOracle",
    "LedgerAnomaly",
    "LedgerError",
    "LedgerProcessor",
    "LedgerRepository",
    "LedgerResult",
    "LotState",
    "NegativeQuantityDetected",
    "OwnerRecompute",
    "OwnerStats",
    "PortfolioAggregator",
    "PortfolioLocks",
    "PortfolioNotFound",
    "PortfolioRecord",
    "PortfolioSummary",
    "PriceOracle",
    "PriceUnavailable",
    "SqlAlchemyLedgerRepository",
    "TradeRecord",
    "TradeSide",
    "TradeSource",
    "TransferRecord",
    "TransferType",
    "build_timelines",
    "process_events",
]

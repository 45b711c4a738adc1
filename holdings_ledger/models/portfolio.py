"""Portfolio, trade, transfer, and closed position models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base import Base

TRADE_SIDES = ("BUY", "SELL")
TRANSFER_TYPES = ("DEPOSIT", "WITHDRAWAL")

# Money, quantities and prices are persisted with 8 fractional digits.
AMOUNT = Numeric(20, 8)
PERCENTAGE = Numeric(20, 2)


class Portfolio(Base):
    __tablename__ = "portfolio"
    __table_args__ = (Index("ix_portfolio_owner", "owner_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), default="system")
    name: Mapped[str] = mapped_column(String(128))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_invested: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    current_value: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    profit_loss: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )

    trades: Mapped[list["Trade"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    transfers: Mapped[list["Transfer"]] = relationship(back_populates="portfolio", cascade="all, delete-orphan")
    closed_positions: Mapped[list["ClosedPosition"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )


class Trade(Base):
    __tablename__ = "trade"
    __table_args__ = (
        Index("ix_trade_portfolio_symbol", "portfolio_id", "symbol"),
        Index("ix_trade_portfolio_source", "portfolio_id", "source"),
        UniqueConstraint("portfolio_id", "external_id", name="uq_trade_external_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(32))
    side: Mapped[str] = mapped_column(Enum(*TRADE_SIDES, name="trade_side"))
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    price: Mapped[Decimal] = mapped_column(AMOUNT)
    fee: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    source: Mapped[str] = mapped_column(String(32), default="manual")
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="trades")


class Transfer(Base):
    __tablename__ = "transfer"
    __table_args__ = (
        Index("ix_transfer_portfolio_asset", "portfolio_id", "asset"),
        UniqueConstraint("portfolio_id", "external_id", name="uq_transfer_external_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(Enum(*TRANSFER_TYPES, name="transfer_type"))
    asset: Mapped[str] = mapped_column(String(32))
    amount: Mapped[Decimal] = mapped_column(AMOUNT)
    fee: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    known_cost: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    network: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source: Mapped[str] = mapped_column(String(32), default="manual")
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="transfers")


class ClosedPosition(Base):
    __tablename__ = "closed_position"
    __table_args__ = (Index("ix_closed_position_portfolio_symbol", "portfolio_id", "symbol"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolio.id", ondelete="CASCADE"))
    symbol: Mapped[str] = mapped_column(String(32))
    total_bought: Mapped[Decimal] = mapped_column(AMOUNT)
    total_sold: Mapped[Decimal] = mapped_column(AMOUNT)
    average_buy_price: Mapped[Decimal] = mapped_column(AMOUNT)
    average_sell_price: Mapped[Decimal] = mapped_column(AMOUNT)
    total_invested: Mapped[Decimal] = mapped_column(AMOUNT)
    total_received: Mapped[Decimal] = mapped_column(AMOUNT)
    realized_profit_loss: Mapped[Decimal] = mapped_column(AMOUNT)
    # NULL when nothing was invested in the lot (e.g. a cost-free deposit was sold).
    realized_profit_loss_percentage: Mapped[Decimal | None] = mapped_column(PERCENTAGE, nullable=True)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    number_of_trades: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    portfolio: Mapped[Portfolio] = relationship(back_populates="closed_positions")


__all__ = [
    "Portfolio",
    "Trade",
    "Transfer",
    "ClosedPosition",
    "TRADE_SIDES",
    "TRANSFER_TYPES",
]

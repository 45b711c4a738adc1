"""Initial ledger tables: portfolios, trades, transfers and closed positions."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect

revision = "0001_create_ledger_tables"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(bind, table_name: str) -> bool:
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def _amount() -> sa.Numeric:
    return sa.Numeric(20, 8)


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "portfolio"):
        op.create_table(
            "portfolio",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("owner_id", sa.String(length=64), nullable=False, server_default="system"),
            sa.Column("name", sa.String(length=128), nullable=False),
            sa.Column("description", sa.Text),
            sa.Column("total_invested", _amount(), nullable=False, server_default="0"),
            sa.Column("current_value", _amount(), nullable=False, server_default="0"),
            sa.Column("profit_loss", _amount(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Index("ix_portfolio_owner", "owner_id"),
        )

    if not _has_table(bind, "trade"):
        op.create_table(
            "trade",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolio.id", ondelete="CASCADE"), nullable=False),
            sa.Column("symbol", sa.String(length=32), nullable=False),
            sa.Column("side", sa.Enum("BUY", "SELL", name="trade_side"), nullable=False),
            sa.Column("quantity", _amount(), nullable=False),
            sa.Column("price", _amount(), nullable=False),
            sa.Column("fee", _amount(), nullable=False, server_default="0"),
            sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False, index=True),
            sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
            sa.Column("external_id", sa.String(length=128)),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.UniqueConstraint("portfolio_id", "external_id", name="uq_trade_external_id"),
            sa.Index("ix_trade_portfolio_symbol", "portfolio_id", "symbol"),
            sa.Index("ix_trade_portfolio_source", "portfolio_id", "source"),
        )

    if not _has_table(bind, "transfer"):
        op.create_table(
            "transfer",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolio.id", ondelete="CASCADE"), nullable=False),
            sa.Column("type", sa.Enum("DEPOSIT", "WITHDRAWAL", name="transfer_type"), nullable=False),
            sa.Column("asset", sa.String(length=32), nullable=False),
            sa.Column("amount", _amount(), nullable=False),
            sa.Column("fee", _amount(), nullable=False, server_default="0"),
            sa.Column("known_cost", _amount()),
            sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False, index=True),
            sa.Column("tx_id", sa.String(length=128)),
            sa.Column("network", sa.String(length=32)),
            sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
            sa.Column("external_id", sa.String(length=128)),
            sa.Column("notes", sa.Text),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.UniqueConstraint("portfolio_id", "external_id", name="uq_transfer_external_id"),
            sa.Index("ix_transfer_portfolio_asset", "portfolio_id", "asset"),
        )

    if not _has_table(bind, "closed_position"):
        op.create_table(
            "closed_position",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolio.id", ondelete="CASCADE"), nullable=False),
            sa.Column("symbol", sa.String(length=32), nullable=False),
            sa.Column("total_bought", _amount(), nullable=False),
            sa.Column("total_sold", _amount(), nullable=False),
            sa.Column("average_buy_price", _amount(), nullable=False),
            sa.Column("average_sell_price", _amount(), nullable=False),
            sa.Column("total_invested", _amount(), nullable=False),
            sa.Column("total_received", _amount(), nullable=False),
            sa.Column("realized_profit_loss", _amount(), nullable=False),
            sa.Column("realized_profit_loss_percentage", sa.Numeric(20, 2)),
            sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("number_of_trades", sa.Integer, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Index("ix_closed_position_portfolio_symbol", "portfolio_id", "symbol"),
        )


def downgrade() -> None:
    op.drop_table("closed_position")
    op.drop_table("transfer")
    op.drop_table("trade")
    op.drop_table("portfolio")
    sa.Enum(name="transfer_type").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="trade_side").drop(op.get_bind(), checkfirst=True)

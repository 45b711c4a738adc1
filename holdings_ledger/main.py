"""Entrypoint for the holdings ledger FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.routes import api_router
from .core.config import get_settings
from .core.logging import setup_logging
from .core.telemetry import setup_telemetry
from .db.session import Database
from .services.aggregator import PortfolioLocks
from .services.pricing import CachingPriceOracle, HttpPriceOracle, PriceOracle

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI, db: Database):
    await db.create_all()
    try:
        yield
    finally:
        await db.dispose()


def _default_price_oracle() -> PriceOracle:
    settings = get_settings()
    return CachingPriceOracle(
        HttpPriceOracle(
            settings.price_service_url,
            token=settings.price_service_token,
            timeout=settings.price_timeout_seconds,
        ),
        ttl_seconds=settings.price_cache_ttl_seconds,
    )


def create_app(database: Database | None = None, price_oracle: PriceOracle | None = None) -> FastAPI:
    setup_logging()
    settings = get_settings()
    database_instance = database or Database(settings.database_url)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, database_instance),
    )
    app.state.database = database_instance
    app.state.price_oracle = price_oracle or _default_price_oracle()
    app.state.portfolio_locks = PortfolioLocks()

    setup_telemetry(app, settings, database_instance.engine)
    logger.info("Holdings ledger configuration", extra=settings.dict_for_logging())

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


__all__ = ["create_app"]

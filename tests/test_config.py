"""Settings and logging setup."""

from __future__ import annotations

import logging
from decimal import Decimal

from fastapi import FastAPI

from holdings_ledger.core.config import DEFAULT_QUOTE_ASSETS, LedgerSettings
from holdings_ledger.core.logging import setup_logging
from holdings_ledger.core.telemetry import setup_telemetry


def test_defaults_match_ledger_conventions():
    settings = LedgerSettings()

    assert settings.dust_epsilon == Decimal("0.00000001")
    assert settings.closed_position_retention == "latest"
    assert settings.strict_quantities is False
    assert settings.preferred_quote_asset == "USDT"
    assert tuple(settings.quote_assets) == DEFAULT_QUOTE_ASSETS
    assert settings.symbol_aliases["BITCOIN"] == "BTC"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("CLOSED_POSITION_RETENTION", "history")
    monkeypatch.setenv("STRICT_QUANTITIES", "true")
    monkeypatch.setenv("PRICE_TIMEOUT_SECONDS", "2.5")

    settings = LedgerSettings()

    assert settings.closed_position_retention == "history"
    assert settings.strict_quantities is True
    assert settings.price_timeout_seconds == 2.5


def test_dict_for_logging_masks_price_service_token():
    settings = LedgerSettings(price_service_token="secret")

    payload = settings.dict_for_logging()

    assert payload["price_service_token"] == "***"
    assert payload["database_url"] == settings.database_url


def test_setup_logging_is_idempotent():
    root = logging.getLogger()
    setup_logging()
    count = len(root.handlers)
    setup_logging()

    assert len(root.handlers) == count
    assert logging.getLogger("sqlalchemy").level == logging.WARNING


def test_telemetry_disabled_by_default():
    assert setup_telemetry(FastAPI(), LedgerSettings(telemetry_enabled=False)) is False

"""Configuration, logging and telemetry for the holdings ledger."""

from .config import LedgerSettings, get_settings

__all__ = ["LedgerSettings", "get_settings"]

"""Cost-basis ledger for crypto and brokerage holdings."""

__version__ = "0.1.0"

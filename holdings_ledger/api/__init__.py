"""HTTP surface for the holdings ledger."""

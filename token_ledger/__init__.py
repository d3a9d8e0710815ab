"""
Token Ledger

A single-asset fungible-token ledger with conserved supply, allowance-based
delegated transfers, pause/blacklist controls and append-only event logs.
"""

__version__ = "1.0.0"

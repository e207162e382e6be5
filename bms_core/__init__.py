"""
BMS Core

Funds-movement back office: accounts, deposits, withdrawals and OTP-gated
transfers recorded in an append-only ledger, with Decimal money math,
structured logging and a hash-chained audit trail.
"""

__version__ = "1.0.0"

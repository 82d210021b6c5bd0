"""
Ledger integration for consent-anchor
Gateway interface and the hash-chained ledger implementation
"""

from .gateway import (
    LedgerGateway,
    LedgerReceipt,
    LedgerEntry,
    LedgerSubmissionError,
    HashChainLedgerGateway,
)

__all__ = [
    "LedgerGateway",
    "LedgerReceipt",
    "LedgerEntry",
    "LedgerSubmissionError",
    "HashChainLedgerGateway",
]

"""
Ledger gateway for consent-anchor
Anchors activated agreements in an append-only, hash-chained ledger
"""

import threading
from datetime import datetime, UTC
from typing import Dict, List, Optional, Protocol
from pydantic import BaseModel, Field
import structlog

from ..config import get_config
from ..constants import LedgerOperations
from ..crypto.hash import HashChain, canonical_json, secure_hash

logger = structlog.get_logger(__name__)


class LedgerSubmissionError(Exception):
    """Raised when the ledger refuses a submission"""
    pass


class LedgerReceipt(BaseModel):
    """Result of a ledger submission"""
    transaction_ref: str
    ledger_key: str
    operation: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LedgerGateway(Protocol):
    """Interface the lifecycle engine uses to reach the ledger"""

    def submit_create(self, agreement_id: str, address_a: str, address_b: str) -> LedgerReceipt:
        ...

    def submit_revoke(self, ledger_reference: str) -> LedgerReceipt:
        ...


class LedgerEntry(BaseModel):
    """One appended ledger transaction"""
    sequence: int
    operation: str
    ledger_key: str
    parties: List[str] = Field(default_factory=list)
    timestamp: datetime
    previous_hash: str
    hash: str

    def payload(self) -> bytes:
        """Bytes fed into the hash chain for this entry"""
        return canonical_json({
            "sequence": self.sequence,
            "operation": self.operation,
            "ledger_key": self.ledger_key,
            "parties": self.parties,
            "timestamp": self.timestamp.isoformat(),
        })


class HashChainLedgerGateway:
    """
    Append-only ledger with hash-chain integrity.

    Records are keyed by a 32-byte digest of the agreement id mixed with the
    configured namespace. A key can be created once and revoked once; the
    transaction reference returned for each submission is the entry hash.
    Re-submitting the create for an active record with the same parties
    returns the original receipt instead of appending a second entry.
    """

    def __init__(self, namespace: Optional[str] = None):
        self.namespace = namespace or get_config().ledger_namespace
        self.entries: List[LedgerEntry] = []
        self.records: Dict[str, str] = {}  # ledger_key -> "active" | "revoked"
        self.creates: Dict[str, LedgerEntry] = {}
        self.hash_chain = HashChain()
        self._lock = threading.Lock()

    def ledger_key(self, agreement_id: str) -> str:
        """Derive the 32-byte ledger key for an agreement"""
        return "0x" + secure_hash(f"{self.namespace}:{agreement_id}".encode("utf-8"))

    def _append(self, operation: str, ledger_key: str, parties: List[str]) -> LedgerEntry:
        entry = LedgerEntry(
            sequence=len(self.entries),
            operation=operation,
            ledger_key=ledger_key,
            parties=parties,
            timestamp=datetime.now(UTC),
            previous_hash=self.hash_chain.current_hash,
            hash="",
        )
        entry.hash = self.hash_chain.add_entry(entry.payload())
        self.entries.append(entry)
        return entry

    def _receipt(self, entry: LedgerEntry) -> LedgerReceipt:
        return LedgerReceipt(transaction_ref=entry.hash, ledger_key=entry.ledger_key,
                             operation=entry.operation, submitted_at=entry.timestamp)

    def submit_create(self, agreement_id: str, address_a: str, address_b: str) -> LedgerReceipt:
        """Record a new two-party agreement"""
        key = self.ledger_key(agreement_id)
        parties = [address_a.lower(), address_b.lower()]
        with self._lock:
            state = self.records.get(key)
            if state == "revoked":
                raise LedgerSubmissionError(f"Ledger record already revoked for {agreement_id}")
            if state == "active":
                entry = self.creates[key]
                if entry.parties != parties:
                    raise LedgerSubmissionError(
                        f"Ledger record for {agreement_id} exists with different parties")
                logger.info("Ledger create already recorded", agreement_id=agreement_id,
                           ledger_key=key, transaction_ref=entry.hash)
                return self._receipt(entry)
            entry = self._append(LedgerOperations.CREATE, key, parties)
            self.records[key] = "active"
            self.creates[key] = entry

        logger.info("Ledger create appended", agreement_id=agreement_id,
                   ledger_key=key, transaction_ref=entry.hash)
        return self._receipt(entry)

    def submit_revoke(self, ledger_reference: str) -> LedgerReceipt:
        """Mark an existing agreement record as revoked"""
        key = self.ledger_key(ledger_reference)
        with self._lock:
            state = self.records.get(key)
            if state is None:
                raise LedgerSubmissionError(f"No ledger record for {ledger_reference}")
            if state == "revoked":
                raise LedgerSubmissionError(f"Ledger record already revoked for {ledger_reference}")
            entry = self._append(LedgerOperations.REVOKE, key, [])
            self.records[key] = "revoked"

        logger.info("Ledger revoke appended", ledger_reference=ledger_reference,
                   ledger_key=key, transaction_ref=entry.hash)
        return self._receipt(entry)

    def is_active(self, agreement_id: str) -> bool:
        """Check whether the ledger holds an unrevoked record for an agreement"""
        return self.records.get(self.ledger_key(agreement_id)) == "active"

    def verify_integrity(self) -> bool:
        """Recompute the chain and compare every stored entry hash"""
        chain = HashChain()
        for entry in self.entries:
            if entry.previous_hash != chain.current_hash:
                logger.error("Ledger chain broken", sequence=entry.sequence)
                return False
            if chain.add_entry(entry.payload()) != entry.hash:
                logger.error("Ledger entry tampered", sequence=entry.sequence)
                return False
        return chain.current_hash == self.hash_chain.current_hash

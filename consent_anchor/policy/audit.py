"""
Audit logging for consent-anchor
Hash-chained trail of consent lifecycle events
"""

from typing import Dict, Any, Optional, List
from datetime import datetime, UTC
from enum import Enum
from pydantic import BaseModel, Field
import threading
import structlog

from ..crypto.hash import HashChain, canonical_json, secure_hash
from ..utils.ids import generate_audit_id

logger = structlog.get_logger(__name__)


class AuditEventType(str, Enum):
    """Types of audit events"""
    CONSENT_CREATED = "consent_created"
    CONSENT_CLAIMED = "consent_claimed"
    CONSENT_CONFIRMED = "consent_confirmed"
    CONSENT_ACTIVATED = "consent_activated"
    CONSENT_REVOKED = "consent_revoked"
    CONSENT_DELETED = "consent_deleted"
    LEDGER_FAILURE = "ledger_failure"
    ACCESS_DENIED = "access_denied"


class AuditEvent(BaseModel):
    """Individual audit event"""
    id: str = Field(default_factory=generate_audit_id)
    event_type: AuditEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    actor_id: Optional[str] = None
    consent_id: Optional[str] = None

    action: str
    outcome: str  # success, failure, denied

    details: Dict[str, Any] = Field(default_factory=dict)

    # Integrity
    hash: Optional[str] = None
    previous_hash: Optional[str] = None

    def to_audit_bytes(self) -> bytes:
        """Canonical bytes for hashing"""
        return canonical_json({
            "id": self.id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "consent_id": self.consent_id,
            "action": self.action,
            "outcome": self.outcome,
            "details": self.details,
        })

    def compute_hash(self, previous_hash: str) -> str:
        """Compute hash for integrity verification"""
        return secure_hash(previous_hash.encode("utf-8") + self.to_audit_bytes())


class InMemoryAuditStorage:
    """In-memory audit storage"""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def store_event(self, event: AuditEvent) -> bool:
        """Store audit event"""
        self.events.append(event)
        return True

    def get_events(self, actor_id: Optional[str] = None,
                   consent_id: Optional[str] = None,
                   event_type: Optional[AuditEventType] = None,
                   limit: int = 100) -> List[AuditEvent]:
        """Get filtered audit events, oldest first"""
        filtered = self.events

        if actor_id:
            filtered = [e for e in filtered if e.actor_id == actor_id]

        if consent_id:
            filtered = [e for e in filtered if e.consent_id == consent_id]

        if event_type:
            filtered = [e for e in filtered if e.event_type == event_type]

        return filtered[:limit]


class AuditLogger:
    """Audit logging system with integrity protection"""

    def __init__(self, storage_backend: Optional[InMemoryAuditStorage] = None):
        self.storage = storage_backend or InMemoryAuditStorage()
        self.hash_chain = HashChain()
        self._lock = threading.Lock()

    def log_event(self, event_type: AuditEventType, action: str, outcome: str,
                  actor_id: Optional[str] = None, consent_id: Optional[str] = None,
                  details: Optional[Dict[str, Any]] = None) -> AuditEvent:
        """Log an audit event"""
        event = AuditEvent(
            event_type=event_type,
            actor_id=actor_id,
            consent_id=consent_id,
            action=action,
            outcome=outcome,
            details=details or {},
        )

        with self._lock:
            event.previous_hash = self.hash_chain.current_hash
            event.hash = self.hash_chain.add_entry(event.to_audit_bytes())
            self.storage.store_event(event)

        logger.info("Audit event logged",
                   event_type=event_type.value,
                   actor_id=actor_id,
                   consent_id=consent_id,
                   outcome=outcome)

        return event

    def get_events(self, actor_id: Optional[str] = None,
                   consent_id: Optional[str] = None,
                   event_type: Optional[AuditEventType] = None,
                   limit: int = 100) -> List[AuditEvent]:
        """Retrieve audit events with filters"""
        return self.storage.get_events(actor_id, consent_id, event_type, limit)

    def verify_integrity(self) -> bool:
        """Verify the full audit trail hash chain"""
        previous_hash = HashChain().current_hash
        for event in self.storage.get_events(limit=len(self.storage.events)):
            if event.previous_hash != previous_hash or event.hash != event.compute_hash(previous_hash):
                logger.error("Audit integrity violation", event_id=event.id)
                return False
            previous_hash = event.hash

        logger.info("Audit integrity verified", event_count=len(self.storage.events))
        return True

"""
Consent storage adapters for consent-anchor
Persistence for consent agreements with guarded (compare-and-swap) transitions
"""

import threading
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime, UTC
import structlog
from sqlalchemy import create_engine, Column, Integer, String, Date, DateTime, Text, Boolean, or_
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from .models import ConsentAgreement, ConsentStatus, ParticipantRole
from ..config import get_config

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ConsentAgreementDB(Base):
    """SQLAlchemy model for consent agreements"""
    __tablename__ = "consent_agreements"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    initiator_id = Column(String, nullable=False, index=True)
    partner_id = Column(String, index=True)

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    valid_from = Column(Date)
    valid_to = Column(Date)

    status = Column(String, nullable=False)
    pairing_code = Column(String, unique=True, index=True)
    initiator_confirmed = Column(Boolean, nullable=False, default=False)
    partner_confirmed = Column(Boolean, nullable=False, default=False)

    ledger_reference = Column(String)
    last_transaction_ref = Column(String)

    created_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class ConsentStore:
    """
    Storage adapter for consent agreements.

    Every state change goes through ``conditional_update``: the write only
    lands if the row still matches ``expected``, so concurrent callers cannot
    both win a transition. The named transitions below encode the guard each
    lifecycle step needs.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_config().database_url
        self.engine = create_engine(self.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, agreement: ConsentAgreement) -> ConsentAgreementDB:
        """Convert ConsentAgreement to database model"""
        return ConsentAgreementDB(
            id=agreement.id,
            initiator_id=agreement.initiator_id,
            partner_id=agreement.partner_id,
            title=agreement.title,
            description=agreement.description,
            valid_from=agreement.valid_from,
            valid_to=agreement.valid_to,
            status=agreement.status.value,
            pairing_code=agreement.pairing_code,
            initiator_confirmed=agreement.initiator_confirmed,
            partner_confirmed=agreement.partner_confirmed,
            ledger_reference=agreement.ledger_reference,
            last_transaction_ref=agreement.last_transaction_ref,
            created_at=agreement.created_at,
            confirmed_at=agreement.confirmed_at,
        )

    def _from_db_model(self, row: ConsentAgreementDB) -> ConsentAgreement:
        """Convert database model to ConsentAgreement"""
        return ConsentAgreement(
            id=row.id,
            initiator_id=row.initiator_id,
            partner_id=row.partner_id,
            title=row.title,
            description=row.description,
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            status=ConsentStatus(row.status),
            pairing_code=row.pairing_code,
            initiator_confirmed=bool(row.initiator_confirmed),
            partner_confirmed=bool(row.partner_confirmed),
            ledger_reference=row.ledger_reference,
            last_transaction_ref=row.last_transaction_ref,
            created_at=_as_utc(row.created_at),
            confirmed_at=_as_utc(row.confirmed_at),
        )

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    def insert(self, agreement: ConsentAgreement) -> ConsentAgreement:
        """Store a new consent agreement"""
        with self.SessionLocal() as session:
            session.add(self._to_db_model(agreement))
            session.commit()

        logger.info("Stored consent agreement", consent_id=agreement.id,
                   initiator_id=agreement.initiator_id)
        return agreement

    def get(self, consent_id: str) -> Optional[ConsentAgreement]:
        """Get a consent agreement by ID"""
        with self.SessionLocal() as session:
            row = session.query(ConsentAgreementDB).filter_by(id=consent_id).first()
            return self._from_db_model(row) if row else None

    def get_by_pairing_code(self, pairing_code: str) -> Optional[ConsentAgreement]:
        """Get the agreement currently holding a pairing code"""
        with self.SessionLocal() as session:
            row = session.query(ConsentAgreementDB).filter_by(pairing_code=pairing_code).first()
            return self._from_db_model(row) if row else None

    def list_for_participant(self, user_id: str) -> List[ConsentAgreement]:
        """All agreements where the user is initiator or partner, newest first"""
        with self.SessionLocal() as session:
            rows = (
                session.query(ConsentAgreementDB)
                .filter(or_(ConsentAgreementDB.initiator_id == user_id,
                            ConsentAgreementDB.partner_id == user_id))
                .order_by(ConsentAgreementDB.created_at.desc(),
                          ConsentAgreementDB.row_id.desc())
                .all()
            )
            return [self._from_db_model(row) for row in rows]

    def conditional_update(self, consent_id: str, expected: Dict[str, Any],
                           values: Dict[str, Any]) -> Optional[ConsentAgreement]:
        """
        Apply ``values`` only if every field in ``expected`` still holds.

        Expectations are equality checks (``None`` means IS NULL). Returns the
        updated agreement, or None when the guard did not match.
        """
        with self.SessionLocal() as session:
            conditions = [ConsentAgreementDB.id == consent_id]
            for field, value in expected.items():
                column = getattr(ConsentAgreementDB, field)
                if value is None:
                    conditions.append(column.is_(None))
                else:
                    conditions.append(column == _column_value(value))

            updated = (
                session.query(ConsentAgreementDB)
                .filter(*conditions)
                .update({field: _column_value(value) for field, value in values.items()},
                        synchronize_session=False)
            )
            session.commit()

            if updated != 1:
                logger.debug("Conditional update did not match", consent_id=consent_id,
                            expected=list(expected))
                return None

            row = session.query(ConsentAgreementDB).filter_by(id=consent_id).first()
            return self._from_db_model(row)

    def delete(self, consent_id: str) -> bool:
        """Physically remove an agreement (administrative use only)"""
        with self.SessionLocal() as session:
            deleted = session.query(ConsentAgreementDB).filter_by(id=consent_id).delete()
            session.commit()

        logger.info("Deleted consent agreement", consent_id=consent_id, count=deleted)
        return deleted == 1

    # ------------------------------------------------------------------
    # Named transitions
    # ------------------------------------------------------------------

    def claim_partner(self, consent_id: str, partner_id: str,
                      pairing_code: str) -> Optional[ConsentAgreement]:
        """Fill the partner slot and consume the pairing code in one write"""
        return self.conditional_update(
            consent_id,
            expected={
                "partner_id": None,
                "pairing_code": pairing_code,
                "status": ConsentStatus.PENDING,
            },
            values={"partner_id": partner_id, "pairing_code": None},
        )

    def set_confirmation(self, consent_id: str,
                         role: ParticipantRole) -> Optional[ConsentAgreement]:
        """Raise the confirmation flag owned by ``role`` on a pending agreement"""
        field = "initiator_confirmed" if role == ParticipantRole.INITIATOR else "partner_confirmed"
        return self.conditional_update(
            consent_id,
            expected={"status": ConsentStatus.PENDING},
            values={field: True},
        )

    def activate(self, consent_id: str, transaction_ref: str,
                 confirmed_at: datetime) -> Optional[ConsentAgreement]:
        """Commit PENDING -> ACTIVE once both sides have confirmed"""
        return self.conditional_update(
            consent_id,
            expected={
                "status": ConsentStatus.PENDING,
                "initiator_confirmed": True,
                "partner_confirmed": True,
            },
            values={
                "status": ConsentStatus.ACTIVE,
                "ledger_reference": consent_id,
                "last_transaction_ref": transaction_ref,
                "confirmed_at": confirmed_at,
            },
        )

    def mark_revoked(self, consent_id: str, expected_status: ConsentStatus,
                     transaction_ref: Optional[str] = None) -> Optional[ConsentAgreement]:
        """Commit the move to REVOKED from the status the caller observed"""
        values: Dict[str, Any] = {"status": ConsentStatus.REVOKED, "pairing_code": None}
        if transaction_ref:
            values["last_transaction_ref"] = transaction_ref
        return self.conditional_update(
            consent_id,
            expected={"status": expected_status},
            values=values,
        )


class InMemoryConsentStore(ConsentStore):
    """In-memory storage for testing"""

    def __init__(self):
        self.agreements: Dict[str, ConsentAgreement] = {}
        self._sequence: Dict[str, int] = {}
        self._lock = threading.Lock()

    def insert(self, agreement: ConsentAgreement) -> ConsentAgreement:
        """Store agreement in memory"""
        with self._lock:
            if agreement.id in self.agreements:
                raise ValueError(f"Duplicate consent id {agreement.id}")
            self.agreements[agreement.id] = agreement.model_copy()
            self._sequence[agreement.id] = len(self._sequence)
        return agreement

    def get(self, consent_id: str) -> Optional[ConsentAgreement]:
        """Get agreement from memory"""
        agreement = self.agreements.get(consent_id)
        return agreement.model_copy() if agreement else None

    def get_by_pairing_code(self, pairing_code: str) -> Optional[ConsentAgreement]:
        """Find agreement by pairing code"""
        for agreement in list(self.agreements.values()):
            if agreement.pairing_code == pairing_code:
                return agreement.model_copy()
        return None

    def list_for_participant(self, user_id: str) -> List[ConsentAgreement]:
        """List agreements for a participant, newest first"""
        matches = [
            a.model_copy() for a in list(self.agreements.values())
            if user_id in (a.initiator_id, a.partner_id)
        ]
        matches.sort(key=lambda a: (a.created_at, self._sequence[a.id]), reverse=True)
        return matches

    def conditional_update(self, consent_id: str, expected: Dict[str, Any],
                           values: Dict[str, Any]) -> Optional[ConsentAgreement]:
        """Compare-and-swap under the store lock"""
        with self._lock:
            current = self.agreements.get(consent_id)
            if current is None:
                return None
            if any(getattr(current, field) != value for field, value in expected.items()):
                return None
            updated = current.model_copy(update=values)
            self.agreements[consent_id] = updated
            return updated.model_copy()

    def delete(self, consent_id: str) -> bool:
        """Remove agreement from memory"""
        with self._lock:
            self._sequence.pop(consent_id, None)
            return self.agreements.pop(consent_id, None) is not None

"""
Consent lifecycle engine for consent-anchor
Pairing, dual confirmation, ledger-anchored activation and revocation
"""

from typing import List, Optional, Protocol
from datetime import date, datetime, UTC
import structlog

from .models import ConsentAgreement, ConsentStatus
from .pairing import generate_pairing_code, normalize_pairing_code
from .storage import ConsentStore
from ..constants import LedgerOperations
from ..exceptions import (
    ForbiddenError,
    InternalError,
    InvalidOperationError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from ..identity.directory import UserRecord
from ..ledger.gateway import LedgerGateway
from ..policy.access import require_participant
from ..policy.audit import AuditEventType, AuditLogger
from ..utils.validators import MAX_TITLE_LENGTH, validate_required_text

logger = structlog.get_logger(__name__)


class IdentityResolver(Protocol):
    """Lookup of participants and their ledger addresses"""

    def find_user(self, ref: str) -> Optional[UserRecord]:
        ...

    def resolve_address(self, user_id: str) -> Optional[str]:
        ...


class ConsentLifecycleEngine:
    """
    Owns the agreement state machine.

    Every operation re-reads the agreement and writes through one of the
    store's guarded transitions. The ledger call during activation happens
    between two store writes, never inside one.
    """

    def __init__(self, store: ConsentStore, ledger: LedgerGateway,
                 identities: IdentityResolver,
                 audit_logger: Optional[AuditLogger] = None):
        self.store = store
        self.ledger = ledger
        self.identities = identities
        self.audit = audit_logger

    def _audit(self, event_type: AuditEventType, action: str, outcome: str,
               actor_id: str, consent_id: str, **details) -> None:
        if self.audit is not None:
            self.audit.log_event(event_type, action, outcome, actor_id=actor_id,
                                 consent_id=consent_id, details=details)

    def _load_for_participant(self, actor_id: str, consent_id: str):
        agreement = self.store.get(consent_id)
        if agreement is None:
            raise NotFoundError(resource_id=consent_id)
        try:
            role = require_participant(agreement, actor_id)
        except ForbiddenError:
            self._audit(AuditEventType.ACCESS_DENIED, "access", "denied", actor_id, consent_id)
            raise
        return agreement, role

    # ------------------------------------------------------------------
    # Creation and pairing
    # ------------------------------------------------------------------

    def create(self, actor_id: str, title: str, description: str,
               valid_from: Optional[date] = None, valid_to: Optional[date] = None,
               partner_ref: Optional[str] = None) -> ConsentAgreement:
        """Start a new PENDING agreement, paired directly or via a pairing code"""
        title = validate_required_text(title, "title", max_length=MAX_TITLE_LENGTH)
        description = validate_required_text(description, "description")

        partner = self.identities.find_user(partner_ref) if partner_ref else None
        if partner is not None and partner.id == actor_id:
            raise InvalidOperationError("Initiator cannot be their own partner")
        if partner_ref and partner is None:
            logger.info("Partner reference did not resolve, issuing pairing code",
                       actor_id=actor_id)

        agreement = ConsentAgreement(
            initiator_id=actor_id,
            partner_id=partner.id if partner else None,
            title=title,
            description=description,
            valid_from=valid_from,
            valid_to=valid_to,
            pairing_code=None if partner else generate_pairing_code(),
        )
        self.store.insert(agreement)

        logger.info("Created consent agreement", consent_id=agreement.id,
                   actor_id=actor_id, direct_pairing=partner is not None)
        self._audit(AuditEventType.CONSENT_CREATED, "create", "success", actor_id, agreement.id,
                    direct_pairing=partner is not None)
        return agreement

    def claim(self, actor_id: str, pairing_code: str) -> ConsentAgreement:
        """Take the open partner slot using a pairing code"""
        if not pairing_code or not pairing_code.strip():
            raise ValidationError("pairing_code is required", field="pairing_code")

        key = normalize_pairing_code(pairing_code)
        agreement = self.store.get_by_pairing_code(key)
        if agreement is None:
            raise NotFoundError("Invalid pairing code")

        if agreement.initiator_id == actor_id:
            raise InvalidOperationError("Initiator cannot join their own consent",
                                        consent_id=agreement.id)
        if agreement.partner_id is not None:
            raise InvalidOperationError("Consent already has a partner", consent_id=agreement.id)
        if agreement.status != ConsentStatus.PENDING:
            raise InvalidOperationError("Consent is no longer open for pairing",
                                        consent_id=agreement.id, status=agreement.status.value)

        claimed = self.store.claim_partner(agreement.id, actor_id, key)
        if claimed is None:
            logger.info("Lost pairing race", consent_id=agreement.id, actor_id=actor_id)
            raise InvalidOperationError("Consent already has a partner", consent_id=agreement.id)

        logger.info("Consent claimed", consent_id=claimed.id, partner_id=actor_id)
        self._audit(AuditEventType.CONSENT_CLAIMED, "claim", "success", actor_id, claimed.id)
        return claimed

    # ------------------------------------------------------------------
    # Confirmation and activation
    # ------------------------------------------------------------------

    def confirm(self, actor_id: str, consent_id: str) -> ConsentAgreement:
        """
        Record the actor's confirmation and activate once both sides agree.

        Re-confirming is a no-op. If both flags are already set but an earlier
        activation failed at the ledger, this retries only the activation.
        """
        agreement, role = self._load_for_participant(actor_id, consent_id)

        if agreement.status == ConsentStatus.REVOKED:
            raise InvalidOperationError("Consent has been revoked", consent_id=consent_id,
                                        status=agreement.status.value)

        if not agreement.is_confirmed_by(role):
            updated = self.store.set_confirmation(consent_id, role)
            if updated is None:
                # Status moved on between the read and the write
                current = self.store.get(consent_id)
                if current is None:
                    raise NotFoundError(resource_id=consent_id)
                if current.status == ConsentStatus.REVOKED:
                    raise InvalidOperationError("Consent has been revoked", consent_id=consent_id,
                                                status=current.status.value)
                updated = current
            else:
                logger.info("Consent confirmed", consent_id=consent_id, actor_id=actor_id,
                           role=role.value)
                self._audit(AuditEventType.CONSENT_CONFIRMED, "confirm", "success",
                            actor_id, consent_id, role=role.value)
            agreement = updated

        if agreement.is_ready_for_activation():
            return self._activate(actor_id, agreement)
        return agreement

    def _activate(self, actor_id: str, agreement: ConsentAgreement) -> ConsentAgreement:
        initiator_address = self.identities.resolve_address(agreement.initiator_id)
        partner_address = self.identities.resolve_address(agreement.partner_id)
        if not initiator_address or not partner_address:
            logger.error("Consent participants missing ledger address",
                        consent_id=agreement.id,
                        initiator_resolved=bool(initiator_address),
                        partner_resolved=bool(partner_address))
            raise InternalError("Consent participants missing",
                                details={"consent_id": agreement.id})

        # Skip the submission if a concurrent confirm already activated
        fresh = self.store.get(agreement.id)
        if fresh is None:
            raise NotFoundError(resource_id=agreement.id)
        if fresh.status != ConsentStatus.PENDING:
            return fresh

        try:
            receipt = self.ledger.submit_create(agreement.id, initiator_address, partner_address)
        except Exception as exc:
            current = self.store.get(agreement.id)
            if current is not None and current.status == ConsentStatus.ACTIVE:
                logger.info("Ledger create refused after concurrent activation",
                           consent_id=agreement.id, error=str(exc))
                return current
            logger.error("Ledger create failed", consent_id=agreement.id, error=str(exc))
            self._audit(AuditEventType.LEDGER_FAILURE, LedgerOperations.CREATE, "failure",
                        actor_id, agreement.id, reason=str(exc))
            raise LedgerError(operation=LedgerOperations.CREATE, consent_id=agreement.id,
                              reason=str(exc)) from exc

        activated = self.store.activate(agreement.id, receipt.transaction_ref, datetime.now(UTC))
        if activated is None:
            current = self.store.get(agreement.id)
            if current is not None and current.status == ConsentStatus.ACTIVE:
                logger.info("Activation already committed by concurrent confirm",
                           consent_id=agreement.id,
                           redundant_transaction_ref=receipt.transaction_ref)
                return current
            logger.warning("Ledger record created for agreement that left PENDING",
                          consent_id=agreement.id,
                          transaction_ref=receipt.transaction_ref)
            raise InvalidOperationError("Consent changed during activation",
                                        consent_id=agreement.id,
                                        status=current.status.value if current else None)

        logger.info("Consent activated", consent_id=activated.id,
                   transaction_ref=activated.last_transaction_ref)
        self._audit(AuditEventType.CONSENT_ACTIVATED, "activate", "success", actor_id,
                    activated.id, transaction_ref=activated.last_transaction_ref)
        return activated

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, actor_id: str, consent_id: str) -> ConsentAgreement:
        """Revoke the agreement, on the ledger first when it was anchored"""
        agreement, _ = self._load_for_participant(actor_id, consent_id)

        if agreement.status == ConsentStatus.REVOKED:
            raise InvalidOperationError("Consent already revoked", consent_id=consent_id,
                                        status=agreement.status.value)

        transaction_ref = None
        if agreement.ledger_reference:
            try:
                receipt = self.ledger.submit_revoke(agreement.ledger_reference)
            except Exception as exc:
                logger.error("Ledger revoke failed", consent_id=consent_id, error=str(exc))
                self._audit(AuditEventType.LEDGER_FAILURE, LedgerOperations.REVOKE, "failure",
                            actor_id, consent_id, reason=str(exc))
                raise LedgerError(operation=LedgerOperations.REVOKE, consent_id=consent_id,
                                  reason=str(exc)) from exc
            transaction_ref = receipt.transaction_ref

        revoked = self.store.mark_revoked(consent_id, agreement.status, transaction_ref)
        if revoked is None:
            current = self.store.get(consent_id)
            if current is None:
                raise NotFoundError(resource_id=consent_id)
            if current.status == ConsentStatus.REVOKED:
                raise InvalidOperationError("Consent already revoked", consent_id=consent_id,
                                            status=current.status.value)
            raise InvalidOperationError("Consent changed during revocation, retry",
                                        consent_id=consent_id, status=current.status.value)

        logger.info("Consent revoked", consent_id=consent_id, actor_id=actor_id,
                   anchored=transaction_ref is not None)
        self._audit(AuditEventType.CONSENT_REVOKED, "revoke", "success", actor_id, consent_id,
                    transaction_ref=transaction_ref)
        return revoked

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_agreements(self, actor_id: str) -> List[ConsentAgreement]:
        """Agreements the actor participates in, newest first"""
        return self.store.list_for_participant(actor_id)

    def get(self, actor_id: str, consent_id: str) -> ConsentAgreement:
        """Fetch one agreement the actor participates in"""
        agreement, _ = self._load_for_participant(actor_id, consent_id)
        return agreement

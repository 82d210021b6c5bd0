"""
Tests for the consent lifecycle engine
"""

import re
import threading
from datetime import datetime, UTC
from concurrent.futures import ThreadPoolExecutor

import pytest

from consent_anchor.consent.engine import ConsentLifecycleEngine
from consent_anchor.consent.models import ConsentAgreement, ConsentStatus, ParticipantRole
from consent_anchor.consent.storage import InMemoryConsentStore
from consent_anchor.exceptions import (
    ForbiddenError,
    InternalError,
    InvalidOperationError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from consent_anchor.identity.directory import InMemoryUserDirectory
from consent_anchor.ledger.gateway import HashChainLedgerGateway, LedgerReceipt
from consent_anchor.policy.audit import AuditEventType, AuditLogger

ALICE_WALLET = "0x" + "a" * 40
BOB_WALLET = "0x" + "b" * 40
CAROL_WALLET = "0x" + "c" * 40

GROUPED = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


class RecordingLedger:
    """Ledger double that records calls and can fail on demand"""

    def __init__(self, fail_creates: int = 0, fail_revokes: int = 0):
        self.inner = HashChainLedgerGateway(namespace="test")
        self.create_calls = []
        self.revoke_calls = []
        self.fail_creates = fail_creates
        self.fail_revokes = fail_revokes

    def submit_create(self, agreement_id, address_a, address_b) -> LedgerReceipt:
        self.create_calls.append((agreement_id, address_a, address_b))
        if self.fail_creates:
            self.fail_creates -= 1
            raise ConnectionError("rpc timeout")
        return self.inner.submit_create(agreement_id, address_a, address_b)

    def submit_revoke(self, ledger_reference) -> LedgerReceipt:
        self.revoke_calls.append(ledger_reference)
        if self.fail_revokes:
            self.fail_revokes -= 1
            raise ConnectionError("rpc timeout")
        return self.inner.submit_revoke(ledger_reference)


class TestConsentAgreementModel:
    """Test agreement model helpers"""

    def test_defaults(self):
        agreement = ConsentAgreement(initiator_id="alice", title="T", description="D")

        assert agreement.status == ConsentStatus.PENDING
        assert not agreement.initiator_confirmed
        assert not agreement.partner_confirmed
        assert not agreement.is_paired()
        assert not agreement.is_ready_for_activation()

    def test_ready_for_activation_needs_partner_and_both_flags(self):
        agreement = ConsentAgreement(
            initiator_id="alice", partner_id="bob", title="T", description="D",
            initiator_confirmed=True, partner_confirmed=False,
        )
        assert not agreement.is_ready_for_activation()

        agreement.partner_confirmed = True
        assert agreement.is_ready_for_activation()
        assert agreement.is_confirmed_by(ParticipantRole.PARTNER)

        agreement.status = ConsentStatus.ACTIVE
        assert not agreement.is_ready_for_activation()


class TestConsentLifecycleEngine:
    """Test the consent state machine"""

    def setup_method(self):
        self.store = InMemoryConsentStore()
        self.directory = InMemoryUserDirectory()
        self.directory.register_user("alice@example.com", ALICE_WALLET, user_id="alice")
        self.directory.register_user("bob@example.com", BOB_WALLET, user_id="bob")
        self.directory.register_user("carol@example.com", CAROL_WALLET, user_id="carol")
        self.ledger = RecordingLedger()
        self.audit = AuditLogger()
        self.engine = ConsentLifecycleEngine(self.store, self.ledger, self.directory, self.audit)

    def _paired(self) -> ConsentAgreement:
        created = self.engine.create("alice", "Data sharing", "Share step counts")
        return self.engine.claim("bob", created.pairing_code)

    # -- create -------------------------------------------------------

    def test_create_issues_grouped_pairing_code(self):
        agreement = self.engine.create("alice", "Data sharing", "Share step counts")

        assert agreement.status == ConsentStatus.PENDING
        assert agreement.partner_id is None
        assert GROUPED.match(agreement.pairing_code)
        assert not agreement.initiator_confirmed and not agreement.partner_confirmed
        assert agreement.created_at is not None
        assert self.store.get(agreement.id) == agreement

    def test_create_with_known_partner_pairs_directly(self):
        agreement = self.engine.create("alice", "Data sharing", "Share", partner_ref="BOB@example.com")

        assert agreement.partner_id == "bob"
        assert agreement.pairing_code is None

    def test_create_with_unknown_partner_falls_back_to_code(self):
        agreement = self.engine.create("alice", "Data sharing", "Share", partner_ref="nobody@example.com")

        assert agreement.partner_id is None
        assert agreement.pairing_code is not None

    def test_create_naming_self_as_partner_fails(self):
        with pytest.raises(InvalidOperationError):
            self.engine.create("alice", "Data sharing", "Share", partner_ref="alice@example.com")

    @pytest.mark.parametrize("title,description", [
        ("", "Share"),
        ("   ", "Share"),
        ("Data sharing", ""),
        (None, "Share"),
    ])
    def test_create_requires_title_and_description(self, title, description):
        with pytest.raises(ValidationError):
            self.engine.create("alice", title, description)
        assert self.store.agreements == {}

    def test_created_record_has_exactly_one_of_partner_or_code(self):
        for ref in (None, "bob", "missing@example.com"):
            agreement = self.engine.create("alice", "T", "D", partner_ref=ref)
            assert (agreement.partner_id is None) != (agreement.pairing_code is None)

    # -- claim --------------------------------------------------------

    def test_claim_accepts_messy_typed_code(self):
        created = self.engine.create("alice", "Data sharing", "Share")
        typed = created.pairing_code.upper().replace("-", " ")

        claimed = self.engine.claim("bob", typed)

        assert claimed.partner_id == "bob"
        assert claimed.pairing_code is None

    def test_claim_unknown_code(self):
        with pytest.raises(NotFoundError):
            self.engine.claim("bob", "does-not-exist")

    def test_claim_blank_code(self):
        with pytest.raises(ValidationError):
            self.engine.claim("bob", "  ")

    def test_initiator_cannot_claim_own_code(self):
        created = self.engine.create("alice", "Data sharing", "Share")

        with pytest.raises(InvalidOperationError):
            self.engine.claim("alice", created.pairing_code)

        assert self.store.get(created.id).pairing_code == created.pairing_code

    def test_consumed_code_cannot_be_reused(self):
        created = self.engine.create("alice", "Data sharing", "Share")
        self.engine.claim("bob", created.pairing_code)

        with pytest.raises(NotFoundError):
            self.engine.claim("carol", created.pairing_code)

        assert self.store.get(created.id).partner_id == "bob"

    def test_concurrent_claims_have_one_winner(self):
        contenders = 8
        barrier = threading.Barrier(contenders)

        class LockstepStore(InMemoryConsentStore):
            def get_by_pairing_code(self, pairing_code):
                found = super().get_by_pairing_code(pairing_code)
                barrier.wait(timeout=5)
                return found

        store = LockstepStore()
        engine = ConsentLifecycleEngine(store, self.ledger, self.directory)
        created = engine.create("alice", "Data sharing", "Share")

        def attempt(i):
            try:
                return engine.claim(f"user_{i}", created.pairing_code)
            except InvalidOperationError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=contenders) as pool:
            results = list(pool.map(attempt, range(contenders)))

        winners = [r for r in results if isinstance(r, ConsentAgreement)]
        losers = [r for r in results if isinstance(r, InvalidOperationError)]
        assert len(winners) == 1
        assert len(losers) == contenders - 1
        assert store.get(created.id).partner_id == winners[0].partner_id

    # -- confirm ------------------------------------------------------

    def test_first_confirmation_does_not_activate(self):
        agreement = self._paired()

        confirmed = self.engine.confirm("alice", agreement.id)

        assert (confirmed.initiator_confirmed, confirmed.partner_confirmed) == (True, False)
        assert confirmed.status == ConsentStatus.PENDING
        assert self.ledger.create_calls == []

    def test_confirm_is_idempotent_per_participant(self):
        agreement = self._paired()
        first = self.engine.confirm("alice", agreement.id)
        second = self.engine.confirm("alice", agreement.id)

        assert second == first
        assert len(self.audit.get_events(event_type=AuditEventType.CONSENT_CONFIRMED)) == 1

    def test_initiator_may_confirm_before_pairing(self):
        created = self.engine.create("alice", "Data sharing", "Share")

        confirmed = self.engine.confirm("alice", created.id)
        assert confirmed.initiator_confirmed
        assert confirmed.status == ConsentStatus.PENDING

        claimed = self.engine.claim("bob", created.pairing_code)
        activated = self.engine.confirm("bob", claimed.id)
        assert activated.status == ConsentStatus.ACTIVE

    def test_confirm_requires_participant(self):
        agreement = self._paired()

        with pytest.raises(ForbiddenError):
            self.engine.confirm("carol", agreement.id)

        assert self.audit.get_events(event_type=AuditEventType.ACCESS_DENIED)

    def test_confirm_missing_agreement(self):
        with pytest.raises(NotFoundError):
            self.engine.confirm("alice", "missing")

    def test_ledger_called_once_across_redundant_confirms(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        activated = self.engine.confirm("bob", agreement.id)

        for _ in range(3):
            assert self.engine.confirm("alice", agreement.id).status == ConsentStatus.ACTIVE
            assert self.engine.confirm("bob", agreement.id).status == ConsentStatus.ACTIVE

        assert len(self.ledger.create_calls) == 1
        assert self.store.get(agreement.id) == activated

    def test_activation_without_ledger_address_is_internal_error(self):
        created = self.engine.create("alice", "Data sharing", "Share")
        self.engine.claim("dave", created.pairing_code)
        self.engine.confirm("alice", created.id)

        with pytest.raises(InternalError):
            self.engine.confirm("dave", created.id)

        stored = self.store.get(created.id)
        assert stored.status == ConsentStatus.PENDING
        assert stored.partner_confirmed
        assert self.ledger.create_calls == []

    def test_confirm_on_revoked_agreement_fails(self):
        agreement = self._paired()
        self.engine.revoke("alice", agreement.id)

        with pytest.raises(InvalidOperationError):
            self.engine.confirm("bob", agreement.id)

        assert self.store.get(agreement.id).status == ConsentStatus.REVOKED

    def test_losing_activation_commit_returns_active_record(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        store = self.store

        class RacingLedger(RecordingLedger):
            def submit_create(self, agreement_id, address_a, address_b):
                receipt = super().submit_create(agreement_id, address_a, address_b)
                # the other participant's confirm commits first
                store.activate(agreement_id, "tx-winner", datetime.now(UTC))
                return receipt

        engine = ConsentLifecycleEngine(self.store, RacingLedger(), self.directory)
        result = engine.confirm("bob", agreement.id)

        assert result.status == ConsentStatus.ACTIVE
        assert result.last_transaction_ref == "tx-winner"

    def test_ledger_refusal_after_concurrent_activation_returns_active_record(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        store = self.store

        class RefusingLedger(RecordingLedger):
            def submit_create(self, agreement_id, address_a, address_b):
                store.activate(agreement_id, "tx-winner", datetime.now(UTC))
                raise ConnectionError("record already exists")

        engine = ConsentLifecycleEngine(self.store, RefusingLedger(), self.directory, self.audit)
        result = engine.confirm("bob", agreement.id)

        assert result.status == ConsentStatus.ACTIVE
        assert result.last_transaction_ref == "tx-winner"
        assert not self.audit.get_events(event_type=AuditEventType.LEDGER_FAILURE)

    def test_concurrent_retried_confirms_share_one_ledger_record(self):
        agreement = self._paired()
        barrier = threading.Barrier(2)

        class LockstepLedger(HashChainLedgerGateway):
            fail_next_create = True

            def submit_create(self, agreement_id, address_a, address_b):
                if self.fail_next_create:
                    self.fail_next_create = False
                    raise ConnectionError("rpc timeout")
                barrier.wait(timeout=5)
                return super().submit_create(agreement_id, address_a, address_b)

        ledger = LockstepLedger(namespace="test")
        engine = ConsentLifecycleEngine(self.store, ledger, self.directory)
        engine.confirm("alice", agreement.id)
        with pytest.raises(LedgerError):
            engine.confirm("bob", agreement.id)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(lambda actor: engine.confirm(actor, agreement.id),
                                    ["alice", "bob"]))

        assert [r.status for r in results] == [ConsentStatus.ACTIVE, ConsentStatus.ACTIVE]
        assert len(ledger.entries) == 1
        assert {r.last_transaction_ref for r in results} == {ledger.entries[0].hash}
        assert self.store.get(agreement.id).status == ConsentStatus.ACTIVE

    def test_retry_after_failed_commit_reuses_ledger_record(self):
        class FlakyCommitStore(InMemoryConsentStore):
            fail_next_activate = True

            def activate(self, consent_id, transaction_ref, confirmed_at):
                if self.fail_next_activate:
                    self.fail_next_activate = False
                    raise RuntimeError("database is locked")
                return super().activate(consent_id, transaction_ref, confirmed_at)

        store = FlakyCommitStore()
        ledger = HashChainLedgerGateway(namespace="test")
        engine = ConsentLifecycleEngine(store, ledger, self.directory)
        created = engine.create("alice", "Data sharing", "Share", partner_ref="bob")
        engine.confirm("alice", created.id)

        with pytest.raises(RuntimeError):
            engine.confirm("bob", created.id)
        assert store.get(created.id).status == ConsentStatus.PENDING

        activated = engine.confirm("alice", created.id)

        assert activated.status == ConsentStatus.ACTIVE
        assert len(ledger.entries) == 1
        assert activated.last_transaction_ref == ledger.entries[0].hash

    # -- revoke -------------------------------------------------------

    def test_revoke_anchored_agreement_hits_ledger_first(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        activated = self.engine.confirm("bob", agreement.id)

        revoked = self.engine.revoke("bob", agreement.id)

        assert self.ledger.revoke_calls == [activated.ledger_reference]
        assert revoked.status == ConsentStatus.REVOKED
        assert revoked.ledger_reference == agreement.id
        assert revoked.last_transaction_ref not in (None, activated.last_transaction_ref)
        assert revoked.confirmed_at == activated.confirmed_at

    def test_revoke_ledger_failure_leaves_state_untouched(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        activated = self.engine.confirm("bob", agreement.id)
        self.ledger.fail_revokes = 1

        with pytest.raises(LedgerError):
            self.engine.revoke("alice", agreement.id)

        assert self.store.get(agreement.id) == activated
        assert self.audit.get_events(event_type=AuditEventType.LEDGER_FAILURE)

        assert self.engine.revoke("alice", agreement.id).status == ConsentStatus.REVOKED

    def test_revoke_requires_participant(self):
        agreement = self._paired()

        with pytest.raises(ForbiddenError):
            self.engine.revoke("carol", agreement.id)

    def test_revoke_unpaired_agreement_clears_pairing_code(self):
        created = self.engine.create("alice", "Data sharing", "Share")

        revoked = self.engine.revoke("alice", created.id)

        assert revoked.pairing_code is None
        with pytest.raises(NotFoundError):
            self.engine.claim("bob", created.pairing_code)

    # -- reads --------------------------------------------------------

    def test_list_returns_own_agreements_newest_first(self):
        first = self.engine.create("alice", "First", "D")
        second = self.engine.create("alice", "Second", "D", partner_ref="bob")
        third = self.engine.create("carol", "Third", "D", partner_ref="alice")
        self.engine.create("carol", "Unrelated", "D")

        listed = self.engine.list_agreements("alice")

        assert [a.id for a in listed] == [third.id, second.id, first.id]
        assert [a.id for a in self.engine.list_agreements("bob")] == [second.id]

    def test_get_enforces_participation(self):
        agreement = self._paired()

        assert self.engine.get("bob", agreement.id).id == agreement.id
        with pytest.raises(ForbiddenError):
            self.engine.get("carol", agreement.id)
        with pytest.raises(NotFoundError):
            self.engine.get("bob", "missing")

    def test_audit_trail_is_chained(self):
        agreement = self._paired()
        self.engine.confirm("alice", agreement.id)
        self.engine.confirm("bob", agreement.id)
        self.engine.revoke("alice", agreement.id)

        types = [e.event_type for e in self.audit.get_events(consent_id=agreement.id)]
        assert types == [
            AuditEventType.CONSENT_CREATED,
            AuditEventType.CONSENT_CLAIMED,
            AuditEventType.CONSENT_CONFIRMED,
            AuditEventType.CONSENT_CONFIRMED,
            AuditEventType.CONSENT_ACTIVATED,
            AuditEventType.CONSENT_REVOKED,
        ]
        assert self.audit.verify_integrity()


class TestConsentScenarios:
    """End-to-end lifecycle scenarios"""

    def setup_method(self):
        self.store = InMemoryConsentStore()
        self.directory = InMemoryUserDirectory()
        self.directory.register_user("alice@example.com", ALICE_WALLET, user_id="alice")
        self.directory.register_user("bob@example.com", BOB_WALLET, user_id="bob")
        self.ledger = RecordingLedger()
        self.engine = ConsentLifecycleEngine(self.store, self.ledger, self.directory)

    def test_pairing_then_dual_confirmation_activates(self):
        created = self.engine.create("alice", "Data sharing", "Share step counts")
        assert GROUPED.match(created.pairing_code)
        assert created.partner_id is None

        claimed = self.engine.claim("bob", created.pairing_code)
        assert claimed.partner_id == "bob"
        assert claimed.pairing_code is None

        confirmed = self.engine.confirm("alice", created.id)
        assert (confirmed.initiator_confirmed, confirmed.partner_confirmed) == (True, False)
        assert confirmed.status == ConsentStatus.PENDING

        activated = self.engine.confirm("bob", created.id)
        assert self.ledger.create_calls == [(created.id, ALICE_WALLET, BOB_WALLET)]
        assert activated.status == ConsentStatus.ACTIVE
        assert activated.confirmed_at is not None
        assert activated.ledger_reference == created.id
        assert activated.last_transaction_ref is not None

    def test_ledger_failure_keeps_flags_and_retry_activates(self):
        self.ledger.fail_creates = 1
        created = self.engine.create("alice", "Data sharing", "Share step counts")
        self.engine.claim("bob", created.pairing_code)
        self.engine.confirm("alice", created.id)

        with pytest.raises(LedgerError):
            self.engine.confirm("bob", created.id)

        pending = self.store.get(created.id)
        assert pending.status == ConsentStatus.PENDING
        assert pending.initiator_confirmed and pending.partner_confirmed
        assert pending.ledger_reference is None
        assert pending.confirmed_at is None

        activated = self.engine.confirm("alice", created.id)
        assert activated.status == ConsentStatus.ACTIVE
        assert activated.initiator_confirmed and activated.partner_confirmed
        assert len(self.ledger.create_calls) == 2

    def test_revoking_pending_agreement_skips_ledger(self):
        created = self.engine.create("alice", "Data sharing", "Share step counts")

        revoked = self.engine.revoke("alice", created.id)
        assert revoked.status == ConsentStatus.REVOKED
        assert self.ledger.revoke_calls == []
        assert self.ledger.create_calls == []

        with pytest.raises(InvalidOperationError):
            self.engine.revoke("alice", created.id)

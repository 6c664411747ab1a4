"""
Tests for concurrent ledger operations
======================================
"""

import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.models import AuditAction, ContractStatus
from core.exceptions import InvalidTransitionError
from ledger.audit_log import AuditLog
from ledger.consent_ledger import ConsentLedger
from ledger.identity_registry import IdentityRegistry
from ledger.store import LedgerStore


def run_concurrently(*targets):
    """Start all targets behind a barrier; return (results, errors) per target."""
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)
    errors = [None] * len(targets)

    def wrap(index, target):
        barrier.wait()
        try:
            results[index] = target()
        except Exception as e:
            errors[index] = e

    threads = [
        threading.Thread(target=wrap, args=(i, t)) for i, t in enumerate(targets)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results, errors


class LockWatcher:
    """
    Wraps a store's contract locks and reports when a named thread asks
    for one, so a test can hold the lock until both racers are waiting.
    """

    def __init__(self, store: LedgerStore):
        self.store = store
        self.waiting = {}
        self._original = store.contract_lock
        store.contract_lock = self._contract_lock

    def expect(self, *names):
        self.waiting = {name: threading.Event() for name in names}

    def _contract_lock(self, contract_id):
        event = self.waiting.get(threading.current_thread().name)
        if event is not None:
            event.set()
        return self._original(contract_id)

    def wait_all(self, timeout=5.0) -> bool:
        return all(event.wait(timeout) for event in self.waiting.values())

    def lock(self, contract_id):
        return self._original(contract_id)


class TestApproveRevokeRace:
    """Simultaneous approve_consent / revoke_consent on one PENDING contract."""

    def setup_method(self):
        self.store = LedgerStore()
        self.audit_log = AuditLog(self.store)
        self.registry = IdentityRegistry(self.store, self.audit_log)
        self.registry.register({"id": "prov-1", "role": "provider", "organization": "CityClinic"})
        self.registry.register({"id": "pat-1", "role": "patient", "organization": "PatientOrg"})
        self.ledger = ConsentLedger(self.store, self.registry, self.audit_log)
        self.watcher = LockWatcher(self.store)

    def _race(self, contract_id):
        """Hold the contract lock until both calls are in flight, then release."""
        outcome = {}

        def call(name, operation):
            try:
                outcome[name] = operation(contract_id, "pat-1")
            except Exception as e:
                outcome[name] = e

        self.watcher.expect("approve", "revoke")
        threads = [
            threading.Thread(
                name="approve", target=call, args=("approve", self.ledger.approve_consent)
            ),
            threading.Thread(
                name="revoke", target=call, args=("revoke", self.ledger.revoke_consent)
            ),
        ]
        with self.watcher.lock(contract_id):
            for thread in threads:
                thread.start()
            assert self.watcher.wait_all()
        for thread in threads:
            thread.join(timeout=10)
        return outcome

    def test_exactly_one_wins(self):
        """Test that overlapping approve and revoke never both succeed."""
        for _ in range(20):
            contract_id = self.ledger.request_consent("prov-1", "pat-1", "checkup")
            outcome = self._race(contract_id)

            failed = [n for n, r in outcome.items() if isinstance(r, Exception)]
            succeeded = [n for n, r in outcome.items() if not isinstance(r, Exception)]
            assert len(succeeded) == 1
            assert len(failed) == 1
            assert isinstance(outcome[failed[0]], InvalidTransitionError)

            contract = self.ledger.get_contract(contract_id)
            expected = ContractStatus.ACTIVE if succeeded[0] == "approve" else ContractStatus.REVOKED
            assert contract.status == expected
            # One transition entry after the request, never both
            assert len(contract.history) == 2
            assert self.audit_log.verify_contract(contract_id) is True

            if contract.status == ContractStatus.ACTIVE:
                self.ledger.revoke_consent(contract_id, "pat-1")

    def test_approve_landing_first_fails_revoke(self):
        """Test that a revoke in flight when approval lands gets InvalidTransitionError."""
        contract_id = self.ledger.request_consent("prov-1", "pat-1", "checkup")
        outcome = {}

        def revoke():
            try:
                outcome["revoke"] = self.ledger.revoke_consent(contract_id, "pat-1")
            except Exception as e:
                outcome["revoke"] = e

        self.watcher.expect("revoke")
        thread = threading.Thread(name="revoke", target=revoke)
        with self.watcher.lock(contract_id):
            thread.start()
            assert self.watcher.wait_all()
            # Revoke observed PENDING and is blocked; approval lands first
            approved = self.ledger.approve_consent(contract_id, "pat-1")
        thread.join(timeout=10)

        assert approved.status == ContractStatus.ACTIVE
        assert isinstance(outcome["revoke"], InvalidTransitionError)
        assert outcome["revoke"].current_status == "ACTIVE"
        contract = self.ledger.get_contract(contract_id)
        assert contract.status == ContractStatus.ACTIVE
        assert [e.action for e in contract.history] == [AuditAction.REQUEST, AuditAction.APPROVE]

    def test_revoke_landing_first_fails_approve(self):
        """Test that an approval in flight when revocation lands gets InvalidTransitionError."""
        contract_id = self.ledger.request_consent("prov-1", "pat-1", "checkup")
        outcome = {}

        def approve():
            try:
                outcome["approve"] = self.ledger.approve_consent(contract_id, "pat-1")
            except Exception as e:
                outcome["approve"] = e

        self.watcher.expect("approve")
        thread = threading.Thread(name="approve", target=approve)
        with self.watcher.lock(contract_id):
            thread.start()
            assert self.watcher.wait_all()
            revoked = self.ledger.revoke_consent(contract_id, "pat-1")
        thread.join(timeout=10)

        assert revoked.status == ContractStatus.REVOKED
        assert isinstance(outcome["approve"], InvalidTransitionError)
        assert self.ledger.get_contract(contract_id).status == ContractStatus.REVOKED

    def test_sequential_approve_then_revoke_allowed(self):
        """Test that revoking after an approval has completed still succeeds."""
        contract_id = self.ledger.request_consent("prov-1", "pat-1", "checkup")
        self.ledger.approve_consent(contract_id, "pat-1")
        revoked = self.ledger.revoke_consent(contract_id, "pat-1")
        assert revoked.status == ContractStatus.REVOKED


class TestConcurrentTransitions:
    """Transitions stay serialized under contention."""

    def setup_method(self):
        self.store = LedgerStore()
        self.audit_log = AuditLog(self.store)
        self.registry = IdentityRegistry(self.store, self.audit_log)
        self.registry.register({"id": "prov-1", "role": "provider", "organization": "CityClinic"})
        self.registry.register({"id": "pat-1", "role": "patient", "organization": "PatientOrg"})
        self.ledger = ConsentLedger(self.store, self.registry, self.audit_log)

    def test_approve_races_decline(self):
        """Test that answering a request both ways at once leaves one answer."""
        for _ in range(25):
            contract_id = self.ledger.request_consent("prov-1", "pat-1", "checkup")

            results, errors = run_concurrently(
                lambda: self.ledger.respond_to_request(contract_id, "pat-1", approved=True),
                lambda: self.ledger.respond_to_request(contract_id, "pat-1", approved=False),
            )

            succeeded = [r for r in results if r is not None]
            failed = [e for e in errors if e is not None]
            assert len(succeeded) == 1
            assert len(failed) == 1
            assert isinstance(failed[0], InvalidTransitionError)

            contract = self.ledger.get_contract(contract_id)
            assert contract.status == succeeded[0].status
            assert len(contract.history) == 2
            assert self.audit_log.verify_contract(contract_id) is True

            if contract.status == ContractStatus.ACTIVE:
                self.ledger.revoke_consent(contract_id, "pat-1")

    def test_concurrent_requests_get_unique_ids(self):
        """Test that parallel requests each get their own contract."""
        results, errors = run_concurrently(
            *[
                (lambda: self.ledger.request_consent("prov-1", "pat-1", "checkup"))
                for _ in range(16)
            ]
        )
        assert errors == [None] * 16
        assert len(set(results)) == 16
        assert len(self.ledger.get_pending_requests("pat-1")) == 16

    def test_concurrent_approvals_leave_one_active(self):
        """Test that parallel approvals for one consent key leave a single ACTIVE contract."""
        contract_ids = [
            self.ledger.request_consent("prov-1", "pat-1", "checkup") for _ in range(8)
        ]

        results, errors = run_concurrently(
            *[
                (lambda cid=cid: self.ledger.approve_consent(cid, "pat-1"))
                for cid in contract_ids
            ]
        )

        assert errors == [None] * 8
        assert len(self.ledger.get_active_permissions("pat-1")) == 1
        for contract_id in contract_ids:
            assert self.audit_log.verify_contract(contract_id) is True

    def test_concurrent_alerts_keep_chain_intact(self):
        """Test that parallel security log appends keep one unbroken chain."""
        results, errors = run_concurrently(
            *[
                (lambda i=i: self.audit_log.append(AuditAction.ALERT, f"prov-{i}"))
                for i in range(16)
            ]
        )

        assert errors == [None] * 16
        assert sorted(e.sequence for e in results) == list(range(16))
        assert self.audit_log.verify_global() is True

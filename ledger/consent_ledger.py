"""
Consent Ledger Module
=====================
Contract store and lifecycle state machine for patient/provider consent.

Lifecycle:
    (none)  --request_consent (provider)--> PENDING
    PENDING --approve_consent (patient)-->  ACTIVE
    PENDING --revoke_consent  (patient)-->  REVOKED
    ACTIVE  --revoke_consent  (patient)-->  REVOKED
    ACTIVE  --expiry reached  (system)-->   EXPIRED (effective)

Expiry is lazy: the stored status of an expired contract still reads ACTIVE,
but every read and every transition check uses the effective status, so
callers observe EXPIRED from the expiry instant on (now >= expires_at).
Every transition appends exactly one entry to the contract's history while
the contract lock is held.
"""

from typing import Dict, List, Optional, Set

import structlog

from core.models import (
    AuditAction,
    AuditLogEntry,
    ConsentContract,
    ContractStatus,
    IdentityRole,
)
from core.exceptions import InvalidTransitionError, NotAuthorizedError
from core.utils import generate_id
from ledger.audit_log import AuditLog, seal_entry
from ledger.identity_registry import IdentityRegistry
from ledger.store import LedgerStore

logger = structlog.get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[ContractStatus, Set[ContractStatus]] = {
    ContractStatus.PENDING: {ContractStatus.ACTIVE, ContractStatus.REVOKED},
    ContractStatus.ACTIVE: {ContractStatus.REVOKED, ContractStatus.EXPIRED},
    ContractStatus.REVOKED: set(),
    ContractStatus.EXPIRED: set(),
}


def check_transition(
    contract_id: str,
    current: ContractStatus,
    target: ContractStatus,
) -> None:
    """
    Raises:
        InvalidTransitionError: If `current -> target` is not in the state table.
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(contract_id, current.value, target.value)


class ConsentLedger:
    """
    Issues, approves and revokes consent contracts.

    Providers only request and read; only the consenting patient can move a
    contract to ACTIVE or REVOKED.
    """

    def __init__(
        self,
        store: LedgerStore,
        identity_registry: IdentityRegistry,
        audit_log: Optional[AuditLog] = None,
    ):
        """
        Initialize consent ledger.

        Args:
            store: Ledger store holding contracts.
            identity_registry: Registry used to validate actors.
            audit_log: Audit log (created from store if None).
        """
        self.store = store
        self.identity_registry = identity_registry
        self.audit_log = audit_log or AuditLog(store)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def request_consent(
        self,
        provider_id: str,
        patient_id: str,
        purpose: str,
        duration_days: Optional[int] = None,
    ) -> str:
        """
        Open a PENDING consent request.

        Duplicate requests for the same (patient, provider, purpose) are
        allowed; each one is an independent contract.

        Args:
            provider_id: Requesting provider.
            patient_id: Patient whose records are requested.
            purpose: Stated purpose of access.
            duration_days: Validity once approved (configured default if None).

        Returns:
            The new contract id.

        Raises:
            IdentityNotFoundError: If either party is not registered.
            IdentitySuspendedError: If either party is suspended.
            NotAuthorizedError: If the roles do not match provider/patient.
            ValueError: If the duration is out of range or the purpose blank.
        """
        provider = self.identity_registry.require_active(provider_id)
        patient = self.identity_registry.require_active(patient_id)

        if provider.role != IdentityRole.PROVIDER:
            raise NotAuthorizedError(provider_id, "only providers may request consent")
        if patient.role != IdentityRole.PATIENT:
            raise NotAuthorizedError(provider_id, f"{patient_id} is not a patient")

        config = self.store.config
        if duration_days is None:
            duration_days = config.default_duration_days
        if not 1 <= duration_days <= config.max_duration_days:
            raise ValueError(
                f"duration_days must be between 1 and {config.max_duration_days}, "
                f"got {duration_days}"
            )

        contract = ConsentContract(
            contract_id=generate_id("con"),
            patient_id=patient_id,
            provider_id=provider_id,
            purpose=purpose,
            status=ContractStatus.PENDING,
            created_at=self.store.now(),
            duration_days=duration_days,
        )
        self._append_history(
            contract,
            AuditAction.REQUEST,
            provider_id,
            details=f"purpose: {contract.purpose}; duration_days: {duration_days}",
        )
        self.store.add_contract(contract)

        logger.info(
            "Consent requested",
            contract_id=contract.contract_id,
            provider_id=provider_id,
            patient_id=patient_id,
            purpose=contract.purpose,
            duration_days=duration_days,
        )
        return contract.contract_id

    def approve_consent(
        self,
        contract_id: str,
        patient_id: str,
    ) -> ConsentContract:
        """
        Approve a PENDING contract, starting its validity window.

        An older contract still ACTIVE for the same (patient, provider,
        purpose) is superseded (revoked) in the same operation.

        Returns:
            Snapshot of the approved contract.

        Raises:
            ContractNotFoundError: If the contract does not exist.
            NotAuthorizedError: If `patient_id` is not the contract's patient.
            IdentitySuspendedError: If the patient is suspended.
            InvalidTransitionError: If the contract is not PENDING, or an
                active contract exists and supersession is disabled.
        """
        contract = self._authorize_patient(contract_id, patient_id)

        with self.store.consent_lock(contract.consent_key):
            with self.store.contract_lock(contract_id):
                now = self.store.now()
                current = contract.effective_status(now)
                check_transition(contract_id, current, ContractStatus.ACTIVE)

                siblings = self._active_siblings(contract)
                if siblings and not self.store.config.supersede_on_approve:
                    raise InvalidTransitionError(
                        contract_id,
                        current.value,
                        ContractStatus.ACTIVE.value,
                        reason=f"contract {siblings[0].contract_id} is already active",
                    )
                for sibling in siblings:
                    self._supersede(sibling, contract_id, patient_id)

                contract.activate(now)
                self._append_history(
                    contract,
                    AuditAction.APPROVE,
                    patient_id,
                    details=f"expires_at: {contract.expires_at.isoformat()}",
                )
                snapshot = self._copy(contract)

        logger.info(
            "Consent approved",
            contract_id=contract_id,
            patient_id=patient_id,
            expires_at=snapshot.expires_at.isoformat(),
            superseded=[s.contract_id for s in siblings],
        )
        return snapshot

    def revoke_consent(
        self,
        contract_id: str,
        patient_id: str,
        expected_status: Optional[ContractStatus] = None,
    ) -> ConsentContract:
        """
        Revoke a PENDING or ACTIVE contract. Revocation is terminal.

        The revocation is a compare-and-swap: it applies only if the contract
        is still in the status it had when the call arrived (or in
        `expected_status`, when given). A revoke that overlaps an approval of
        the same PENDING contract therefore fails if the approval lands first.

        Args:
            contract_id: Contract to revoke.
            patient_id: Patient performing the revocation.
            expected_status: Status the contract must still be in; defaults
                to the status observed on entry.

        Returns:
            Snapshot of the revoked contract.

        Raises:
            ContractNotFoundError: If the contract does not exist.
            NotAuthorizedError: If `patient_id` is not the contract's patient.
            IdentitySuspendedError: If the patient is suspended.
            InvalidTransitionError: If already REVOKED or EXPIRED, or the
                status changed before the revocation could be applied.
        """
        contract = self._authorize_patient(contract_id, patient_id)
        if expected_status is None:
            # Observed without the lock; re-checked once the lock is held
            expected_status = contract.effective_status(self.store.now())

        with self.store.contract_lock(contract_id):
            current = contract.effective_status(self.store.now())
            if current != expected_status:
                raise InvalidTransitionError(
                    contract_id,
                    current.value,
                    ContractStatus.REVOKED.value,
                    reason=f"expected {expected_status.value}",
                )
            check_transition(contract_id, current, ContractStatus.REVOKED)

            contract.status = ContractStatus.REVOKED
            self._append_history(contract, AuditAction.REVOKE, patient_id)
            snapshot = self._copy(contract)

        logger.info(
            "Consent revoked",
            contract_id=contract_id,
            patient_id=patient_id,
            previous_status=current.value,
        )
        return snapshot

    def respond_to_request(
        self,
        contract_id: str,
        patient_id: str,
        approved: bool,
    ) -> ConsentContract:
        """
        Answer a pending request: approve it, or decline it (revoke while
        still PENDING). Declining never revokes a contract that another call
        approved in the meantime.
        """
        if approved:
            return self.approve_consent(contract_id, patient_id)
        return self.revoke_consent(
            contract_id, patient_id, expected_status=ContractStatus.PENDING
        )

    def expire_if_needed(self, contract: ConsentContract) -> ContractStatus:
        """
        Effective status of a contract at the current time.

        The stored status is left untouched; an ACTIVE contract past its
        expiry is reported as EXPIRED.
        """
        effective = contract.effective_status(self.store.now())
        if effective != contract.status:
            logger.debug(
                "Consent expired",
                contract_id=contract.contract_id,
                expires_at=contract.expires_at.isoformat(),
            )
        return effective

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_contract(self, contract_id: str) -> ConsentContract:
        """
        Raises:
            ContractNotFoundError: If the contract does not exist.
        """
        return self._copy(self.store.get_contract(contract_id))

    def get_contracts_for_provider(self, provider_id: str) -> List[ConsentContract]:
        """All contracts requested by a provider, most recent first."""
        return self._query(lambda c: c.provider_id == provider_id)

    def get_contracts_for_patient(self, patient_id: str) -> List[ConsentContract]:
        """All contracts concerning a patient, most recent first."""
        return self._query(lambda c: c.patient_id == patient_id)

    def get_pending_requests(self, patient_id: str) -> List[ConsentContract]:
        """Requests awaiting the patient's answer."""
        return [
            c for c in self.get_contracts_for_patient(patient_id)
            if c.status == ContractStatus.PENDING
        ]

    def get_active_permissions(self, patient_id: str) -> List[ConsentContract]:
        """Contracts currently authorizing access to the patient's records."""
        return [
            c for c in self.get_contracts_for_patient(patient_id)
            if c.status == ContractStatus.ACTIVE
        ]

    def find_active_contract(
        self, provider_id: str, patient_id: str
    ) -> Optional[ConsentContract]:
        """Most recent effectively ACTIVE contract for the pair, if any."""
        for contract in self._query(
            lambda c: c.provider_id == provider_id and c.patient_id == patient_id
        ):
            if contract.status == ContractStatus.ACTIVE:
                return contract
        return None

    def record_access(
        self,
        provider_id: str,
        patient_id: str,
        details: Optional[str] = None,
    ) -> Optional[str]:
        """
        Append an ACCESS entry to the most recent effectively ACTIVE contract
        for the pair. The activity check and the append happen under the
        contract lock.

        Returns:
            Id of the contract that recorded the access, or None if no
            contract was active at append time.
        """
        candidates = self._ordered(
            c for c in self.store.contracts()
            if c.provider_id == provider_id and c.patient_id == patient_id
        )
        for contract in candidates:
            with self.store.contract_lock(contract.contract_id):
                if not contract.is_effectively_active(self.store.now()):
                    continue
                self._append_history(
                    contract, AuditAction.ACCESS, provider_id, details=details
                )
                return contract.contract_id
        return None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _authorize_patient(self, contract_id: str, patient_id: str) -> ConsentContract:
        contract = self.store.get_contract(contract_id)
        if contract.patient_id != patient_id:
            logger.warning(
                "Consent transition by non-owner rejected",
                contract_id=contract_id,
                actor_id=patient_id,
            )
            raise NotAuthorizedError(
                patient_id,
                "only the consenting patient may change this contract",
                contract_id=contract_id,
            )
        self.identity_registry.require_active(patient_id)
        return contract

    def _active_siblings(self, contract: ConsentContract) -> List[ConsentContract]:
        """Other effectively ACTIVE contracts with the same consent key."""
        siblings = []
        for other in self.store.contracts():
            if (
                other.contract_id == contract.contract_id
                or other.consent_key != contract.consent_key
            ):
                continue
            with self.store.contract_lock(other.contract_id):
                if other.is_effectively_active(self.store.now()):
                    siblings.append(other)
        return siblings

    def _supersede(
        self, sibling: ConsentContract, new_contract_id: str, patient_id: str
    ) -> None:
        with self.store.contract_lock(sibling.contract_id):
            current = sibling.effective_status(self.store.now())
            if current != ContractStatus.ACTIVE:
                return
            check_transition(sibling.contract_id, current, ContractStatus.REVOKED)
            sibling.status = ContractStatus.REVOKED
            self._append_history(
                sibling,
                AuditAction.REVOKE,
                patient_id,
                details=f"superseded by {new_contract_id}",
            )
        logger.info(
            "Consent superseded",
            contract_id=sibling.contract_id,
            superseded_by=new_contract_id,
        )

    def _append_history(
        self,
        contract: ConsentContract,
        action: AuditAction,
        actor_id: str,
        details: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = seal_entry(
            sequence=len(contract.history),
            action=action,
            actor_id=actor_id,
            previous_hash=contract.head_hash(self.store.config.hash_algorithm),
            timestamp=self.store.now(),
            details=details,
            contract_id=contract.contract_id,
            algorithm=self.store.config.hash_algorithm,
        )
        contract.history.append(entry)
        return entry

    def _copy(self, contract: ConsentContract) -> ConsentContract:
        """Deep copy reporting the effective status, taken under the contract lock."""
        with self.store.contract_lock(contract.contract_id):
            snapshot = contract.model_copy(deep=True)
        snapshot.status = self.expire_if_needed(snapshot)
        return snapshot

    def _ordered(self, contracts) -> List[ConsentContract]:
        """Most recent first; creation order breaks timestamp ties."""
        indexed = list(enumerate(contracts))
        indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [contract for _, contract in indexed]

    def _query(self, predicate) -> List[ConsentContract]:
        return [
            self._copy(c)
            for c in self._ordered(c for c in self.store.contracts() if predicate(c))
        ]

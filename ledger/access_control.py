"""
Access Control Engine
=====================
Answers "may provider P read patient D's records now?" and gates reads of
the off-ledger record store on that answer.

Denied reads are security events: each one appends an ALERT to the global
security log before AccessDeniedError reaches the caller.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from core.models import AuditAction, PatientRecord
from core.exceptions import AccessDeniedError, RecordsNotFoundError
from ledger.audit_log import AuditLog
from ledger.consent_ledger import ConsentLedger
from ledger.identity_registry import IdentityRegistry
from ledger.record_store import RecordStore

logger = structlog.get_logger(__name__)


@dataclass
class AccessDecision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: str
    contract_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "contract_id": self.contract_id,
        }


class AccessControlEngine:
    """
    Authorization predicate and guarded record access.
    """

    def __init__(
        self,
        identity_registry: IdentityRegistry,
        consent_ledger: ConsentLedger,
        record_store: RecordStore,
        audit_log: Optional[AuditLog] = None,
    ):
        """
        Initialize access control engine.

        Args:
            identity_registry: Registry reporting identity status.
            consent_ledger: Ledger holding consent contracts.
            record_store: Off-ledger record store (read only).
            audit_log: Audit log for alerts (ledger's if None).
        """
        self.identity_registry = identity_registry
        self.consent_ledger = consent_ledger
        self.record_store = record_store
        self.audit_log = audit_log or consent_ledger.audit_log

    def evaluate(self, provider_id: str, patient_id: str) -> AccessDecision:
        """
        Evaluate access without side effects.

        Identity status is read fresh on every call.
        """
        if not self.identity_registry.is_active(provider_id):
            return AccessDecision(False, f"provider {provider_id} is not active")
        if not self.identity_registry.is_active(patient_id):
            return AccessDecision(False, f"patient {patient_id} is not active")

        contract = self.consent_ledger.find_active_contract(provider_id, patient_id)
        if contract is None:
            return AccessDecision(False, "no active consent contract found on the ledger")
        return AccessDecision(True, "active consent contract", contract.contract_id)

    def authorize(self, provider_id: str, patient_id: str) -> bool:
        """
        True iff both identities are ACTIVE and an unexpired ACTIVE contract
        exists for the pair. Pure predicate, safe to call repeatedly.
        """
        return self.evaluate(provider_id, patient_id).allowed

    def access_records(self, provider_id: str, patient_id: str) -> PatientRecord:
        """
        Read a patient's records on behalf of a provider.

        Returns:
            The patient's record from the off-ledger store.

        Raises:
            AccessDeniedError: If not authorized (an ALERT is logged first).
            RecordsNotFoundError: If authorized but the store holds no record.
        """
        decision = self.evaluate(provider_id, patient_id)
        if not decision.allowed:
            self._deny(provider_id, patient_id, decision.reason)

        record = self.record_store.get(patient_id)
        if record is None:
            logger.warning(
                "Authorized read found no off-ledger records",
                provider_id=provider_id,
                patient_id=patient_id,
            )
            raise RecordsNotFoundError(patient_id)

        contract_id = self.consent_ledger.record_access(
            provider_id, patient_id, details=f"read records of {patient_id}"
        )
        if contract_id is None:
            self._deny(
                provider_id, patient_id, "consent ended before access was recorded"
            )

        logger.info(
            "Records accessed",
            provider_id=provider_id,
            patient_id=patient_id,
            contract_id=contract_id,
        )
        return record

    def _deny(self, provider_id: str, patient_id: str, reason: str) -> None:
        entry = self.audit_log.append(
            AuditAction.ALERT,
            provider_id,
            details=f"Unauthorized access attempt on {patient_id}: {reason}",
        )
        logger.warning(
            "Access denied",
            provider_id=provider_id,
            patient_id=patient_id,
            reason=reason,
            alert_sequence=entry.sequence,
        )
        raise AccessDeniedError(provider_id, patient_id, reason)

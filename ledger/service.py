"""
Consent Ledger Service
======================
Operation-style facade over the ledger components. This is the entire
data-access surface of the presentation layer (patient, provider and admin
portals): every call takes and returns plain data, and no caller touches
ledger storage directly.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from config.config_loader import get_bootstrap_data, get_ledger_config
from core.models import AuditAction, AuditFilter
from core.exceptions import AuditIntegrityError
from ledger.access_control import AccessControlEngine
from ledger.audit_log import AuditLog
from ledger.bootstrap import load_bootstrap
from ledger.consent_ledger import ConsentLedger
from ledger.identity_registry import IdentityRegistry
from ledger.record_store import InMemoryRecordStore, RecordStore
from ledger.store import LedgerStore

logger = structlog.get_logger(__name__)


class ConsentLedgerService:
    """
    Wires one ledger store to its registry, audit log, consent ledger and
    access control engine, and exposes their operations.
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        record_store: Optional[RecordStore] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Ledger store (fresh default store if None).
            record_store: Off-ledger record store (empty in-memory store if None).
        """
        self.store = store or LedgerStore()
        self.record_store = record_store or InMemoryRecordStore()
        self.audit_log = AuditLog(self.store)
        self.identity_registry = IdentityRegistry(self.store, self.audit_log)
        self.consent_ledger = ConsentLedger(
            self.store, self.identity_registry, self.audit_log
        )
        self.access_control = AccessControlEngine(
            self.identity_registry,
            self.consent_ledger,
            self.record_store,
            self.audit_log,
        )

    @classmethod
    def from_config(
        cls,
        config_path: Optional[str] = None,
        seed: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ConsentLedgerService":
        """
        Build a service from config.yaml.

        Args:
            config_path: Explicit config file (search order if None).
            seed: Load the bootstrap network from the config.
            clock: Optional clock for the ledger store.
        """
        store = LedgerStore(get_ledger_config(config_path), clock=clock)
        service = cls(store=store)
        if seed:
            if not isinstance(service.record_store, InMemoryRecordStore):
                raise TypeError("Seeding requires an in-memory record store")
            load_bootstrap(
                service.identity_registry,
                service.record_store,
                get_bootstrap_data(config_path),
            )
        return service

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    def register_identity(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.identity_registry.register(payload).model_dump(mode="json")

    def get_all_users(self) -> List[Dict[str, Any]]:
        return _dump(self.identity_registry.list_all())

    def suspend_user(self, user_id: str, admin_id: str) -> Dict[str, Any]:
        return self.identity_registry.suspend(user_id, admin_id).model_dump(mode="json")

    def reinstate_user(self, user_id: str, admin_id: str) -> Dict[str, Any]:
        return self.identity_registry.reinstate(user_id, admin_id).model_dump(mode="json")

    def get_security_logs(
        self,
        actor_id: Optional[str] = None,
        actions: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Global security log, oldest first, optionally filtered."""
        audit_filter = AuditFilter(
            actor_id=actor_id,
            actions={AuditAction(a) for a in actions} if actions else None,
            since=since,
            until=until,
        )
        return _dump(self.audit_log.query_global(audit_filter))

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the security log and every contract history.

        Returns:
            Report with overall validity and any broken chains.
        """
        errors = []
        try:
            self.audit_log.verify_global()
        except AuditIntegrityError as e:
            errors.append(e.to_dict())

        contracts = self.store.contracts()
        for contract in contracts:
            try:
                self.audit_log.verify_contract(contract.contract_id)
            except AuditIntegrityError as e:
                errors.append(e.to_dict())

        if errors:
            logger.warning("Audit integrity check failed", broken_chains=len(errors))
        return {
            "valid": not errors,
            "security_log_entries": len(self.store.security_log),
            "contracts_checked": len(contracts),
            "errors": errors,
        }

    def get_stats(self) -> Dict[str, int]:
        """Counts of identities, contracts and security log entries."""
        return self.store.stats()

    # -------------------------------------------------------------------------
    # Provider
    # -------------------------------------------------------------------------

    def request_consent(
        self,
        provider_id: str,
        patient_id: str,
        purpose: str,
        duration_days: Optional[int] = None,
    ) -> str:
        return self.consent_ledger.request_consent(
            provider_id, patient_id, purpose, duration_days
        )

    def get_provider_contracts(self, provider_id: str) -> List[Dict[str, Any]]:
        return _dump(self.consent_ledger.get_contracts_for_provider(provider_id))

    def authorize(self, provider_id: str, patient_id: str) -> bool:
        return self.access_control.authorize(provider_id, patient_id)

    def access_records(self, provider_id: str, patient_id: str) -> Dict[str, Any]:
        return self.access_control.access_records(provider_id, patient_id).model_dump(
            mode="json"
        )

    # -------------------------------------------------------------------------
    # Patient
    # -------------------------------------------------------------------------

    def get_patient_contracts(self, patient_id: str) -> List[Dict[str, Any]]:
        return _dump(self.consent_ledger.get_contracts_for_patient(patient_id))

    def get_pending_requests(self, patient_id: str) -> List[Dict[str, Any]]:
        return _dump(self.consent_ledger.get_pending_requests(patient_id))

    def get_active_permissions(self, patient_id: str) -> List[Dict[str, Any]]:
        return _dump(self.consent_ledger.get_active_permissions(patient_id))

    def approve_consent(self, contract_id: str, patient_id: str) -> Dict[str, Any]:
        return self.consent_ledger.approve_consent(contract_id, patient_id).model_dump(
            mode="json"
        )

    def revoke_consent(self, contract_id: str, patient_id: str) -> Dict[str, Any]:
        return self.consent_ledger.revoke_consent(contract_id, patient_id).model_dump(
            mode="json"
        )

    def respond_to_request(
        self, contract_id: str, patient_id: str, approved: bool
    ) -> Dict[str, Any]:
        return self.consent_ledger.respond_to_request(
            contract_id, patient_id, approved
        ).model_dump(mode="json")

    def get_contract_history(self, contract_id: str) -> List[Dict[str, Any]]:
        return _dump(self.audit_log.query_for_contract(contract_id))


def _dump(models) -> List[Dict[str, Any]]:
    return [m.model_dump(mode="json") for m in models]

"""
Consent Ledger & Access Control Engine
======================================
Simulated permissioned ledger for patient/provider data-sharing consent:
identity registry, hash-chained audit log, consent contract state machine
and the access control engine gating off-ledger record reads.
"""

from .store import LedgerStore
from .audit_log import AuditChain, AuditLog, seal_entry, verify_chain
from .identity_registry import IdentityRegistry
from .consent_ledger import ALLOWED_TRANSITIONS, ConsentLedger, check_transition
from .record_store import RecordStore, InMemoryRecordStore
from .access_control import AccessControlEngine, AccessDecision
from .bootstrap import load_bootstrap
from .service import ConsentLedgerService

__all__ = [
    # State
    "LedgerStore",
    # Audit
    "AuditChain",
    "AuditLog",
    "seal_entry",
    "verify_chain",
    # Identities
    "IdentityRegistry",
    # Consent
    "ALLOWED_TRANSITIONS",
    "ConsentLedger",
    "check_transition",
    # Records
    "RecordStore",
    "InMemoryRecordStore",
    # Access control
    "AccessControlEngine",
    "AccessDecision",
    # Facade
    "load_bootstrap",
    "ConsentLedgerService",
]

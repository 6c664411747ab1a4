"""
Consent Ledger Core Module
==========================
Data models, exceptions and utilities shared by the ledger components.
"""

from .models import (
    AuditAction,
    AuditFilter,
    AuditLogEntry,
    ConsentContract,
    ContractStatus,
    IdentityRole,
    IdentityStatus,
    LedgerConfig,
    LoggingConfig,
    NetworkIdentity,
    PatientRecord,
)
from .exceptions import (
    LedgerError,
    IdentityNotFoundError,
    IdentitySuspendedError,
    DuplicateIdentityError,
    ContractNotFoundError,
    NotAuthorizedError,
    InvalidTransitionError,
    AccessDeniedError,
    RecordsNotFoundError,
    AuditIntegrityError,
    ConfigurationError,
)
from .utils import setup_logging, compute_hash, generate_id, genesis_hash

__all__ = [
    # Models
    "AuditAction",
    "AuditFilter",
    "AuditLogEntry",
    "ConsentContract",
    "ContractStatus",
    "IdentityRole",
    "IdentityStatus",
    "LedgerConfig",
    "LoggingConfig",
    "NetworkIdentity",
    "PatientRecord",
    # Exceptions
    "LedgerError",
    "IdentityNotFoundError",
    "IdentitySuspendedError",
    "DuplicateIdentityError",
    "ContractNotFoundError",
    "NotAuthorizedError",
    "InvalidTransitionError",
    "AccessDeniedError",
    "RecordsNotFoundError",
    "AuditIntegrityError",
    "ConfigurationError",
    # Utilities
    "setup_logging",
    "compute_hash",
    "generate_id",
    "genesis_hash",
]

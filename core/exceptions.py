"""
Consent Ledger Exceptions
=========================
Custom exception classes for the consent ledger and access control engine.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all consent ledger errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


# =============================================================================
# Identity Registry Exceptions
# =============================================================================


class IdentityError(LedgerError):
    """Base exception for identity registry errors."""

    def __init__(self, message: str, identity_id: str, error_code: str):
        super().__init__(
            message,
            error_code=error_code,
            details={"identity_id": identity_id},
        )
        self.identity_id = identity_id


class IdentityNotFoundError(IdentityError):
    """Exception raised when an identity is not registered."""

    def __init__(self, identity_id: str):
        super().__init__(
            f"Identity not found: {identity_id}",
            identity_id=identity_id,
            error_code="IDENTITY_NOT_FOUND",
        )


class IdentitySuspendedError(IdentityError):
    """Exception raised when a suspended identity attempts an operation."""

    def __init__(self, identity_id: str):
        super().__init__(
            f"Identity is suspended: {identity_id}",
            identity_id=identity_id,
            error_code="IDENTITY_SUSPENDED",
        )


class DuplicateIdentityError(IdentityError):
    """Exception raised when registering an identity id twice."""

    def __init__(self, identity_id: str):
        super().__init__(
            f"Identity already registered: {identity_id}",
            identity_id=identity_id,
            error_code="DUPLICATE_IDENTITY",
        )


# =============================================================================
# Consent Contract Exceptions
# =============================================================================


class ContractError(LedgerError):
    """Base exception for consent contract errors."""

    pass


class ContractNotFoundError(ContractError):
    """Exception raised when a consent contract does not exist."""

    def __init__(self, contract_id: str):
        super().__init__(
            f"Consent contract not found: {contract_id}",
            error_code="CONTRACT_NOT_FOUND",
            details={"contract_id": contract_id},
        )
        self.contract_id = contract_id


class NotAuthorizedError(ContractError):
    """Exception raised when the acting identity may not perform an operation."""

    def __init__(
        self,
        actor_id: str,
        reason: str,
        contract_id: Optional[str] = None,
    ):
        super().__init__(
            f"{actor_id} is not authorized: {reason}",
            error_code="NOT_AUTHORIZED",
            details={
                "actor_id": actor_id,
                "contract_id": contract_id,
                "reason": reason,
            },
        )
        self.actor_id = actor_id
        self.contract_id = contract_id
        self.reason = reason


class InvalidTransitionError(ContractError):
    """Exception raised when a contract is not in the required source state."""

    def __init__(
        self,
        contract_id: str,
        current_status: str,
        target_status: str,
        reason: Optional[str] = None,
    ):
        message = (
            f"Cannot move contract {contract_id} from {current_status} "
            f"to {target_status}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            error_code="INVALID_TRANSITION",
            details={
                "contract_id": contract_id,
                "current_status": current_status,
                "target_status": target_status,
                "reason": reason,
            },
        )
        self.contract_id = contract_id
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason


# =============================================================================
# Access Control Exceptions
# =============================================================================


class AccessError(LedgerError):
    """Base exception for record access errors."""

    pass


class AccessDeniedError(AccessError):
    """Exception raised when the authorization predicate is false."""

    def __init__(self, provider_id: str, patient_id: str, reason: str):
        super().__init__(
            f"Access Denied: {provider_id} may not read records of "
            f"{patient_id} ({reason})",
            error_code="ACCESS_DENIED",
            details={
                "provider_id": provider_id,
                "patient_id": patient_id,
                "reason": reason,
            },
        )
        self.provider_id = provider_id
        self.patient_id = patient_id
        self.reason = reason


class RecordsNotFoundError(AccessError):
    """Exception raised when an authorized read finds no off-ledger records."""

    def __init__(self, patient_id: str):
        super().__init__(
            f"Records not found off-ledger for patient {patient_id}",
            error_code="RECORDS_NOT_FOUND",
            details={"patient_id": patient_id},
        )
        self.patient_id = patient_id


# =============================================================================
# Audit Exceptions
# =============================================================================


class AuditError(LedgerError):
    """Base exception for audit log errors."""

    pass


class AuditIntegrityError(AuditError):
    """Exception raised when an audit hash chain fails verification."""

    def __init__(self, sequence: int, reason: str, contract_id: Optional[str] = None):
        super().__init__(
            f"Audit chain broken at entry {sequence}: {reason}",
            error_code="AUDIT_INTEGRITY",
            details={
                "sequence": sequence,
                "reason": reason,
                "contract_id": contract_id,
            },
        )
        self.sequence = sequence
        self.reason = reason
        self.contract_id = contract_id


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationError(LedgerError):
    """Exception raised for configuration errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            message,
            error_code="CONFIGURATION_ERROR",
            details={"config_key": config_key},
        )

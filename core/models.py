"""
Consent Ledger Data Models
==========================
Pydantic models for the identities, consent contracts, audit entries and
off-ledger records handled by the consent ledger.
"""

import hashlib
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.utils import genesis_hash


# =============================================================================
# Enums
# =============================================================================


class IdentityRole(str, Enum):
    """Roles of network participants."""

    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"


class IdentityStatus(str, Enum):
    """Status of a network identity."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class ContractStatus(str, Enum):
    """Status of a consent contract."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class AuditAction(str, Enum):
    """Kinds of audit log entries."""

    REQUEST = "REQUEST"
    APPROVE = "APPROVE"
    REVOKE = "REVOKE"
    ACCESS = "ACCESS"
    ALERT = "ALERT"
    ADMIN_ACTION = "ADMIN_ACTION"


# Older clients enrolled providers as "doctor"
ROLE_ALIASES = {"doctor": IdentityRole.PROVIDER.value}

# Anchor of a default (sha256) chain
GENESIS_HASH = genesis_hash("sha256")


# =============================================================================
# Identity Models
# =============================================================================


class NetworkIdentity(BaseModel):
    """
    Registered participant of the permissioned consent network.

    Identities are never deleted; suspension is the terminal negative state
    and is only changed by admin suspend/reinstate actions.
    """

    id: str = Field(..., min_length=1, description="Unique identity identifier")
    role: IdentityRole = Field(..., description="Participant role")
    organization: str = Field(..., min_length=1, description="Member organization")
    public_key: str = Field(default="", description="Enrolled public key")
    status: IdentityStatus = Field(default=IdentityStatus.ACTIVE)
    enrolled_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("id", "organization")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> Any:
        """Accept legacy role names and mixed case."""
        if isinstance(v, str):
            v = v.strip().lower()
            return ROLE_ALIASES.get(v, v)
        return v

    def is_active(self) -> bool:
        """Check if identity may act on the ledger."""
        return self.status == IdentityStatus.ACTIVE


# =============================================================================
# Audit Models
# =============================================================================


class AuditLogEntry(BaseModel):
    """
    Immutable, hash-chained audit entry.

    Belongs either to one contract's history or to the global security log.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=0, description="Position within its chain")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    action: AuditAction = Field(...)
    actor_id: str = Field(..., min_length=1)
    details: Optional[str] = Field(default=None)
    contract_id: Optional[str] = Field(default=None)
    previous_hash: str = Field(default=GENESIS_HASH)
    integrity_hash: str = Field(..., min_length=1)

    def hash_payload(self) -> Dict[str, Any]:
        """Fields covered by the integrity hash."""
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "actor_id": self.actor_id,
            "details": self.details,
            "contract_id": self.contract_id,
            "previous_hash": self.previous_hash,
        }

    def to_log_entry(self) -> dict:
        """Convert to structured log entry."""
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "actor_id": self.actor_id,
            "details": self.details,
            "contract_id": self.contract_id,
            "integrity_hash": self.integrity_hash,
        }


class AuditFilter(BaseModel):
    """Filter for audit queries. `since` is inclusive, `until` exclusive."""

    actor_id: Optional[str] = Field(default=None)
    actions: Optional[Set[AuditAction]] = Field(default=None)
    since: Optional[datetime] = Field(default=None)
    until: Optional[datetime] = Field(default=None)

    @model_validator(mode="after")
    def check_range(self) -> "AuditFilter":
        if self.since and self.until and self.until < self.since:
            raise ValueError("until must not be earlier than since")
        return self

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.actor_id is not None and entry.actor_id != self.actor_id:
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp >= self.until:
            return False
        return True


# =============================================================================
# Consent Models
# =============================================================================


class ConsentContract(BaseModel):
    """
    Consent authorizing one provider to access one patient's records for a
    stated purpose, for a bounded time.

    Owned by the consent ledger; callers only ever receive copies.
    """

    contract_id: str = Field(..., min_length=1, description="Unique contract identifier")
    patient_id: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)
    purpose: str = Field(..., min_length=1, description="Stated purpose of access")
    status: ContractStatus = Field(default=ContractStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    duration_days: int = Field(default=30, ge=1, description="Requested duration")
    approved_at: Optional[datetime] = Field(default=None)
    expires_at: Optional[datetime] = Field(default=None)
    history: List[AuditLogEntry] = Field(default_factory=list)

    @field_validator("purpose")
    @classmethod
    def strip_purpose(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("purpose must not be blank")
        return v

    @property
    def consent_key(self) -> str:
        return f"{self.patient_id}|{self.provider_id}|{self.purpose}"

    def head_hash(self, algorithm: str = "sha256") -> str:
        """Integrity hash the next history entry chains to."""
        if self.history:
            return self.history[-1].integrity_hash
        return genesis_hash(algorithm)

    def effective_status(self, now: datetime) -> ContractStatus:
        """Status after applying expiry: ACTIVE contracts expire at now >= expires_at."""
        if (
            self.status == ContractStatus.ACTIVE
            and self.expires_at is not None
            and now >= self.expires_at
        ):
            return ContractStatus.EXPIRED
        return self.status

    def is_effectively_active(self, now: datetime) -> bool:
        return self.effective_status(now) == ContractStatus.ACTIVE

    def activate(self, now: datetime) -> None:
        """Start the validity window from the originally requested duration."""
        self.status = ContractStatus.ACTIVE
        self.approved_at = now
        self.expires_at = now + timedelta(days=self.duration_days)


# =============================================================================
# Off-ledger Record Models
# =============================================================================


class PatientInfo(BaseModel):
    """Demographic header of a patient record."""

    id: str = Field(..., min_length=1)
    name: str = Field(...)
    dob: str = Field(..., description="Date of birth (ISO date)")


class Medication(BaseModel):
    name: str
    dosage: str


class Visit(BaseModel):
    date: str
    reason: str
    provider: str


class PatientRecord(BaseModel):
    """Clinical record held by the off-ledger record store."""

    patient_info: PatientInfo
    allergies: List[str] = Field(default_factory=list)
    medications: List[Medication] = Field(default_factory=list)
    recent_visits: List[Visit] = Field(default_factory=list)

    @property
    def patient_id(self) -> str:
        return self.patient_info.id


# =============================================================================
# Configuration Models
# =============================================================================


class LedgerConfig(BaseModel):
    """Configuration for the consent ledger."""

    default_duration_days: int = Field(default=30, ge=1)
    max_duration_days: int = Field(default=365, ge=1)
    hash_algorithm: str = Field(default="sha256")
    supersede_on_approve: bool = Field(default=True)

    @field_validator("hash_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        v = v.lower()
        # shake_* digests need an explicit length
        if v not in hashlib.algorithms_guaranteed or v.startswith("shake"):
            raise ValueError(f"Unsupported hash algorithm: {v}")
        return v

    @model_validator(mode="after")
    def check_durations(self) -> "LedgerConfig":
        if self.default_duration_days > self.max_duration_days:
            raise ValueError("default_duration_days exceeds max_duration_days")
        return self


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Optional[str] = Field(default=None)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in {"json", "console"}:
            raise ValueError(f"Unknown log format: {v}")
        return v

"""
Tests for Ledger Data Models
============================
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.models import (
    AuditAction,
    AuditFilter,
    ConsentContract,
    ContractStatus,
    GENESIS_HASH,
    IdentityRole,
    IdentityStatus,
    LedgerConfig,
    LoggingConfig,
    NetworkIdentity,
    PatientRecord,
)
from core.exceptions import InvalidTransitionError, LedgerError, NotAuthorizedError
from core.utils import genesis_hash
from ledger.audit_log import seal_entry


NOW = datetime(2026, 1, 1, 12, 0, 0)


class TestNetworkIdentity:
    """Tests for NetworkIdentity validation."""

    def test_defaults_to_active(self):
        """Test that new identities start ACTIVE."""
        identity = NetworkIdentity(id="pat-1", role="patient", organization="PatientOrg")
        assert identity.status == IdentityStatus.ACTIVE
        assert identity.is_active() is True

    def test_legacy_doctor_role_maps_to_provider(self):
        """Test that the doctor role is stored as provider."""
        identity = NetworkIdentity(id="prov-1", role="Doctor", organization="CityClinic")
        assert identity.role == IdentityRole.PROVIDER

    def test_unknown_role_rejected(self):
        """Test that unknown roles are rejected."""
        with pytest.raises(ValidationError):
            NetworkIdentity(id="x-1", role="nurse", organization="CityClinic")

    def test_blank_id_rejected(self):
        """Test that a blank ID is rejected."""
        with pytest.raises(ValidationError):
            NetworkIdentity(id="   ", role="patient", organization="PatientOrg")

    def test_missing_organization_rejected(self):
        """Test that organization is required."""
        with pytest.raises(ValidationError):
            NetworkIdentity.model_validate({"id": "pat-1", "role": "patient"})


class TestConsentContract:
    """Tests for contract expiry semantics."""

    def _contract(self, **kwargs):
        values = dict(
            contract_id="con-1",
            patient_id="pat-1",
            provider_id="prov-1",
            purpose="checkup",
            created_at=NOW,
            duration_days=10,
        )
        values.update(kwargs)
        return ConsentContract(**values)

    def test_activate_sets_expiry_from_duration(self):
        """Test expiry computed on activation."""
        contract = self._contract()
        contract.activate(NOW)

        assert contract.status == ContractStatus.ACTIVE
        assert contract.approved_at == NOW
        assert contract.expires_at == NOW + timedelta(days=10)

    def test_effective_status_expires_at_boundary(self):
        """Test the expiry boundary."""
        contract = self._contract()
        contract.activate(NOW)
        expiry = contract.expires_at

        assert contract.effective_status(expiry - timedelta(microseconds=1)) == ContractStatus.ACTIVE
        assert contract.effective_status(expiry) == ContractStatus.EXPIRED
        assert contract.effective_status(expiry + timedelta(days=1)) == ContractStatus.EXPIRED
        # Stored status is untouched
        assert contract.status == ContractStatus.ACTIVE

    def test_pending_never_expires(self):
        """Test that PENDING contracts do not expire."""
        contract = self._contract()
        assert contract.effective_status(NOW + timedelta(days=1000)) == ContractStatus.PENDING

    def test_blank_purpose_rejected(self):
        """Test that a blank purpose is rejected."""
        with pytest.raises(ValidationError):
            self._contract(purpose="  ")

    def test_zero_duration_rejected(self):
        """Test that a zero duration is rejected."""
        with pytest.raises(ValidationError):
            self._contract(duration_days=0)

    def test_head_hash_starts_at_genesis(self):
        """Test that an empty history chains to the genesis hash."""
        contract = self._contract()
        assert contract.head_hash() == GENESIS_HASH
        assert len(GENESIS_HASH) == 64

    def test_genesis_sized_to_algorithm(self):
        """Genesis hash should be one digest wide."""
        contract = self._contract()
        assert contract.head_hash("sha512") == "0" * 128
        assert genesis_hash("sha384") == "0" * 96


class TestAuditModels:
    """Tests for audit entries and filters."""

    def test_entries_are_immutable(self):
        """Test that sealed entries are frozen."""
        entry = seal_entry(0, AuditAction.REQUEST, "prov-1", GENESIS_HASH, NOW)
        with pytest.raises(ValidationError):
            entry.details = "edited"

    def test_filter_matches_actor_action_and_range(self):
        """Test filter matching."""
        entry = seal_entry(0, AuditAction.ALERT, "prov-2", GENESIS_HASH, NOW)

        assert AuditFilter(actor_id="prov-2").matches(entry)
        assert not AuditFilter(actor_id="prov-1").matches(entry)
        assert AuditFilter(actions={AuditAction.ALERT}).matches(entry)
        assert not AuditFilter(actions={AuditAction.ACCESS}).matches(entry)
        assert AuditFilter(since=NOW).matches(entry)
        assert not AuditFilter(until=NOW).matches(entry)
        assert AuditFilter(since=NOW, until=NOW + timedelta(seconds=1)).matches(entry)

    def test_filter_rejects_inverted_range(self):
        """Test that an inverted time range is rejected."""
        with pytest.raises(ValidationError):
            AuditFilter(since=NOW, until=NOW - timedelta(days=1))


class TestPatientRecord:
    def test_nested_payload(self):
        """Test a nested record payload."""
        record = PatientRecord.model_validate({
            "patient_info": {"id": "pat-1", "name": "Alex Johnson", "dob": "1985-04-12"},
            "allergies": ["Peanuts"],
            "medications": [{"name": "Lisinopril", "dosage": "10mg"}],
            "recent_visits": [
                {"date": "2025-10-01", "reason": "Annual Checkup", "provider": "Dr. Ada Lovelace"}
            ],
        })
        assert record.patient_id == "pat-1"
        assert record.medications[0].dosage == "10mg"


class TestConfigModels:
    def test_ledger_defaults(self):
        """Test ledger config defaults."""
        config = LedgerConfig()
        assert config.default_duration_days == 30
        assert config.hash_algorithm == "sha256"

    def test_unsupported_algorithm_rejected(self):
        """Test that unsupported hash algorithms are rejected."""
        with pytest.raises(ValidationError):
            LedgerConfig(hash_algorithm="crc32")
        with pytest.raises(ValidationError):
            LedgerConfig(hash_algorithm="shake_128")

    def test_default_duration_above_max_rejected(self):
        """Test that the default duration must fit the maximum."""
        with pytest.raises(ValidationError):
            LedgerConfig(default_duration_days=400, max_duration_days=365)

    def test_logging_level_normalized(self):
        """Test log level normalization."""
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestExceptions:
    def test_error_string_and_dict(self):
        """Test error rendering."""
        error = InvalidTransitionError("con-1", "REVOKED", "ACTIVE")
        assert str(error).startswith("[INVALID_TRANSITION]")
        data = error.to_dict()
        assert data["error_type"] == "InvalidTransitionError"
        assert data["details"]["current_status"] == "REVOKED"

    def test_hierarchy(self):
        """Test the exception hierarchy."""
        error = NotAuthorizedError("pat-2", "not the owner", contract_id="con-1")
        assert isinstance(error, LedgerError)
        assert error.details["contract_id"] == "con-1"

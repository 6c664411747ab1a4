"""
Audit Log Module
================
Append-only, hash-chained audit trail for the consent ledger.

Every entry carries an integrity hash computed over its own fields and the
hash of the entry before it, so any retroactive edit breaks the chain from
that point on. Each consent contract keeps its own chain (its history); the
global security log is a separate chain holding alerts and admin actions.
"""

import threading
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence, TYPE_CHECKING

import structlog

from core.models import AuditAction, AuditFilter, AuditLogEntry
from core.exceptions import AuditIntegrityError
from core.utils import compute_hash, genesis_hash, verify_hash

if TYPE_CHECKING:
    from ledger.store import LedgerStore

logger = structlog.get_logger(__name__)


# =============================================================================
# Chain Primitives
# =============================================================================


def seal_entry(
    sequence: int,
    action: AuditAction,
    actor_id: str,
    previous_hash: str,
    timestamp: datetime,
    details: Optional[str] = None,
    contract_id: Optional[str] = None,
    algorithm: str = "sha256",
) -> AuditLogEntry:
    """
    Build an audit entry and compute its integrity hash.

    Args:
        sequence: Position of the entry within its chain.
        action: Audit action kind.
        actor_id: Identity performing the action.
        previous_hash: Integrity hash of the preceding entry (genesis for the first).
        timestamp: Time of the action.
        details: Optional free-text details.
        contract_id: Contract the entry belongs to, if any.
        algorithm: Hash algorithm.

    Returns:
        The sealed, immutable entry.
    """
    draft = AuditLogEntry(
        sequence=sequence,
        timestamp=timestamp,
        action=action,
        actor_id=actor_id,
        details=details,
        contract_id=contract_id,
        previous_hash=previous_hash,
        integrity_hash="unsealed",
    )
    return draft.model_copy(
        update={"integrity_hash": compute_hash(draft.hash_payload(), algorithm)}
    )


def verify_chain(
    entries: Sequence[AuditLogEntry],
    algorithm: str = "sha256",
    contract_id: Optional[str] = None,
) -> bool:
    """
    Verify a hash chain end to end.

    Returns:
        True if the chain is intact.

    Raises:
        AuditIntegrityError: At the first entry that does not verify.
    """
    expected_previous = genesis_hash(algorithm)
    for position, entry in enumerate(entries):
        if entry.sequence != position:
            raise AuditIntegrityError(
                position,
                f"sequence {entry.sequence} out of order",
                contract_id=contract_id,
            )
        if entry.previous_hash != expected_previous:
            raise AuditIntegrityError(
                position, "previous hash mismatch", contract_id=contract_id
            )
        if not verify_hash(entry.hash_payload(), entry.integrity_hash, algorithm):
            raise AuditIntegrityError(
                position, "content hash mismatch", contract_id=contract_id
            )
        expected_previous = entry.integrity_hash
    return True


class AuditChain:
    """
    Thread-safe append-only sequence of hash-chained audit entries.
    """

    def __init__(
        self,
        algorithm: str = "sha256",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.algorithm = algorithm
        self._clock = clock or datetime.utcnow
        self._entries: List[AuditLogEntry] = []
        self._lock = threading.Lock()

    def append(
        self,
        action: AuditAction,
        actor_id: str,
        details: Optional[str] = None,
        contract_id: Optional[str] = None,
    ) -> AuditLogEntry:
        """Seal and store a new entry chained to the current head."""
        with self._lock:
            previous_hash = self._head()
            entry = seal_entry(
                sequence=len(self._entries),
                action=action,
                actor_id=actor_id,
                previous_hash=previous_hash,
                timestamp=self._clock(),
                details=details,
                contract_id=contract_id,
                algorithm=self.algorithm,
            )
            self._entries.append(entry)
        return entry

    def snapshot(self) -> List[AuditLogEntry]:
        """Copy of the chain as of now."""
        with self._lock:
            return list(self._entries)

    def verify(self) -> bool:
        return verify_chain(self.snapshot(), self.algorithm)

    @property
    def head_hash(self) -> str:
        with self._lock:
            return self._head()

    def _head(self) -> str:
        if self._entries:
            return self._entries[-1].integrity_hash
        return genesis_hash(self.algorithm)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Audit Log
# =============================================================================


class AuditLog:
    """
    Query and append interface over the ledger's audit trails.

    Appends go to the global security log; contract histories are appended
    by the consent ledger as part of each transition and read back here.
    """

    def __init__(self, store: "LedgerStore"):
        """
        Initialize audit log.

        Args:
            store: Ledger store holding the security log and contracts.
        """
        self.store = store

    def append(
        self,
        action: AuditAction,
        actor_id: str,
        details: Optional[str] = None,
        contract_id: Optional[str] = None,
    ) -> AuditLogEntry:
        """
        Append an entry to the global security log.

        Args:
            action: Audit action kind.
            actor_id: Identity performing the action.
            details: Optional free-text details.
            contract_id: Related contract, if any.

        Returns:
            The stored entry with its integrity hash.
        """
        entry = self.store.security_log.append(
            action=action,
            actor_id=actor_id,
            details=details,
            contract_id=contract_id,
        )
        log_method = logger.warning if entry.action == AuditAction.ALERT else logger.info
        log_method("Security log entry appended", **entry.to_log_entry())
        return entry

    def query_global(
        self,
        audit_filter: Optional[AuditFilter] = None,
        **filters,
    ) -> Iterator[AuditLogEntry]:
        """
        Lazily iterate the global log in insertion order.

        Each call works on a fresh snapshot, so iterating one result never
        sees entries appended after the call and never disturbs another.

        Args:
            audit_filter: Optional prepared filter.
            **filters: Filter fields (actor_id, actions, since, until) used
                when no prepared filter is given.
        """
        if audit_filter is None and filters:
            audit_filter = AuditFilter(**filters)
        snapshot = self.store.security_log.snapshot()
        return (
            entry
            for entry in snapshot
            if audit_filter is None or audit_filter.matches(entry)
        )

    def query_for_contract(self, contract_id: str) -> List[AuditLogEntry]:
        """
        Get the ordered history of a contract.

        Raises:
            ContractNotFoundError: If the contract does not exist.
        """
        contract = self.store.get_contract(contract_id)
        with self.store.contract_lock(contract_id):
            return list(contract.history)

    def verify_global(self) -> bool:
        """Verify the global security log chain."""
        return self.store.security_log.verify()

    def verify_contract(self, contract_id: str) -> bool:
        """Verify one contract's history chain."""
        return verify_chain(
            self.query_for_contract(contract_id),
            self.store.config.hash_algorithm,
            contract_id=contract_id,
        )

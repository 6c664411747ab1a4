"""
Ledger State Store
==================
Explicit in-memory state for one consent ledger instance.

A store is constructed once per process (or per test) and passed by
reference to the identity registry, audit log, consent ledger and access
control engine. It owns the key spaces (identities by id, contracts by
contract id, the global security log as an ordered chain) and the lock
table used to serialize mutations.
"""

import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from core.models import ConsentContract, LedgerConfig, NetworkIdentity
from core.exceptions import ContractNotFoundError, IdentityNotFoundError
from ledger.audit_log import AuditChain

logger = structlog.get_logger(__name__)


class LedgerStore:
    """Thread-safe container for ledger state."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize ledger store.

        Args:
            config: Ledger configuration (defaults if None).
            clock: Callable returning the current UTC time. Injectable so
                   expiry can be exercised deterministically.
        """
        self.config = config or LedgerConfig()
        self.clock = clock or datetime.utcnow

        self._identities: Dict[str, NetworkIdentity] = {}
        self._contracts: Dict[str, ConsentContract] = {}
        self.security_log = AuditChain(
            algorithm=self.config.hash_algorithm, clock=self.clock
        )

        # Guards insertion into and iteration over the key spaces
        self._index_lock = threading.Lock()
        # Named per-entity locks, created on demand
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        logger.debug(
            "Ledger store created",
            hash_algorithm=self.config.hash_algorithm,
            default_duration_days=self.config.default_duration_days,
        )

    def now(self) -> datetime:
        return self.clock()

    # -------------------------------------------------------------------------
    # Locks
    # -------------------------------------------------------------------------

    def lock_for(self, key: str) -> threading.RLock:
        """Get (or create) the lock serializing mutations of `key`."""
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def contract_lock(self, contract_id: str) -> threading.RLock:
        return self.lock_for(f"contract:{contract_id}")

    def identity_lock(self, identity_id: str) -> threading.RLock:
        return self.lock_for(f"identity:{identity_id}")

    def consent_lock(self, consent_key: str) -> threading.RLock:
        return self.lock_for(f"consent:{consent_key}")

    # -------------------------------------------------------------------------
    # Identities
    # -------------------------------------------------------------------------

    def add_identity(self, identity: NetworkIdentity) -> bool:
        """Insert an identity. Returns False if the id is already taken."""
        with self._index_lock:
            if identity.id in self._identities:
                return False
            self._identities[identity.id] = identity
            return True

    def get_identity(self, identity_id: str) -> NetworkIdentity:
        """
        Get the stored identity object.

        Raises:
            IdentityNotFoundError: If the id is not registered.
        """
        with self._index_lock:
            identity = self._identities.get(identity_id)
        if identity is None:
            raise IdentityNotFoundError(identity_id)
        return identity

    def has_identity(self, identity_id: str) -> bool:
        with self._index_lock:
            return identity_id in self._identities

    def identities(self) -> List[NetworkIdentity]:
        """Stored identities in enrollment order."""
        with self._index_lock:
            return list(self._identities.values())

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def add_contract(self, contract: ConsentContract) -> None:
        with self._index_lock:
            if contract.contract_id in self._contracts:
                raise ValueError(f"Contract id collision: {contract.contract_id}")
            self._contracts[contract.contract_id] = contract

    def get_contract(self, contract_id: str) -> ConsentContract:
        """
        Get the stored contract object.

        Raises:
            ContractNotFoundError: If the contract does not exist.
        """
        with self._index_lock:
            contract = self._contracts.get(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def contracts(self) -> List[ConsentContract]:
        """Stored contracts in creation order."""
        with self._index_lock:
            return list(self._contracts.values())

    def stats(self) -> Dict[str, int]:
        with self._index_lock:
            return {
                "identities": len(self._identities),
                "contracts": len(self._contracts),
                "security_log_entries": len(self.security_log),
            }

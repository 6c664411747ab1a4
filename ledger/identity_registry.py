"""
Identity Registry Module
========================
Registry of network participants (patients, providers, admins) and their
ACTIVE/SUSPENDED status.

Identities are never removed. Admins suspend and reinstate them; every such
action lands in the global security log, one entry per call.
"""

from typing import Any, Dict, List, Optional, Union

import structlog

from core.models import AuditAction, IdentityRole, IdentityStatus, NetworkIdentity
from core.exceptions import (
    DuplicateIdentityError,
    IdentitySuspendedError,
    NotAuthorizedError,
)
from ledger.audit_log import AuditLog
from ledger.store import LedgerStore

logger = structlog.get_logger(__name__)


class IdentityRegistry:
    """
    Holds network identities and answers whether they may act.

    Status is read from the store on every check; nothing is cached, so a
    suspension is visible to the very next authorization.
    """

    def __init__(self, store: LedgerStore, audit_log: Optional[AuditLog] = None):
        """
        Initialize identity registry.

        Args:
            store: Ledger store holding the identities.
            audit_log: Audit log for admin actions (created from store if None).
        """
        self.store = store
        self.audit_log = audit_log or AuditLog(store)

    def register(
        self, identity: Union[NetworkIdentity, Dict[str, Any]]
    ) -> NetworkIdentity:
        """
        Enroll a new identity.

        Args:
            identity: Identity model or raw payload (validated here).

        Returns:
            Copy of the stored identity.

        Raises:
            DuplicateIdentityError: If the id is already registered.
            pydantic.ValidationError: If the payload is malformed.
        """
        if not isinstance(identity, NetworkIdentity):
            identity = NetworkIdentity.model_validate(identity)
        stored = identity.model_copy(deep=True)

        if not self.store.add_identity(stored):
            raise DuplicateIdentityError(identity.id)

        logger.info(
            "Identity registered",
            identity_id=stored.id,
            role=stored.role.value,
            organization=stored.organization,
        )
        return self._snapshot(stored)

    def get(self, identity_id: str) -> NetworkIdentity:
        """
        Get an identity.

        Raises:
            IdentityNotFoundError: If the id is not registered.
        """
        return self._snapshot(self.store.get_identity(identity_id))

    def list_all(
        self,
        role: Optional[IdentityRole] = None,
        status: Optional[IdentityStatus] = None,
    ) -> List[NetworkIdentity]:
        """List identities in enrollment order, optionally filtered."""
        results = [self._snapshot(i) for i in self.store.identities()]
        if role:
            results = [i for i in results if i.role == role]
        if status:
            results = [i for i in results if i.status == status]
        return results

    def is_active(self, identity_id: str) -> bool:
        """True if the identity exists and is not suspended."""
        if not self.store.has_identity(identity_id):
            return False
        identity = self.store.get_identity(identity_id)
        with self.store.identity_lock(identity_id):
            return identity.is_active()

    def require_active(self, identity_id: str) -> NetworkIdentity:
        """
        Get an identity that is allowed to act.

        Raises:
            IdentityNotFoundError: If the id is not registered.
            IdentitySuspendedError: If the identity is suspended.
        """
        identity = self.get(identity_id)
        if not identity.is_active():
            raise IdentitySuspendedError(identity_id)
        return identity

    # -------------------------------------------------------------------------
    # Admin actions
    # -------------------------------------------------------------------------

    def suspend(self, identity_id: str, admin_id: str) -> NetworkIdentity:
        """
        Suspend an identity. Suspending twice is a no-op apart from the
        audit entry each call records.

        Args:
            identity_id: Identity to suspend.
            admin_id: Admin performing the action.

        Returns:
            Copy of the suspended identity.

        Raises:
            IdentityNotFoundError: If either identity is unknown.
            NotAuthorizedError: If `admin_id` is not an admin.
            IdentitySuspendedError: If the admin is suspended.
        """
        return self._set_status(
            identity_id, admin_id, IdentityStatus.SUSPENDED, "suspended"
        )

    def reinstate(self, identity_id: str, admin_id: str) -> NetworkIdentity:
        """Reinstate a suspended identity (idempotent)."""
        return self._set_status(
            identity_id, admin_id, IdentityStatus.ACTIVE, "reinstated"
        )

    def _set_status(
        self,
        identity_id: str,
        admin_id: str,
        status: IdentityStatus,
        verb: str,
    ) -> NetworkIdentity:
        target = self.store.get_identity(identity_id)
        self._require_admin(admin_id)

        with self.store.identity_lock(identity_id):
            previous = target.status
            target.status = status
            self.audit_log.append(
                AuditAction.ADMIN_ACTION,
                admin_id,
                details=f"{verb} {identity_id}",
            )
            snapshot = target.model_copy(deep=True)

        logger.info(
            f"Identity {verb}",
            identity_id=identity_id,
            admin_id=admin_id,
            changed=previous != status,
        )
        return snapshot

    def _require_admin(self, admin_id: str) -> None:
        admin = self.require_active(admin_id)
        if admin.role != IdentityRole.ADMIN:
            raise NotAuthorizedError(
                admin_id, "only admins may change identity status"
            )

    def _snapshot(self, identity: NetworkIdentity) -> NetworkIdentity:
        with self.store.identity_lock(identity.id):
            return identity.model_copy(deep=True)

"""
Bootstrap of the demo consortium network: identities enrolled at start-up
and the off-ledger records they refer to.
"""

from typing import Any, Dict, Optional

import structlog

from config.config_loader import get_bootstrap_data
from core.exceptions import DuplicateIdentityError
from ledger.identity_registry import IdentityRegistry
from ledger.record_store import InMemoryRecordStore

logger = structlog.get_logger(__name__)


def load_bootstrap(
    identity_registry: IdentityRegistry,
    record_store: InMemoryRecordStore,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, int]:
    """
    Enroll bootstrap identities and load their off-ledger records.

    Identities already enrolled are left as they are, so loading twice is
    harmless.

    Args:
        identity_registry: Registry to enroll identities into.
        record_store: Record store to populate.
        data: Bootstrap data (from config.yaml if None).

    Returns:
        Counts of identities enrolled, identities skipped and records loaded.
    """
    if data is None:
        data = get_bootstrap_data()

    enrolled = 0
    skipped = 0
    for payload in data.get("identities", []):
        try:
            identity_registry.register(payload)
            enrolled += 1
        except DuplicateIdentityError as e:
            logger.debug("Bootstrap identity already enrolled", identity_id=e.identity_id)
            skipped += 1

    records = 0
    for payload in data.get("records", []):
        record_store.put(payload)
        records += 1

    logger.info(
        "Bootstrap network loaded",
        identities=enrolled,
        skipped=skipped,
        records=records,
    )
    return {"identities": enrolled, "skipped": skipped, "records": records}

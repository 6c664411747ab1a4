"""
Off-ledger Record Store
=======================
Read interface to the clinical record store the ledger gates access to.

The ledger never writes records; the in-memory backend is populated by its
owner (bootstrap, tests, or an integration layer).
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Union

import structlog

from core.models import PatientRecord

logger = structlog.get_logger(__name__)


class RecordStore(ABC):
    """Abstract off-ledger record store keyed by patient id."""

    @abstractmethod
    def get(self, patient_id: str) -> Optional[PatientRecord]:
        """Return the patient's record, or None if the store holds none."""
        pass


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed record store for simulation and tests."""

    def __init__(self, records: Optional[Iterable[PatientRecord]] = None):
        self._records: Dict[str, PatientRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self.put(record)

    def put(self, record: Union[PatientRecord, Dict[str, Any]]) -> PatientRecord:
        """Store (or replace) a patient's record."""
        if not isinstance(record, PatientRecord):
            record = PatientRecord.model_validate(record)
        with self._lock:
            self._records[record.patient_id] = record.model_copy(deep=True)
        logger.debug("Off-ledger record stored", patient_id=record.patient_id)
        return record

    def get(self, patient_id: str) -> Optional[PatientRecord]:
        with self._lock:
            record = self._records.get(patient_id)
        return record.model_copy(deep=True) if record else None

    def __contains__(self, patient_id: str) -> bool:
        with self._lock:
            return patient_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

"""Metadata store interface and the in-process implementation.

Every store offers the same three guarantees:

* ``create`` is a conditional create-if-absent on ``job_name``;
* ``update`` is an optimistic compare-and-swap on the record ``version``;
* records are never deleted.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from ..core.exceptions import RecordConflict, RecordNotFound
from .models import JobRecord, JobStatus

LOGGER = logging.getLogger(__name__)

LEASE_PREFIX = "lease#"


class MetadataStore(ABC):
    """Durable key-value record of training job state keyed by ``job_name``."""

    @abstractmethod
    def get(self, job_name: str) -> Optional[JobRecord]:
        """Return the record stored under ``job_name`` or ``None``."""

    @abstractmethod
    def _insert(self, record: JobRecord) -> None:
        """Insert ``record``; raise :class:`RecordConflict` if the key exists."""

    @abstractmethod
    def _replace(self, record: JobRecord, expected_version: int) -> None:
        """Overwrite the stored record if its version still equals ``expected_version``."""

    @abstractmethod
    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        """Take a short-lived lock row. Returns ``False`` while another owner holds it."""

    @abstractmethod
    def release_lease(self, key: str, owner: str) -> None:
        """Drop the lock row if ``owner`` still holds it."""

    def create(self, record: JobRecord) -> JobRecord:
        if record.job_name.startswith(LEASE_PREFIX):
            raise ValueError(f"Job names may not start with '{LEASE_PREFIX}'")
        self._insert(record)
        LOGGER.debug("record_created", extra={"extra_context": {"job_name": record.job_name}})
        return record

    def require(self, job_name: str) -> JobRecord:
        record = self.get(job_name)
        if record is None:
            raise RecordNotFound(f"No job record named '{job_name}'", metadata={"job_name": job_name})
        return record

    def update(
        self,
        job_name: str,
        *,
        status: Optional[JobStatus] = None,
        model_artifact_uri: Optional[str] = None,
        failure_reason: Optional[str] = None,
        deployment_handle: Optional[str] = None,
    ) -> JobRecord:
        """Apply a forward-only change to an existing record."""
        current = self.require(job_name)
        updated = current.apply(
            status=status,
            model_artifact_uri=model_artifact_uri,
            failure_reason=failure_reason,
            deployment_handle=deployment_handle,
        )
        if updated is current:
            return current
        self._replace(updated, expected_version=current.version)
        return updated


class InMemoryMetadataStore(MetadataStore):
    """Thread-safe dict-backed store for local runs and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, JobRecord] = {}
        self._leases: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, job_name: str) -> Optional[JobRecord]:
        with self._lock:
            return self._records.get(job_name)

    def _insert(self, record: JobRecord) -> None:
        with self._lock:
            if record.job_name in self._records:
                raise RecordConflict(
                    f"Job record '{record.job_name}' already exists",
                    metadata={"job_name": record.job_name},
                )
            self._records[record.job_name] = record

    def _replace(self, record: JobRecord, expected_version: int) -> None:
        with self._lock:
            stored = self._records.get(record.job_name)
            if stored is None or stored.version != expected_version:
                raise RecordConflict(
                    f"Job record '{record.job_name}' changed concurrently",
                    metadata={"job_name": record.job_name, "expected_version": expected_version},
                )
            self._records[record.job_name] = record

    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        now = time.time()
        with self._lock:
            held = self._leases.get(key)
            if held is not None and held[0] != owner and held[1] > now:
                return False
            self._leases[key] = (owner, now + ttl_seconds)
            return True

    def release_lease(self, key: str, owner: str) -> None:
        with self._lock:
            held = self._leases.get(key)
            if held is not None and held[0] == owner:
                del self._leases[key]

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["MetadataStore", "InMemoryMetadataStore", "LEASE_PREFIX"]

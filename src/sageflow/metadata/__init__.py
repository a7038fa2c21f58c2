"""Durable job metadata.

Responsibility: Defines the job record lifecycle and the stores that persist it
(in-memory, SQLite, DynamoDB) with create-if-absent and version-checked writes.
"""

from .dynamodb import DynamoMetadataStore
from .models import TERMINAL_STATUSES, JobRecord, JobStatus
from .sqlite import SqliteMetadataStore
from .store import LEASE_PREFIX, InMemoryMetadataStore, MetadataStore

__all__ = [
    "DynamoMetadataStore",
    "InMemoryMetadataStore",
    "JobRecord",
    "JobStatus",
    "LEASE_PREFIX",
    "MetadataStore",
    "SqliteMetadataStore",
    "TERMINAL_STATUSES",
]

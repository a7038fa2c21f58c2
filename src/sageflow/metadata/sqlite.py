"""SQLite-backed metadata store for local and single-host deployments."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Optional

from ..core.exceptions import RecordConflict
from .models import JobRecord
from .store import MetadataStore

_COLUMNS = (
    "job_name",
    "status",
    "source_commit",
    "image_reference",
    "model_artifact_uri",
    "pipeline_execution_id",
    "failure_reason",
    "deployment_handle",
    "created_at",
    "updated_at",
    "version",
)


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path = db_path.resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def create_schema(db_path: Path) -> None:
    """Initialise the metadata database if it does not already exist."""

    with _connect(db_path) as conn:
        conn.executescript(
            """
            PRAGMA journal_mode=WAL;
            CREATE TABLE IF NOT EXISTS jobs (
                job_name TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                source_commit TEXT NOT NULL,
                image_reference TEXT NOT NULL,
                model_artifact_uri TEXT,
                pipeline_execution_id TEXT,
                failure_reason TEXT,
                deployment_handle TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS leases (
                lease_key TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                expires_at REAL NOT NULL
            );
            """
        )


class SqliteMetadataStore(MetadataStore):
    """Store job records in a local SQLite file.

    The primary key on ``job_name`` provides create-if-absent, and updates are
    guarded with ``WHERE version = ?``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        create_schema(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        return _connect(self.db_path)

    def get(self, job_name: str) -> Optional[JobRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE job_name = ?", (job_name,)).fetchone()
        if row is None:
            return None
        return JobRecord.from_item({key: row[key] for key in row.keys() if row[key] is not None})

    def _insert(self, record: JobRecord) -> None:
        item = record.to_item()
        values = tuple(item.get(column) for column in _COLUMNS)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        try:
            with self._connect() as conn:
                conn.execute(f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})", values)
        except sqlite3.IntegrityError as exc:
            raise RecordConflict(
                f"Job record '{record.job_name}' already exists",
                metadata={"job_name": record.job_name},
            ) from exc

    def _replace(self, record: JobRecord, expected_version: int) -> None:
        item = record.to_item()
        mutable = [column for column in _COLUMNS if column != "job_name"]
        assignments = ", ".join(f"{column} = ?" for column in mutable)
        values = [item.get(column) for column in mutable]
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {assignments} WHERE job_name = ? AND version = ?",
                (*values, record.job_name, expected_version),
            )
            if cursor.rowcount != 1:
                raise RecordConflict(
                    f"Job record '{record.job_name}' changed concurrently",
                    metadata={"job_name": record.job_name, "expected_version": expected_version},
                )

    def acquire_lease(self, key: str, owner: str, ttl_seconds: int) -> bool:
        now = time.time()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO leases (lease_key, owner, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(lease_key) DO UPDATE SET owner = excluded.owner, expires_at = excluded.expires_at
                WHERE leases.owner = excluded.owner OR leases.expires_at <= ?
                """,
                (key, owner, now + ttl_seconds, now),
            )
            return cursor.rowcount == 1

    def release_lease(self, key: str, owner: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM leases WHERE lease_key = ? AND owner = ?", (key, owner))


__all__ = ["SqliteMetadataStore", "create_schema"]

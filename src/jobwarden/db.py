"""SQLite database for the live job records and their archive.

Timestamps are stored as ISO 8601 strings in naive local time, so that
cutoffs can be compared as text. Aware values are converted on the way in.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator

from loguru import logger

from jobwarden.config import DEFAULT_DB_FILE
from jobwarden.errors import JobNotFoundError
from jobwarden.models import ArchiveRecord, Job, JobFilter, JobStatus, JobUpdate

# Schema version for migrations
SCHEMA_VERSION = 1

JOB_COLUMNS = (
    "id",
    "type",
    "status",
    "status_lock",
    "start_date",
    "end_date",
    "executor_ip",
    "executor_port",
    "input",
    "output",
    "message",
)

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Live jobs
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL DEFAULT 'generic',
    status TEXT NOT NULL DEFAULT 'created',
    status_lock INTEGER NOT NULL DEFAULT 0,
    start_date TEXT,
    end_date TEXT,
    executor_ip TEXT,
    executor_port INTEGER,
    input TEXT NOT NULL DEFAULT '[]',
    output TEXT NOT NULL DEFAULT '[]',
    message TEXT
);

-- Archived jobs (insert only)
CREATE TABLE IF NOT EXISTS jobs_archive (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    status_lock INTEGER NOT NULL,
    start_date TEXT,
    end_date TEXT,
    executor_ip TEXT,
    executor_port INTEGER,
    input TEXT NOT NULL,
    output TEXT NOT NULL,
    message TEXT,
    archived_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, status_lock);
"""


def _local_naive(value: datetime) -> datetime:
    """Express an aware timestamp as naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _ts(value: datetime | None) -> str | None:
    return _local_naive(value).isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return _local_naive(datetime.fromisoformat(value)) if value else None


class Database:
    """SQLite database manager for JobWarden."""

    def __init__(self, db_path: Path | None = None):
        """Initialize the database."""
        self.db_path = Path(db_path or DEFAULT_DB_FILE)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Ensure the database exists and is up to date."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
                logger.debug(f"Initialized database at {self.db_path}")
            elif row[0] > SCHEMA_VERSION:
                logger.warning(
                    f"Database {self.db_path} has schema version {row[0]}, "
                    f"newer than supported version {SCHEMA_VERSION}"
                )

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Query building
    # =========================================================================

    @staticmethod
    def _where(flt: JobFilter) -> tuple[str, list]:
        """Translate a JobFilter into a WHERE clause and its parameters."""
        clauses: list[str] = []
        params: list = []

        if flt.job_id is not None:
            clauses.append("id = ?")
            params.append(flt.job_id)
        if flt.statuses is not None:
            if not flt.statuses:
                # An empty status set matches nothing
                clauses.append("0")
            else:
                clauses.append(f"status IN ({', '.join('?' for _ in flt.statuses)})")
                params.extend(s.value for s in flt.statuses)
        if flt.status_lock is not None:
            clauses.append("status_lock = ?")
            params.append(1 if flt.status_lock else 0)
        if flt.ended_before is not None:
            clauses.append("end_date IS NOT NULL AND end_date < ?")
            params.append(_ts(flt.ended_before))
        if flt.started_before is not None:
            clauses.append("start_date IS NOT NULL AND start_date < ?")
            params.append(_ts(flt.started_before))

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    # =========================================================================
    # Live jobs
    # =========================================================================

    def save_job(self, job: Job) -> None:
        """Insert or replace a live job record."""
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO jobs ({', '.join(JOB_COLUMNS)})
                VALUES ({', '.join('?' for _ in JOB_COLUMNS)})
                """,
                self._job_to_row(job),
            )

    def get_job(self, job_id: str) -> Job | None:
        """Get a live job by ID."""
        with self._connect() as conn:
            cursor = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            return self._row_to_job(row) if row else None

    def find_jobs(self, flt: JobFilter | None = None, limit: int | None = None) -> list[Job]:
        """Get live jobs matching a filter."""
        where, params = self._where(flt or JobFilter())
        sql = f"SELECT * FROM jobs{where} ORDER BY id"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [self._row_to_job(row) for row in rows]

    def update_jobs(self, flt: JobFilter, update: JobUpdate) -> int:
        """Apply an update to every job matching the filter.

        The match and the write happen in one UPDATE statement, so a filter
        on ``status_lock = 0`` acts as a compare-and-set.

        Returns:
            Number of rows modified
        """
        fields = update.fields()
        if not fields:
            return 0

        assignments: list[str] = []
        values: list = []
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            if isinstance(value, bool):
                values.append(1 if value else 0)
            elif isinstance(value, JobStatus):
                values.append(value.value)
            else:
                values.append(value)

        where, params = self._where(flt)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(assignments)}{where}",
                values + params,
            )
            return cursor.rowcount

    def delete_job(self, job_id: str) -> bool:
        """Delete a live job record."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Archive
    # =========================================================================

    def archive_job(self, job_id: str) -> ArchiveRecord:
        """Move a job from the live table to the archive in one transaction.

        Raises:
            JobNotFoundError: if the job is not in the live table
        """
        archived_at = datetime.now()
        columns = ", ".join(JOB_COLUMNS)
        # The lock that guarded the move is not carried into the archive
        selected = columns.replace("status_lock", "0")

        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO jobs_archive ({columns}, archived_at)
                SELECT {selected}, ? FROM jobs WHERE id = ?
                """,
                (archived_at.isoformat(), job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

            conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))

            row = conn.execute(
                "SELECT * FROM jobs_archive WHERE id = ?", (job_id,)
            ).fetchone()
            return self._row_to_archive(row)

    def get_archived(self, job_id: str) -> ArchiveRecord | None:
        """Get an archived job by ID."""
        with self._connect() as conn:
            cursor = conn.execute("SELECT * FROM jobs_archive WHERE id = ?", (job_id,))
            row = cursor.fetchone()
            return self._row_to_archive(row) if row else None

    def count_archived(self) -> int:
        """Number of archived jobs."""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM jobs_archive").fetchone()[0]

    # =========================================================================
    # Row conversion
    # =========================================================================

    def _job_to_row(self, job: Job) -> tuple:
        return (
            job.id,
            job.type,
            job.status.value,
            1 if job.status_lock else 0,
            _ts(job.start_date),
            _ts(job.end_date),
            job.executor_ip,
            job.executor_port,
            json.dumps(job.input),
            json.dumps(job.output),
            job.message,
        )

    def _row_fields(self, row: sqlite3.Row) -> dict:
        return {
            "id": row["id"],
            "type": row["type"],
            "status": JobStatus(row["status"]),
            "status_lock": bool(row["status_lock"]),
            "start_date": _parse_ts(row["start_date"]),
            "end_date": _parse_ts(row["end_date"]),
            "executor_ip": row["executor_ip"],
            "executor_port": row["executor_port"],
            "input": json.loads(row["input"] or "[]"),
            "output": json.loads(row["output"] or "[]"),
            "message": row["message"],
        }

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job."""
        return Job(**self._row_fields(row))

    def _row_to_archive(self, row: sqlite3.Row) -> ArchiveRecord:
        """Convert an archive row to an ArchiveRecord."""
        return ArchiveRecord(
            **self._row_fields(row),
            archived_at=datetime.fromisoformat(row["archived_at"]),
        )

"""
SQLite job store.

The store is the single writer of job state. Every mutation of a job runs
inside that job's exclusive section (a per-job lock) and a transaction, so
updates to different jobs proceed concurrently while updates to the same
job are serialized.

State changes are checked against the lifecycle graph in entities.py:
explicit transitions raise InvalidTransitionError, observations from sync
passes that would move a job backward are ignored.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from mdrunner.cluster.validator import ResourceRequest
from mdrunner.errors import (
    ConsistencyError,
    InvalidTransitionError,
    JobNotFoundError,
)
from .entities import (
    Job,
    JobState,
    SYNCABLE_STATES,
    TERMINAL_STATES,
    can_transition,
    now_iso,
)


logger = logging.getLogger(__name__)

_SUBMITTABLE_STATES = (JobState.CREATED.value, JobState.VALIDATED.value)


class JobStore:
    """
    SQLite-backed persistence for jobs.

    - jobs keyed by local job_id, unique index on remote_job_id
    - atomic claim for submission (one submission in flight per job)
    - pass-ordered sync observations (older passes never overwrite newer)
    """

    def __init__(self, db_path: str | Path, busy_timeout: float = 30.0):
        """
        Initialize the job store.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._locks: dict = {}
        self._locks_guard = threading.Lock()

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    cores INTEGER,
                    memory_gb REAL,
                    walltime TEXT,
                    partition TEXT,
                    qos TEXT,
                    state TEXT NOT NULL,
                    remote_job_id TEXT,
                    simulation_config TEXT NOT NULL DEFAULT '{}',
                    input_files TEXT NOT NULL DEFAULT '[]',
                    remote_state TEXT,
                    runtime TEXT,
                    exit_code INTEGER,
                    error_info TEXT,
                    missing_passes INTEGER NOT NULL DEFAULT 0,
                    last_sync_pass INTEGER NOT NULL DEFAULT 0,
                    submitting INTEGER NOT NULL DEFAULT 0,
                    stdout_log TEXT,
                    stderr_log TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    submitted_at TEXT,
                    last_synced_at TEXT,
                    finished_at TEXT
                )
            """)

            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_remote_id
                ON jobs(remote_job_id)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_state
                ON jobs(state, created_at)
            """)

    # =========================================================================
    # Per-job exclusive sections
    # =========================================================================

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            return lock

    @contextmanager
    def exclusive(self, job_id: str) -> Iterator[None]:
        """Hold the job's exclusive section for the duration of the block."""
        lock = self._lock_for(job_id)
        with lock:
            yield

    # =========================================================================
    # Reads
    # =========================================================================

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def require_job(self, job_id: str) -> Job:
        """Get a job by ID or raise JobNotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_job_by_remote_id(self, remote_job_id: str) -> Optional[Job]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE remote_job_id = ?",
                (remote_job_id,),
            ).fetchone()
        return self._row_to_job(row) if row is not None else None

    def list_jobs(self, state: Optional[JobState] = None) -> list[Job]:
        """List jobs in creation order, optionally filtered by state."""
        with self._connection() as conn:
            if state is None:
                rows = conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at ASC, rowid ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE state = ? ORDER BY created_at ASC, rowid ASC",
                    (state.value,),
                ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_syncable_jobs(self) -> list[Job]:
        """Non-terminal jobs that have a remote id, in creation order."""
        placeholders = ", ".join("?" for _ in SYNCABLE_STATES)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE remote_job_id IS NOT NULL AND state IN ({placeholders})
                ORDER BY created_at ASC, rowid ASC
                """,
                [s.value for s in SYNCABLE_STATES],
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def count_jobs(self) -> int:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM jobs").fetchone()
        return row["n"]

    def count_jobs_by_state(self) -> dict[str, int]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS n FROM jobs GROUP BY state"
            ).fetchall()
        return {row["state"]: row["n"] for row in rows}

    def max_sync_pass(self) -> int:
        """Highest pass id committed to any job; seeds the pass counter on restart."""
        with self._connection() as conn:
            row = conn.execute("SELECT MAX(last_sync_pass) AS p FROM jobs").fetchone()
        return row["p"] or 0

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            job_id=row["job_id"],
            name=row["name"],
            request=ResourceRequest(
                cores=row["cores"],
                memory_gb=row["memory_gb"],
                walltime=row["walltime"],
                partition=row["partition"],
                qos=row["qos"],
            ),
            state=JobState(row["state"]),
            remote_job_id=row["remote_job_id"],
            simulation_config=json.loads(row["simulation_config"]),
            input_files=json.loads(row["input_files"]),
            remote_state=row["remote_state"],
            runtime=row["runtime"],
            exit_code=row["exit_code"],
            error_info=row["error_info"],
            missing_passes=row["missing_passes"],
            last_sync_pass=row["last_sync_pass"],
            submitting=bool(row["submitting"]),
            stdout_log=row["stdout_log"],
            stderr_log=row["stderr_log"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            submitted_at=row["submitted_at"],
            last_synced_at=row["last_synced_at"],
            finished_at=row["finished_at"],
        )

    # =========================================================================
    # Inserts
    # =========================================================================

    def create_job(self, job: Job) -> Job:
        """
        Insert a new job.

        Raises:
            ConsistencyError: If the job id or remote id is already stored
        """
        with self.exclusive(job.job_id):
            try:
                with self._transaction() as conn:
                    self._insert(conn, job)
            except sqlite3.IntegrityError as e:
                raise ConsistencyError(f"Job {job.job_id} conflicts with a stored job: {e}") from e
        return job

    def insert_discovered(self, job: Job) -> Optional[Job]:
        """
        Insert a job found on the cluster.

        Returns None when a job with the same remote id already exists,
        which makes repeated discovery a no-op.
        """
        existing = self.get_job_by_remote_id(job.remote_job_id)
        if existing is not None:
            return None
        with self.exclusive(job.job_id):
            try:
                with self._transaction() as conn:
                    self._insert(conn, job)
            except sqlite3.IntegrityError:
                logger.debug(f"Remote job {job.remote_job_id} inserted concurrently, skipping")
                return None
        return job

    def _insert(self, conn: sqlite3.Connection, job: Job) -> None:
        request = job.request
        conn.execute(
            """
            INSERT INTO jobs
            (job_id, name, cores, memory_gb, walltime, partition, qos, state,
             remote_job_id, simulation_config, input_files, remote_state, runtime,
             exit_code, error_info, missing_passes, last_sync_pass, submitting,
             created_at, updated_at, submitted_at, last_synced_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.job_id,
                job.name,
                request.cores,
                request.memory_gb,
                request.walltime,
                request.partition,
                request.qos,
                job.state.value,
                job.remote_job_id,
                json.dumps(job.simulation_config),
                json.dumps(job.input_files),
                job.remote_state,
                job.runtime,
                job.exit_code,
                job.error_info,
                job.missing_passes,
                job.last_sync_pass,
                int(job.submitting),
                job.created_at,
                job.updated_at,
                job.submitted_at,
                job.last_synced_at,
                job.finished_at,
            ),
        )

    # =========================================================================
    # State changes
    # =========================================================================

    def transition(
        self,
        job_id: str,
        target: JobState,
        error_info: Optional[str] = None,
    ) -> Job:
        """
        Move a job to a new state.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidTransitionError: If the move is not a legal forward step
        """
        with self.exclusive(job_id):
            job = self.require_job(job_id)
            if not can_transition(job.state, target):
                raise InvalidTransitionError(job_id, job.state, target)

            now = now_iso()
            finished_at = now if target in TERMINAL_STATES else None
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE jobs
                    SET state = ?, updated_at = ?,
                        finished_at = COALESCE(?, finished_at),
                        error_info = COALESCE(?, error_info)
                    WHERE job_id = ?
                    """,
                    (target.value, now, finished_at, error_info, job_id),
                )
            logger.info(f"Job {job_id}: {job.state.value} -> {target.value}")
            return self.require_job(job_id)

    def claim_for_submission(self, job_id: str) -> Job:
        """
        Atomically mark a job as validated and submission-in-progress.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConsistencyError: If the job is not submittable or another
                submission already holds the claim
        """
        with self.exclusive(job_id):
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE jobs
                    SET state = ?, submitting = 1, updated_at = ?
                    WHERE job_id = ? AND submitting = 0 AND state IN (?, ?)
                    """,
                    (JobState.VALIDATED.value, now_iso(), job_id, *_SUBMITTABLE_STATES),
                )

                if cursor.rowcount == 0:
                    row = conn.execute(
                        "SELECT state, submitting FROM jobs WHERE job_id = ?",
                        (job_id,),
                    ).fetchone()

                    if row is None:
                        raise JobNotFoundError(job_id)
                    if row["submitting"]:
                        raise ConsistencyError(f"Job {job_id} is already being submitted")
                    raise ConsistencyError(
                        f"Job {job_id} cannot be submitted from state {row['state']}"
                    )

            return self.require_job(job_id)

    def release_submission(self, job_id: str, error_info: Optional[str] = None) -> Optional[Job]:
        """
        Drop a submission claim; the job stays VALIDATED.

        Returns None if the job was deleted while the claim was held.
        """
        with self.exclusive(job_id):
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE jobs SET submitting = 0, error_info = ?, updated_at = ?
                    WHERE job_id = ? AND submitting = 1
                    """,
                    (error_info, now_iso(), job_id),
                )
            return self.get_job(job_id)

    def release_stale_claims(self) -> list[str]:
        """
        Clear submission claims left behind by a process that stopped
        mid-submit. Returns the affected job ids.

        Idempotent. Only safe at startup, before any submission of this
        process is in flight.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT job_id FROM jobs WHERE submitting = 1"
            ).fetchall()
            job_ids = [row["job_id"] for row in rows]
            conn.execute(
                """
                UPDATE jobs
                SET submitting = 0, updated_at = ?,
                    error_info = 'Submission interrupted; check the cluster before resubmitting'
                WHERE submitting = 1
                """,
                (now_iso(),),
            )

        for job_id in job_ids:
            logger.warning(f"Job {job_id}: released submission claim left by a previous run")
        return job_ids

    def mark_submitted(self, job_id: str, remote_job_id: str) -> Job:
        """
        Attach the scheduler id and move VALIDATED -> SUBMITTED in one step.

        If discovery imported the same remote job before this commit, the
        DISCOVERED record is folded into this job in the same transaction.

        Raises:
            ConsistencyError: If the claim was lost or the remote id is
                already attached to another job
        """
        now = now_iso()
        with self.exclusive(job_id):
            try:
                with self._transaction() as conn:
                    duplicate = conn.execute(
                        "SELECT job_id FROM jobs WHERE remote_job_id = ? AND state = ? AND job_id != ?",
                        (remote_job_id, JobState.DISCOVERED.value, job_id),
                    ).fetchone()
                    if duplicate is not None:
                        conn.execute("DELETE FROM jobs WHERE job_id = ?", (duplicate["job_id"],))
                        logger.info(
                            f"Job {job_id}: merged discovered record {duplicate['job_id']} "
                            f"for remote job {remote_job_id}"
                        )

                    cursor = conn.execute(
                        """
                        UPDATE jobs
                        SET state = ?, remote_job_id = ?, submitting = 0,
                            error_info = NULL, submitted_at = ?, updated_at = ?
                        WHERE job_id = ? AND state = ? AND submitting = 1
                        """,
                        (
                            JobState.SUBMITTED.value,
                            remote_job_id,
                            now,
                            now,
                            job_id,
                            JobState.VALIDATED.value,
                        ),
                    )
                    if cursor.rowcount == 0:
                        raise ConsistencyError(
                            f"Job {job_id} lost its submission claim before {remote_job_id} was recorded"
                        )
            except sqlite3.IntegrityError as e:
                raise ConsistencyError(
                    f"Remote job {remote_job_id} is already tracked by another job"
                ) from e
            logger.info(f"Job {job_id}: VALIDATED -> SUBMITTED (remote id {remote_job_id})")
            return self.require_job(job_id)

    def apply_observation(
        self,
        job_id: str,
        pass_id: int,
        state: Optional[JobState] = None,
        remote_state: Optional[str] = None,
        runtime: Optional[str] = None,
        exit_code: Optional[int] = None,
        missing_passes: Optional[int] = None,
        error_info: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Record what a sync pass observed for a job.

        Returns the updated job, or None when the job was deleted meanwhile
        or a newer pass has already committed an observation for it.
        A state that is not a legal forward step is ignored; the other
        observed fields are still recorded.
        """
        with self.exclusive(job_id):
            job = self.get_job(job_id)
            if job is None:
                return None
            if job.last_sync_pass > pass_id:
                logger.debug(
                    f"Job {job_id}: discarding observation from pass {pass_id}, "
                    f"pass {job.last_sync_pass} already committed"
                )
                return None

            new_state = job.state
            if state is not None and state != job.state:
                if can_transition(job.state, state):
                    new_state = state
                else:
                    logger.warning(
                        f"Job {job_id}: ignoring observed {state.value} "
                        f"(current {job.state.value} is not allowed to move there)"
                    )

            now = now_iso()
            finished_at = now if new_state in TERMINAL_STATES and job.finished_at is None else None
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE jobs
                    SET state = ?,
                        remote_state = COALESCE(?, remote_state),
                        runtime = COALESCE(?, runtime),
                        exit_code = COALESCE(?, exit_code),
                        missing_passes = COALESCE(?, missing_passes),
                        error_info = COALESCE(?, error_info),
                        finished_at = COALESCE(?, finished_at),
                        last_sync_pass = ?,
                        last_synced_at = ?,
                        updated_at = ?
                    WHERE job_id = ? AND last_sync_pass <= ?
                    """,
                    (
                        new_state.value,
                        remote_state,
                        runtime,
                        exit_code,
                        missing_passes,
                        error_info,
                        finished_at,
                        pass_id,
                        now,
                        now,
                        job_id,
                        pass_id,
                    ),
                )
                if cursor.rowcount == 0:
                    return None

            if new_state != job.state:
                logger.info(f"Job {job_id}: {job.state.value} -> {new_state.value} (sync pass {pass_id})")
            return self.require_job(job_id)

    def save_logs(self, job_id: str, stdout: Optional[str], stderr: Optional[str]) -> Job:
        with self.exclusive(job_id):
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE jobs SET stdout_log = ?, stderr_log = ?, updated_at = ?
                    WHERE job_id = ?
                    """,
                    (stdout, stderr, now_iso(), job_id),
                )
            return self.require_job(job_id)

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_job(self, job_id: str) -> bool:
        """Remove a job record. Returns False if it did not exist."""
        with self.exclusive(job_id):
            with self._transaction() as conn:
                cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
                deleted = cursor.rowcount > 0

        if deleted:
            with self._locks_guard:
                self._locks.pop(job_id, None)
            logger.info(f"Deleted job {job_id}")
        return deleted

"""
Job domain entities.

- JobState: local lifecycle state and the allowed transition graph
- Job: one simulation job as tracked by this process
- SyncOutcome / JobDelta / TransportFailure: result of a reconciliation pass
- DeleteResult: result of a delete request
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from mdrunner.cluster.validator import ResourceRequest


class JobState(str, Enum):
    """
    Local job lifecycle state.

    DISCOVERED is the entry state for jobs found on the cluster that were
    never created here; it ranks alongside SUBMITTED. UNKNOWN is terminal
    by inference: the scheduler lost every record of the job.
    """

    CREATED = "CREATED"
    VALIDATED = "VALIDATED"
    SUBMITTED = "SUBMITTED"
    DISCOVERED = "DISCOVERED"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    JobState.COMPLETED,
    JobState.FAILED,
    JobState.CANCELLED,
    JobState.UNKNOWN,
})

_AFTER_SUBMIT = frozenset({
    JobState.QUEUED,
    JobState.RUNNING,
    JobState.COMPLETING,
    JobState.COMPLETED,
    JobState.FAILED,
    JobState.CANCELLED,
    JobState.UNKNOWN,
})

ALLOWED_TRANSITIONS = {
    JobState.CREATED: frozenset({JobState.VALIDATED, JobState.CANCELLED}),
    JobState.VALIDATED: frozenset({JobState.SUBMITTED, JobState.CANCELLED}),
    JobState.SUBMITTED: _AFTER_SUBMIT,
    JobState.DISCOVERED: _AFTER_SUBMIT,
    JobState.QUEUED: _AFTER_SUBMIT - {JobState.QUEUED},
    JobState.RUNNING: _AFTER_SUBMIT - {JobState.QUEUED, JobState.RUNNING},
    JobState.COMPLETING: frozenset({
        JobState.COMPLETED,
        JobState.FAILED,
        JobState.CANCELLED,
        JobState.UNKNOWN,
    }),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
    JobState.UNKNOWN: frozenset(),
}

# States a sync pass queries the scheduler for
SYNCABLE_STATES = frozenset({
    JobState.SUBMITTED,
    JobState.DISCOVERED,
    JobState.QUEUED,
    JobState.RUNNING,
    JobState.COMPLETING,
})


def can_transition(current: JobState, target: JobState) -> bool:
    """True if moving from current to target is a legal forward step."""
    return target in ALLOWED_TRANSITIONS[current]


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


@dataclass
class Job:
    """
    A simulation job as tracked locally.

    request is fixed at creation; everything observed from the scheduler
    (remote_state, runtime, exit_code) is refreshed by sync passes.
    """

    job_id: str
    name: str
    request: ResourceRequest
    state: JobState = JobState.CREATED
    remote_job_id: Optional[str] = None
    simulation_config: dict = field(default_factory=dict)
    input_files: list = field(default_factory=list)
    remote_state: Optional[str] = None
    runtime: Optional[str] = None
    exit_code: Optional[int] = None
    error_info: Optional[str] = None
    missing_passes: int = 0
    last_sync_pass: int = 0
    submitting: bool = False
    stdout_log: Optional[str] = None
    stderr_log: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    submitted_at: Optional[str] = None
    last_synced_at: Optional[str] = None
    finished_at: Optional[str] = None

    @classmethod
    def create(
        cls,
        name: str,
        request: ResourceRequest,
        simulation_config: Optional[dict] = None,
        input_files: Optional[list] = None,
    ) -> "Job":
        """Create a new Job with generated ID in CREATED state."""
        return cls(
            job_id=generate_uuid(),
            name=name,
            request=request,
            simulation_config=simulation_config or {},
            input_files=list(input_files or []),
        )

    def is_terminal(self) -> bool:
        return self.state.is_terminal()


@dataclass(frozen=True)
class JobDelta:
    """A state change committed during a sync pass."""

    job_id: str
    remote_job_id: Optional[str]
    before: JobState
    after: JobState


@dataclass(frozen=True)
class TransportFailure:
    """A gateway call that failed for one job (or for the whole listing)."""

    operation: str
    message: str
    job_id: Optional[str] = None
    remote_job_id: Optional[str] = None


@dataclass
class SyncOutcome:
    """
    Result of one reconciliation or discovery pass.

    Failures are collected per job; a pass never aborts because one job's
    query failed.
    """

    pass_id: int
    started_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None
    jobs_checked: int = 0
    deltas: list = field(default_factory=list)
    discovered: list = field(default_factory=list)
    presumed_terminal: list = field(default_factory=list)
    failures: list = field(default_factory=list)
    discarded_stale: list = field(default_factory=list)
    coalesced: bool = False

    @property
    def jobs_updated(self) -> int:
        return len(self.deltas)

    @property
    def success(self) -> bool:
        return not self.failures

    def absorb(self, other: "SyncOutcome") -> None:
        """Fold another pass's findings (e.g. automatic discovery) into this one."""
        self.deltas.extend(other.deltas)
        self.discovered.extend(other.discovered)
        self.presumed_terminal.extend(other.presumed_terminal)
        self.failures.extend(other.failures)
        self.discarded_stale.extend(other.discarded_stale)


@dataclass
class DeleteResult:
    """Result of deleting a job, optionally cancelling it remotely first."""

    job_id: str
    deleted: bool
    remote_cancelled: bool = False
    error: Optional[Exception] = None


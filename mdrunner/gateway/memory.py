"""
In-memory scheduler gateway.

Simulates a SLURM cluster inside the process. Used for demo mode (with
auto_advance, every status query moves a job one step through its life)
and as a controllable scheduler in tests.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional

from mdrunner.errors import SubmissionError, TransportError
from .base import (
    JobLogs,
    NOT_FOUND,
    RemoteJob,
    RemoteSchedulerGateway,
    RemoteState,
    RemoteStatus,
    StatusResult,
    SubmissionSpec,
)


logger = logging.getLogger(__name__)


_DEMO_PROGRESSION = {
    RemoteState.PENDING: RemoteState.RUNNING,
    RemoteState.RUNNING: RemoteState.COMPLETING,
    RemoteState.COMPLETING: RemoteState.COMPLETED,
}


@dataclass
class _SimulatedJob:
    job: RemoteJob
    exit_code: Optional[int] = None
    runtime: Optional[str] = None
    logs: Optional[JobLogs] = None


class InMemorySchedulerGateway(RemoteSchedulerGateway):
    """
    Scheduler double with an active queue and an accounting history.

    Jobs leave the active queue when they reach a terminal state and stay
    queryable from accounting until forget() is called.
    """

    supports_discovery = True
    supports_log_refetch = True

    def __init__(
        self,
        auto_advance: bool = False,
        first_job_id: int = 10000001,
        supports_discovery: bool = True,
        supports_log_refetch: bool = True,
    ):
        self.auto_advance = auto_advance
        self.supports_discovery = supports_discovery
        self.supports_log_refetch = supports_log_refetch

        self._ids = itertools.count(first_job_id)
        self._active: dict = {}
        self._accounting: dict = {}
        self._lock = threading.Lock()
        self._failures: dict = {}
        self._delays: dict = {}
        self._rejection: Optional[str] = None
        self.unreachable = False
        self.calls: list = []

    # =========================================================================
    # Gateway operations
    # =========================================================================

    def submit(self, spec: SubmissionSpec, files: list) -> str:
        self._enter("submit")
        with self._lock:
            if self._rejection is not None:
                reason, self._rejection = self._rejection, None
                raise SubmissionError(reason)
            remote_id = str(next(self._ids))
            request = spec.request
            self._active[remote_id] = _SimulatedJob(
                job=RemoteJob(
                    remote_job_id=remote_id,
                    name=spec.name,
                    state=RemoteState.PENDING,
                    cores=request.cores,
                    memory_gb=request.memory_gb,
                    walltime=request.walltime,
                    partition=request.partition,
                    qos=request.qos,
                ),
            )
        logger.debug(f"Accepted {spec.name} as {remote_id} with {len(files)} files")
        return remote_id

    def query_status(self, remote_job_id: str) -> StatusResult:
        self._enter("query_status")
        with self._lock:
            if self.auto_advance and remote_job_id in self._active:
                self._advance_locked(remote_job_id)
            record = self._active.get(remote_job_id) or self._accounting.get(remote_job_id)
            if record is None:
                return NOT_FOUND
            return RemoteStatus(
                state=record.job.state,
                exit_code=record.exit_code,
                runtime=record.runtime,
            )

    def cancel(self, remote_job_id: str) -> None:
        self._enter("cancel")
        with self._lock:
            record = self._active.pop(remote_job_id, None)
            if record is None:
                return
            record.job = replace(record.job, state=RemoteState.CANCELLED)
            self._accounting[remote_job_id] = record

    def list_owned_jobs(self) -> list:
        self._enter("list_owned_jobs")
        with self._lock:
            return [record.job for record in self._active.values()]

    def fetch_logs(self, remote_job_id: str) -> JobLogs:
        self._enter("fetch_logs")
        with self._lock:
            record = self._active.get(remote_job_id) or self._accounting.get(remote_job_id)
            if record is None or record.logs is None:
                return JobLogs()
            return record.logs

    # =========================================================================
    # Simulation controls
    # =========================================================================

    def add_remote_job(
        self,
        name: str,
        state: RemoteState = RemoteState.RUNNING,
        remote_job_id: Optional[str] = None,
        **resources,
    ) -> str:
        """Place a job on the cluster that was not submitted through this gateway."""
        with self._lock:
            remote_id = remote_job_id or str(next(self._ids))
            self._active[remote_id] = _SimulatedJob(
                job=RemoteJob(remote_job_id=remote_id, name=name, state=state, **resources),
            )
            return remote_id

    def set_state(
        self,
        remote_job_id: str,
        state: RemoteState,
        exit_code: Optional[int] = None,
        runtime: Optional[str] = None,
    ) -> None:
        """Move a job to a state; terminal states move it to accounting."""
        with self._lock:
            record = self._active.pop(remote_job_id, None) or self._accounting.pop(remote_job_id)
            record.job = replace(record.job, state=state)
            record.exit_code = exit_code
            record.runtime = runtime
            if state.is_terminal():
                self._accounting[remote_job_id] = record
            else:
                self._active[remote_job_id] = record

    def set_logs(self, remote_job_id: str, stdout: str, stderr: str = "") -> None:
        with self._lock:
            record = self._active.get(remote_job_id) or self._accounting[remote_job_id]
            record.logs = JobLogs(stdout=stdout, stderr=stderr)

    def forget(self, remote_job_id: str) -> None:
        """Drop every record of a job, as if accounting had been purged."""
        with self._lock:
            self._active.pop(remote_job_id, None)
            self._accounting.pop(remote_job_id, None)

    def reject_next_submission(self, reason: str) -> None:
        self._rejection = reason

    def fail_next(self, operation: str, message: str = "connection reset by peer", times: int = 1) -> None:
        """Make the next `times` calls of an operation raise TransportError."""
        self._failures[operation] = (message, times)

    def set_delay(self, operation: str, seconds: float) -> None:
        """Slow an operation down, e.g. to exercise timeouts or overlap passes."""
        self._delays[operation] = seconds

    def call_count(self, operation: str) -> int:
        return sum(1 for name in self.calls if name == operation)

    def has_job(self, remote_job_id: str) -> bool:
        with self._lock:
            return remote_job_id in self._active or remote_job_id in self._accounting

    # =========================================================================
    # Internals
    # =========================================================================

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        delay = self._delays.get(operation)
        if delay:
            time.sleep(delay)
        if self.unreachable:
            raise TransportError("network unreachable", operation=operation)
        failure = self._failures.get(operation)
        if failure is not None:
            message, remaining = failure
            if remaining <= 1:
                del self._failures[operation]
            else:
                self._failures[operation] = (message, remaining - 1)
            raise TransportError(message, operation=operation)

    def _advance_locked(self, remote_job_id: str) -> None:
        record = self._active[remote_job_id]
        next_state = _DEMO_PROGRESSION.get(record.job.state)
        if next_state is None:
            return
        record.job = replace(record.job, state=next_state)
        if next_state.is_terminal():
            record.exit_code = 0
            record.logs = JobLogs(stdout=f"NAMD run {record.job.name} finished\n", stderr="")
            del self._active[remote_job_id]
            self._accounting[remote_job_id] = record

"""
Sync reconciler.

Keeps the job store consistent with the scheduler's ground truth:

1. Sync: query every non-terminal job with a remote id and apply what the
   scheduler reports, in creation order
2. Disappearance: a job the scheduler no longer knows for
   `missing_pass_threshold` consecutive passes becomes UNKNOWN
3. Discovery: jobs owned on the cluster with no local record are imported
   as DISCOVERED, keyed by remote id so re-running is a no-op

Only one pass runs at a time. Failures are collected per job in the
SyncOutcome; a pass never aborts because one job could not be queried.
"""

import itertools
import logging
import threading
from concurrent.futures import Future
from dataclasses import replace
from typing import Optional

from mdrunner.errors import JobRunnerError, UnsupportedCapabilityError
from mdrunner.gateway.base import (
    GatewayClient,
    NotFound,
    RemoteJob,
    RemoteState,
    RemoteStatus,
)
from .entities import (
    Job,
    JobDelta,
    JobState,
    SyncOutcome,
    TransportFailure,
    generate_uuid,
    now_iso,
)
from .store import JobStore


logger = logging.getLogger(__name__)

DEFAULT_MISSING_PASS_THRESHOLD = 2

_ACTIVE_STATE_MAP = {
    RemoteState.PENDING: JobState.QUEUED,
    RemoteState.RUNNING: JobState.RUNNING,
    RemoteState.COMPLETING: JobState.COMPLETING,
}


def map_remote_status(status: RemoteStatus) -> JobState:
    """
    Map a scheduler observation to the local lifecycle state.

    A COMPLETED job with a non-zero exit code is FAILED. Every other
    terminal scheduler state (TIMEOUT, NODE_FAIL, PREEMPTED, OUT_OF_MEMORY,
    FAILED) is FAILED whatever the exit code; sacct reports 0:0 for some
    of them.
    """
    if status.state in _ACTIVE_STATE_MAP:
        return _ACTIVE_STATE_MAP[status.state]
    if status.state == RemoteState.CANCELLED:
        return JobState.CANCELLED
    if status.state == RemoteState.COMPLETED:
        if status.exit_code is not None and status.exit_code != 0:
            return JobState.FAILED
        return JobState.COMPLETED
    return JobState.FAILED


class SyncReconciler:
    """
    Reconciles the job store against the scheduler.

    sync(manual=False) is the automatic path: if a pass is already running
    the call waits for it and returns its outcome marked coalesced.
    sync(manual=True) waits for any running pass and then runs a fresh one.
    """

    def __init__(
        self,
        store: JobStore,
        client: GatewayClient,
        missing_pass_threshold: int = DEFAULT_MISSING_PASS_THRESHOLD,
    ):
        self.store = store
        self.client = client
        self.missing_pass_threshold = missing_pass_threshold

        self._pass_ids = itertools.count(store.max_sync_pass() + 1)
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self._initial_discovery_done = False
        self._last_outcome: Optional[SyncOutcome] = None

    @property
    def is_syncing(self) -> bool:
        return self._inflight is not None

    @property
    def last_outcome(self) -> Optional[SyncOutcome]:
        return self._last_outcome

    # =========================================================================
    # Sync
    # =========================================================================

    def sync(self, manual: bool = False) -> SyncOutcome:
        """
        Run (or join) a reconciliation pass.

        Args:
            manual: True for user-requested syncs, which always observe a
                pass that started after the request

        Returns:
            SyncOutcome of the pass that served this request
        """
        while True:
            with self._state_lock:
                inflight = self._inflight
                if inflight is None:
                    future: Future = Future()
                    self._inflight = future
                    break

            logger.debug("Sync pass in flight, waiting for it to finish")
            try:
                outcome = inflight.result()
            except Exception:
                if not manual:
                    raise
                continue
            if not manual:
                return replace(outcome, coalesced=True)

        try:
            outcome = self._run_pass()
        except BaseException as e:
            with self._state_lock:
                self._inflight = None
            future.set_exception(e)
            raise

        with self._state_lock:
            self._inflight = None
        self._last_outcome = outcome
        future.set_result(outcome)
        return outcome

    def _run_pass(self) -> SyncOutcome:
        with self._pass_lock:
            pass_id = next(self._pass_ids)
            outcome = SyncOutcome(pass_id=pass_id)

            if not self._initial_discovery_done and self.store.count_jobs() == 0:
                self._initial_discovery_done = True
                if self.client.supports_discovery:
                    logger.info("Job store is empty, discovering jobs on the cluster first")
                    outcome.absorb(self._discover(pass_id))

            jobs = self.store.list_syncable_jobs()
            logger.info(f"Sync pass {pass_id}: checking {len(jobs)} jobs")

            for job in jobs:
                outcome.jobs_checked += 1
                try:
                    status = self.client.query_status(job.remote_job_id)
                except JobRunnerError as e:
                    logger.warning(f"Sync pass {pass_id}: status query failed for {job.job_id}: {e}")
                    outcome.failures.append(TransportFailure(
                        operation="query_status",
                        message=str(e),
                        job_id=job.job_id,
                        remote_job_id=job.remote_job_id,
                    ))
                    continue

                self._apply(job, status, pass_id, outcome)

            outcome.finished_at = now_iso()
            logger.info(
                f"Sync pass {pass_id} finished: {outcome.jobs_updated} updated, "
                f"{len(outcome.presumed_terminal)} presumed terminal, "
                f"{len(outcome.failures)} failures"
            )
            return outcome

    def _apply(self, job: Job, status, pass_id: int, outcome: SyncOutcome) -> None:
        if isinstance(status, NotFound):
            misses = job.missing_passes + 1
            if misses >= self.missing_pass_threshold:
                updated = self.store.apply_observation(
                    job.job_id,
                    pass_id,
                    state=JobState.UNKNOWN,
                    missing_passes=misses,
                    error_info=(
                        f"Scheduler has no record of job {job.remote_job_id} "
                        f"after {misses} sync passes"
                    ),
                )
                if updated is not None and updated.state == JobState.UNKNOWN:
                    outcome.presumed_terminal.append(job.job_id)
            else:
                logger.info(
                    f"Job {job.job_id}: remote job {job.remote_job_id} not found "
                    f"({misses}/{self.missing_pass_threshold})"
                )
                updated = self.store.apply_observation(job.job_id, pass_id, missing_passes=misses)
        else:
            updated = self.store.apply_observation(
                job.job_id,
                pass_id,
                state=map_remote_status(status),
                remote_state=status.state.value,
                runtime=status.runtime,
                exit_code=status.exit_code,
                missing_passes=0,
            )

        if updated is None:
            if self.store.get_job(job.job_id) is not None:
                outcome.discarded_stale.append(job.job_id)
            return

        if updated.state != job.state:
            outcome.deltas.append(JobDelta(
                job_id=job.job_id,
                remote_job_id=job.remote_job_id,
                before=job.state,
                after=updated.state,
            ))

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(self) -> SyncOutcome:
        """
        Import cluster jobs that have no local record.

        Idempotent: a remote id already in the store is skipped. Gateways
        without discovery support make this a logged no-op.
        """
        with self._pass_lock:
            pass_id = next(self._pass_ids)
            outcome = self._discover(pass_id)
            outcome.finished_at = now_iso()
            return outcome

    def _discover(self, pass_id: int) -> SyncOutcome:
        outcome = SyncOutcome(pass_id=pass_id)

        try:
            remote_jobs = self.client.list_owned_jobs()
        except UnsupportedCapabilityError:
            logger.info("Gateway does not support discovery, skipping")
            return outcome
        except JobRunnerError as e:
            logger.warning(f"Discovery failed: {e}")
            outcome.failures.append(TransportFailure(operation="list_owned_jobs", message=str(e)))
            return outcome

        for remote_job in remote_jobs:
            if not remote_job.remote_job_id:
                logger.warning(f"Skipping remote job {remote_job.name!r} without a scheduler id")
                outcome.failures.append(TransportFailure(
                    operation="discover",
                    message=f"Remote job {remote_job.name!r} has no scheduler id",
                ))
                continue

            job = self.store.insert_discovered(self._job_from_remote(remote_job))
            if job is not None:
                logger.info(f"Discovered remote job {remote_job.remote_job_id} as {job.job_id}")
                outcome.discovered.append(job.job_id)

        logger.info(f"Discovery: {len(remote_jobs)} remote jobs, {len(outcome.discovered)} new")
        return outcome

    @staticmethod
    def _job_from_remote(remote_job: RemoteJob) -> Job:
        now = now_iso()
        return Job(
            job_id=generate_uuid(),
            name=remote_job.name or f"slurm-{remote_job.remote_job_id}",
            request=remote_job.to_request(),
            state=JobState.DISCOVERED,
            remote_job_id=remote_job.remote_job_id,
            remote_state=remote_job.state.value,
            submitted_at=now,
            created_at=now,
            updated_at=now,
        )

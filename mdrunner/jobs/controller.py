"""
Job lifecycle controller.

Create, submit, cancel and delete jobs. Every request is validated before
it is persisted, and every gateway call that changes remote state is
gated so local state only moves after the cluster confirmed the change.
"""

import logging
from typing import Optional

from mdrunner.cluster.validator import AdmissionValidator, ResourceRequest
from mdrunner.errors import (
    ConsistencyError,
    TransportError,
    ValidationError,
)
from mdrunner.gateway.base import GatewayClient, JobLogs, SubmissionSpec
from .entities import DeleteResult, Job, JobState
from .store import JobStore


logger = logging.getLogger(__name__)


class JobLifecycleController:
    """
    User-facing job operations.

    Submission is never retried automatically: a failed submit leaves the
    job VALIDATED with its error recorded, and the caller decides.
    """

    def __init__(
        self,
        store: JobStore,
        client: GatewayClient,
        validator: Optional[AdmissionValidator] = None,
    ):
        self.store = store
        self.client = client
        self.validator = validator or AdmissionValidator()

    # =========================================================================
    # Create / read
    # =========================================================================

    def create_job(
        self,
        name: str,
        request: ResourceRequest,
        simulation_config: Optional[dict] = None,
        input_files: Optional[list] = None,
    ) -> Job:
        """
        Validate and persist a new job in CREATED state.

        Raises:
            ValidationError: carrying every issue found in name and request
        """
        result = self.validator.validate_job(name, request)
        if not result.is_valid:
            logger.info(f"Rejected job {name!r}: {len(result.issues)} issues")
            raise ValidationError(result)

        job = Job.create(
            name=name,
            request=request,
            simulation_config=simulation_config,
            input_files=input_files,
        )
        self.store.create_job(job)
        logger.info(
            f"Created job {job.job_id} ({name}: {request.cores} cores, "
            f"{request.memory_gb}GB, {request.walltime} on {request.partition}/{request.qos})"
        )
        return job

    def get_job(self, job_id: str) -> Job:
        """Raises JobNotFoundError if the job doesn't exist."""
        return self.store.require_job(job_id)

    def list_jobs(self, state: Optional[JobState] = None) -> list[Job]:
        return self.store.list_jobs(state)

    # =========================================================================
    # Submit
    # =========================================================================

    def submit_job(self, job_id: str) -> Job:
        """
        Submit a CREATED or VALIDATED job to the scheduler.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConsistencyError: If the job is past submission or another
                submission for it is in flight
            ValidationError: If the request no longer passes policy
            SubmissionError: If the scheduler rejected the job
            TransportError: If the cluster could not be reached
        """
        job = self.store.require_job(job_id)
        if job.state not in (JobState.CREATED, JobState.VALIDATED):
            raise ConsistencyError(
                f"Job {job_id} cannot be submitted from state {job.state.value}"
            )

        result = self.validator.validate(job.request)
        if not result.is_valid:
            raise ValidationError(result)

        job = self.store.claim_for_submission(job_id)
        spec = SubmissionSpec(
            job_id=job.job_id,
            name=job.name,
            request=job.request,
            simulation_config=job.simulation_config,
        )

        remote_job_id = None
        try:
            remote_job_id = self.client.submit(spec, job.input_files)
            return self.store.mark_submitted(job_id, remote_job_id)
        except Exception as e:
            if remote_job_id is None:
                logger.error(f"Submission of job {job_id} failed: {e}")
                error_info = str(e)
            else:
                logger.error(f"Job {job_id} was accepted as {remote_job_id} but not recorded: {e}")
                error_info = f"Accepted as remote job {remote_job_id} but not recorded: {e}"
            self.store.release_submission(job_id, error_info=error_info)
            raise
        finally:
            # no-op unless the claim is still held
            self.store.release_submission(job_id, error_info="Submission interrupted")

    # =========================================================================
    # Cancel / delete
    # =========================================================================

    def cancel_job(self, job_id: str) -> Job:
        """
        Cancel a job and keep its record.

        Jobs never submitted are cancelled locally. Submitted jobs move to
        CANCELLED only after the scheduler accepted the cancellation.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConsistencyError: If the job is already terminal or mid-submission
            TransportError: If the cancellation could not be delivered
        """
        job = self.store.require_job(job_id)
        if job.is_terminal():
            raise ConsistencyError(f"Job {job_id} is already {job.state.value}")
        if job.submitting:
            raise ConsistencyError(f"Job {job_id} is being submitted")

        if job.remote_job_id is not None:
            self.client.cancel(job.remote_job_id)

        return self.store.transition(job_id, JobState.CANCELLED)

    def delete_job(self, job_id: str, delete_remote: bool = False) -> DeleteResult:
        """
        Delete a job record, optionally cancelling it on the cluster first.

        A local-only delete removes the record in any state, including
        while a submission claim is held. With delete_remote on a
        non-terminal job the local record is only removed once
        cancellation succeeded. A failed cancellation is returned in the
        result and the record is kept.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConsistencyError: If delete_remote is asked for an active job
                with no remote id, or for a job mid-submission
        """
        job = self.store.require_job(job_id)
        if not delete_remote:
            deleted = self.store.delete_job(job_id)
            return DeleteResult(job_id=job_id, deleted=deleted)

        if job.submitting:
            raise ConsistencyError(f"Job {job_id} is being submitted")

        if job.is_terminal():
            deleted = self.store.delete_job(job_id)
            return DeleteResult(job_id=job_id, deleted=deleted)

        if job.remote_job_id is None:
            raise ConsistencyError(
                f"Job {job_id} has no remote scheduler id; delete it locally instead"
            )

        try:
            self.client.cancel(job.remote_job_id)
        except TransportError as e:
            logger.error(f"Cancel of {job.remote_job_id} failed, keeping job {job_id}: {e}")
            return DeleteResult(job_id=job_id, deleted=False, error=e)

        deleted = self.store.delete_job(job_id)
        return DeleteResult(job_id=job_id, deleted=deleted, remote_cancelled=True)

    # =========================================================================
    # Logs
    # =========================================================================

    def refetch_logs(self, job_id: str) -> JobLogs:
        """
        Fetch the job's scheduler stdout/stderr and cache them on the job.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConsistencyError: If the job was never submitted
            UnsupportedCapabilityError: If the gateway can't fetch logs
            TransportError: If the cluster could not be reached
        """
        job = self.store.require_job(job_id)
        if job.remote_job_id is None:
            raise ConsistencyError(f"Job {job_id} has not been submitted")

        logs = self.client.fetch_logs(job.remote_job_id)
        self.store.save_logs(job_id, logs.stdout, logs.stderr)
        return logs

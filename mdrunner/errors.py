"""
Job runner exceptions.

Pure computations (validation, advice) never raise; these are raised by
the controller, the store and the gateway boundary.
"""

from typing import Optional


class JobRunnerError(Exception):
    """Base exception for all job runner errors."""
    pass


class ValidationError(JobRunnerError):
    """
    Raised when a request fails admission.

    Carries the full ValidationResult so every issue can be shown,
    not only the first.
    """

    def __init__(self, result):
        self.result = result
        issues = "; ".join(result.issues) or "validation failed"
        super().__init__(f"Validation failed: {issues}")


class TransportError(JobRunnerError):
    """
    Raised when the cluster could not be reached or did not answer in time.

    Always scoped to one gateway operation; local state is unchanged.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        remote_job_id: Optional[str] = None,
    ):
        self.operation = operation
        self.remote_job_id = remote_job_id
        super().__init__(message)


class SubmissionError(JobRunnerError):
    """Raised when the scheduler rejected a submission."""
    pass


class ConsistencyError(JobRunnerError):
    """
    Raised when an operation does not fit the job's current state.

    Examples:
    - Submitting a job that is already submitted
    - A concurrent duplicate submission
    - Cancelling remotely a job with no remote id
    """
    pass


class InvalidTransitionError(ConsistencyError):
    """Raised when a state change would move a job backward."""

    def __init__(self, job_id: str, current, target):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Job {job_id}: cannot transition {current.value} -> {target.value}"
        )


class JobNotFoundError(JobRunnerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class UnsupportedCapabilityError(JobRunnerError):
    """Raised when the gateway does not offer an optional capability."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"Gateway does not support {capability}")

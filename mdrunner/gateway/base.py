"""
Remote scheduler gateway contract.

The gateway is the only component that talks to the cluster. Concrete
gateways implement RemoteSchedulerGateway; the rest of the system calls
them through GatewayClient, which bounds every call with a timeout and
retries idempotent calls on transient transport errors.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from mdrunner.cluster.validator import ResourceRequest
from mdrunner.errors import (
    JobRunnerError,
    TransportError,
    UnsupportedCapabilityError,
)


logger = logging.getLogger(__name__)


class RemoteState(str, Enum):
    """Job state as reported by the scheduler."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"
    NODE_FAIL = "NODE_FAIL"
    PREEMPTED = "PREEMPTED"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"

    def is_terminal(self) -> bool:
        return self not in (RemoteState.PENDING, RemoteState.RUNNING, RemoteState.COMPLETING)


@dataclass(frozen=True)
class RemoteStatus:
    """One observation of a job's scheduler state."""

    state: RemoteState
    exit_code: Optional[int] = None
    runtime: Optional[str] = None


class NotFound:
    """Marker: the scheduler has no record of the job at all."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = NotFound()

StatusResult = Union[RemoteStatus, NotFound]


@dataclass(frozen=True)
class RemoteJob:
    """
    A job owned by the cluster user, as listed by the scheduler.

    Resource fields are whatever the scheduler reports and may be None.
    """

    remote_job_id: Optional[str]
    name: str
    state: RemoteState
    cores: Optional[int] = None
    memory_gb: Optional[float] = None
    walltime: Optional[str] = None
    partition: Optional[str] = None
    qos: Optional[str] = None
    work_dir: Optional[str] = None

    def to_request(self) -> ResourceRequest:
        return ResourceRequest(
            cores=self.cores,
            memory_gb=self.memory_gb,
            walltime=self.walltime,
            partition=self.partition,
            qos=self.qos,
        )


@dataclass(frozen=True)
class JobLogs:
    """Scheduler stdout/stderr captured for a job."""

    stdout: Optional[str] = None
    stderr: Optional[str] = None


@dataclass(frozen=True)
class SubmissionSpec:
    """Everything the gateway needs to render and submit a batch script."""

    job_id: str
    name: str
    request: ResourceRequest
    simulation_config: dict = field(default_factory=dict)


class RemoteSchedulerGateway(ABC):
    """
    Boundary to the cluster scheduler.

    submit, query_status and cancel are required. Discovery
    (list_owned_jobs) and log retrieval (fetch_logs) are optional and
    advertised through the supports_* flags.
    """

    supports_discovery: bool = False
    supports_log_refetch: bool = False

    @abstractmethod
    def submit(self, spec: SubmissionSpec, files: list) -> str:
        """
        Submit a job and return the scheduler's job id.

        Raises:
            SubmissionError: the scheduler rejected the job
            TransportError: the cluster could not be reached
        """

    @abstractmethod
    def query_status(self, remote_job_id: str) -> StatusResult:
        """
        Return the job's current status, or NOT_FOUND when neither the
        active queue nor accounting knows the id.
        """

    @abstractmethod
    def cancel(self, remote_job_id: str) -> None:
        """Cancel a job. Cancelling a finished job succeeds."""

    def list_owned_jobs(self) -> list:
        """List jobs owned by the configured user."""
        raise UnsupportedCapabilityError("discovery")

    def fetch_logs(self, remote_job_id: str) -> JobLogs:
        """Fetch the scheduler stdout/stderr files for a job."""
        raise UnsupportedCapabilityError("log refetch")


# =============================================================================
# Retry policy
# =============================================================================

TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "temporary",
    "busy",
    "unavailable",
    "interrupted",
    "broken pipe",
)

PERMANENT_KEYWORDS = (
    "authentication",
    "permission",
    "access denied",
    "unauthorized",
)


def is_transient(error: Exception) -> bool:
    """Classify a transport error message as worth retrying."""
    message = str(error).lower()
    if any(keyword in message for keyword in PERMANENT_KEYWORDS):
        return False
    return any(keyword in message for keyword in TRANSIENT_KEYWORDS)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter."""

    max_attempts: int = 2
    base_delay: float = 0.2
    max_delay: float = 2.0
    multiplier: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay


QUICK_RETRY = RetryPolicy()
NO_RETRY = RetryPolicy(max_attempts=1)


# =============================================================================
# Client
# =============================================================================


class GatewayClient:
    """
    Wraps a gateway so no call can hang the caller.

    Every call runs on a worker thread and is abandoned after
    `timeout` seconds with a TransportError. submit is never retried:
    a lost reply could mean the job was already accepted.
    """

    def __init__(
        self,
        gateway: RemoteSchedulerGateway,
        timeout: float = 60.0,
        retry_policy: RetryPolicy = QUICK_RETRY,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.timeout = timeout
        self.retry_policy = retry_policy
        self._sleep = sleep
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gateway")

    @property
    def supports_discovery(self) -> bool:
        return self.gateway.supports_discovery

    @property
    def supports_log_refetch(self) -> bool:
        return self.gateway.supports_log_refetch

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def submit(self, spec: SubmissionSpec, files: list) -> str:
        return self._call("submit", self.gateway.submit, spec, files, retry_policy=NO_RETRY)

    def query_status(self, remote_job_id: str) -> StatusResult:
        return self._call("query_status", self.gateway.query_status, remote_job_id,
                          remote_job_id=remote_job_id)

    def cancel(self, remote_job_id: str) -> None:
        self._call("cancel", self.gateway.cancel, remote_job_id, remote_job_id=remote_job_id)

    def list_owned_jobs(self) -> list:
        if not self.gateway.supports_discovery:
            raise UnsupportedCapabilityError("discovery")
        return self._call("list_owned_jobs", self.gateway.list_owned_jobs)

    def fetch_logs(self, remote_job_id: str) -> JobLogs:
        if not self.gateway.supports_log_refetch:
            raise UnsupportedCapabilityError("log refetch")
        return self._call("fetch_logs", self.gateway.fetch_logs, remote_job_id,
                          remote_job_id=remote_job_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _call(
        self,
        operation: str,
        fn: Callable,
        *args,
        retry_policy: Optional[RetryPolicy] = None,
        remote_job_id: Optional[str] = None,
    ):
        policy = retry_policy or self.retry_policy
        attempt = 1
        while True:
            try:
                return self._call_once(operation, fn, args, remote_job_id)
            except TransportError as e:
                if attempt >= policy.max_attempts or not is_transient(e):
                    raise
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{operation} failed (attempt {attempt}/{policy.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                self._sleep(delay)
                attempt += 1

    def _call_once(self, operation: str, fn: Callable, args: tuple, remote_job_id: Optional[str]):
        future = self._pool.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TransportError(
                f"{operation} timed out after {self.timeout}s",
                operation=operation,
                remote_job_id=remote_job_id,
            )
        except JobRunnerError:
            raise
        except Exception as e:
            logger.error(f"Unexpected gateway error during {operation}: {e}", exc_info=True)
            raise TransportError(
                f"{operation} failed: {e}",
                operation=operation,
                remote_job_id=remote_job_id,
            ) from e

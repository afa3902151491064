"""
Remote scheduler gateways.
"""

from .base import (
    GatewayClient,
    JobLogs,
    NOT_FOUND,
    NotFound,
    QUICK_RETRY,
    NO_RETRY,
    RemoteJob,
    RemoteSchedulerGateway,
    RemoteState,
    RemoteStatus,
    RetryPolicy,
    SubmissionSpec,
    is_transient,
)
from .memory import InMemorySchedulerGateway
from .slurm import (
    CommandResult,
    LocalCommandRunner,
    SlurmGateway,
    parse_exit_code,
    parse_sbatch_output,
    parse_slurm_state,
    parse_squeue_line,
)

__all__ = [
    # Contract
    "GatewayClient",
    "JobLogs",
    "NOT_FOUND",
    "NotFound",
    "QUICK_RETRY",
    "NO_RETRY",
    "RemoteJob",
    "RemoteSchedulerGateway",
    "RemoteState",
    "RemoteStatus",
    "RetryPolicy",
    "SubmissionSpec",
    "is_transient",
    # Implementations
    "InMemorySchedulerGateway",
    "SlurmGateway",
    "LocalCommandRunner",
    "CommandResult",
    # Parsers
    "parse_exit_code",
    "parse_sbatch_output",
    "parse_slurm_state",
    "parse_squeue_line",
]

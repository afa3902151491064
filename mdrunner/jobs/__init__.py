"""
Job lifecycle: storage, submission, reconciliation.

Public API exports for job runner components.
"""

from .entities import (
    ALLOWED_TRANSITIONS,
    DeleteResult,
    Job,
    JobDelta,
    JobState,
    SYNCABLE_STATES,
    SyncOutcome,
    TERMINAL_STATES,
    TransportFailure,
    can_transition,
)
from .store import JobStore
from .reconciler import SyncReconciler, map_remote_status
from .controller import JobLifecycleController
from .auto_sync import AutoSyncState, AutoSyncTimer
from .service import JobRunnerService, build_gateway

__all__ = [
    # Entities
    "ALLOWED_TRANSITIONS",
    "DeleteResult",
    "Job",
    "JobDelta",
    "JobState",
    "SYNCABLE_STATES",
    "SyncOutcome",
    "TERMINAL_STATES",
    "TransportFailure",
    "can_transition",
    # Components
    "JobStore",
    "SyncReconciler",
    "map_remote_status",
    "JobLifecycleController",
    "AutoSyncState",
    "AutoSyncTimer",
    # Service
    "JobRunnerService",
    "build_gateway",
]

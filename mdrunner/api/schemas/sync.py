"""
Sync API schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from mdrunner.jobs.entities import SyncOutcome


class JobDeltaResponse(BaseModel):
    job_id: str
    remote_job_id: Optional[str] = None
    before: str
    after: str


class TransportFailureResponse(BaseModel):
    operation: str
    message: str
    job_id: Optional[str] = None
    remote_job_id: Optional[str] = None


class SyncOutcomeResponse(BaseModel):
    """Result of a sync or discovery pass."""

    pass_id: int
    success: bool = Field(..., description="False if any gateway call failed")
    coalesced: bool = Field(default=False, description="Served by a pass already in flight")
    jobs_checked: int = 0
    jobs_updated: int = 0
    deltas: List[JobDeltaResponse] = Field(default_factory=list)
    discovered: List[str] = Field(default_factory=list, description="Job ids imported from the cluster")
    presumed_terminal: List[str] = Field(default_factory=list, description="Job ids now UNKNOWN")
    failures: List[TransportFailureResponse] = Field(default_factory=list)
    discarded_stale: List[str] = Field(default_factory=list)
    started_at: str
    finished_at: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: SyncOutcome) -> "SyncOutcomeResponse":
        return cls(
            pass_id=outcome.pass_id,
            success=outcome.success,
            coalesced=outcome.coalesced,
            jobs_checked=outcome.jobs_checked,
            jobs_updated=outcome.jobs_updated,
            deltas=[
                JobDeltaResponse(
                    job_id=d.job_id,
                    remote_job_id=d.remote_job_id,
                    before=d.before.value,
                    after=d.after.value,
                )
                for d in outcome.deltas
            ],
            discovered=list(outcome.discovered),
            presumed_terminal=list(outcome.presumed_terminal),
            failures=[
                TransportFailureResponse(
                    operation=f.operation,
                    message=f.message,
                    job_id=f.job_id,
                    remote_job_id=f.remote_job_id,
                )
                for f in outcome.failures
            ],
            discarded_stale=list(outcome.discarded_stale),
            started_at=outcome.started_at,
            finished_at=outcome.finished_at,
        )


class AutoSyncRequest(BaseModel):
    interval_minutes: float = Field(..., ge=0, description="Minutes between passes; 0 disables")


class SyncStatusResponse(BaseModel):
    auto_sync_enabled: bool
    auto_sync_running: bool
    interval_minutes: float
    is_syncing: bool
    last_sync_at: Optional[str] = None
    last_pass_id: Optional[int] = None
    job_counts: dict = Field(default_factory=dict)

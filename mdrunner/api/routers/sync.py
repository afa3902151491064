"""
Sync router.

Reconciliation is a control-plane concern, kept under /sync rather than
as a sub-resource of /jobs.
"""

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool

from ..schemas.sync import AutoSyncRequest, SyncOutcomeResponse, SyncStatusResponse
from .._service_state import get_job_service


router = APIRouter()


@router.post("", response_model=SyncOutcomeResponse)
async def sync_jobs():
    """
    Reconcile every active job with the scheduler now.

    Waits for an automatic pass already in progress, then runs a fresh
    pass. Per-job gateway failures are listed in `failures`.
    """
    service = get_job_service()
    outcome = await run_in_threadpool(service.sync_jobs)
    return SyncOutcomeResponse.from_outcome(outcome)


@router.post("/discover", response_model=SyncOutcomeResponse)
async def discover_jobs():
    """Import cluster jobs that have no local record."""
    service = get_job_service()
    outcome = await run_in_threadpool(service.discover_jobs_from_server)
    return SyncOutcomeResponse.from_outcome(outcome)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status():
    """Auto sync configuration and the last pass."""
    service = get_job_service()
    status = await run_in_threadpool(service.get_sync_status)
    return SyncStatusResponse(**status)


@router.put("/auto", response_model=SyncStatusResponse)
async def configure_auto_sync(request: AutoSyncRequest):
    """Set the auto sync interval in minutes (0 disables)."""
    service = get_job_service()
    await run_in_threadpool(service.configure_auto_sync, request.interval_minutes)
    status = await run_in_threadpool(service.get_sync_status)
    return SyncStatusResponse(**status)

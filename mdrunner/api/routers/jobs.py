"""
Jobs router.

CRUD and lifecycle endpoints under /jobs. Store and cluster calls block,
so every handler runs them in the threadpool.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

from mdrunner.errors import JobRunnerError
from mdrunner.jobs.entities import JobState
from ..errors import http_error
from ..schemas.jobs import (
    JobCreateRequest,
    JobDeleteResponse,
    JobListResponse,
    JobLogsResponse,
    JobResponse,
)
from .._service_state import get_job_service


router = APIRouter()


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreateRequest):
    """
    Create a job after validating it against cluster policy.

    A request that fails validation returns 422 with the full
    validation result (issues, warnings, suggestions, field_errors).
    """
    service = get_job_service()
    try:
        job = await run_in_threadpool(
            service.create_job,
            request.name,
            request.resources.to_request(),
            request.simulation_config,
            request.input_files,
        )
    except JobRunnerError as e:
        raise http_error(e)
    return JobResponse.from_job(job)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    state: Optional[str] = Query(default=None, description="Filter by lifecycle state"),
):
    """List jobs in creation order."""
    service = get_job_service()

    filter_state = None
    if state is not None:
        try:
            filter_state = JobState(state.upper())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown state: {state}")

    jobs = await run_in_threadpool(service.get_all_jobs, filter_state)
    return JobListResponse(jobs=[JobResponse.from_job(j) for j in jobs], total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    """Get a job's last known status. Does not contact the cluster."""
    service = get_job_service()
    try:
        job = await run_in_threadpool(service.get_job_status, job_id)
    except JobRunnerError as e:
        raise http_error(e)
    return JobResponse.from_job(job)


@router.post("/{job_id}/submit", response_model=JobResponse)
async def submit_job(job_id: str):
    """
    Submit a CREATED or VALIDATED job.

    409 if the job was already submitted or a submission is in flight,
    400 if the scheduler rejected it, 503 if the cluster is unreachable.
    """
    service = get_job_service()
    try:
        job = await run_in_threadpool(service.submit_job, job_id)
    except JobRunnerError as e:
        raise http_error(e)
    return JobResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str):
    """Cancel a job on the cluster and keep its record as CANCELLED."""
    service = get_job_service()
    try:
        job = await run_in_threadpool(service.cancel_job, job_id)
    except JobRunnerError as e:
        raise http_error(e)
    return JobResponse.from_job(job)


@router.delete("/{job_id}", response_model=JobDeleteResponse)
async def delete_job(
    job_id: str,
    delete_remote: bool = Query(default=False, description="Cancel on the cluster first"),
):
    """
    Delete a job.

    With delete_remote=true the record is only removed after the
    cluster confirmed the cancellation; otherwise 503 is returned and
    the record is kept.
    """
    service = get_job_service()
    try:
        result = await run_in_threadpool(service.delete_job, job_id, delete_remote)
    except JobRunnerError as e:
        raise http_error(e)

    if result.error is not None:
        raise HTTPException(
            status_code=503,
            detail=f"Cancellation failed, job kept: {result.error}",
        )
    return JobDeleteResponse.from_result(result)


@router.post("/{job_id}/logs", response_model=JobLogsResponse)
async def refetch_logs(job_id: str):
    """Fetch the job's SLURM stdout/stderr from the cluster."""
    service = get_job_service()
    try:
        logs = await run_in_threadpool(service.refetch_logs, job_id)
    except JobRunnerError as e:
        raise http_error(e)
    return JobLogsResponse(job_id=job_id, stdout=logs.stdout, stderr=logs.stderr)

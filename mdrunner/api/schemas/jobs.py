"""
Job API schemas.

Request/response models for /jobs endpoints.
"""

from typing import List, Optional, Union
from pydantic import BaseModel, Field

from mdrunner.cluster.validator import ResourceRequest, ValidationResult, parse_memory_gb
from mdrunner.jobs.entities import DeleteResult, Job


# =============================================================================
# Resource / validation
# =============================================================================


class ResourceRequestModel(BaseModel):
    """Resources requested from the scheduler."""

    cores: int = Field(..., description="Number of CPU cores (SLURM ntasks)")
    memory: Union[float, str] = Field(
        ...,
        description="Memory in GB, as a number or a string such as '32GB' or '512MB'",
    )
    walltime: str = Field(..., description="Walltime as HH:MM:SS", examples=["24:00:00"])
    partition: str = Field(..., description="Partition id, e.g. 'amilan'")
    qos: str = Field(..., description="QoS id, e.g. 'normal'")

    def to_request(self) -> ResourceRequest:
        # Unparseable memory becomes None and is reported by validation
        return ResourceRequest(
            cores=self.cores,
            memory_gb=parse_memory_gb(self.memory),
            walltime=self.walltime,
            partition=self.partition,
            qos=self.qos,
        )


class ResourceResponse(BaseModel):
    """Resources of a job; fields are null when unknown (discovered jobs)."""

    cores: Optional[int] = None
    memory_gb: Optional[float] = None
    walltime: Optional[str] = None
    partition: Optional[str] = None
    qos: Optional[str] = None


class ValidationResultResponse(BaseModel):
    """Full validation outcome: blocking issues plus advice."""

    is_valid: bool = Field(..., description="True when there are no blocking issues")
    issues: List[str] = Field(default_factory=list, description="Blocking problems")
    warnings: List[str] = Field(default_factory=list, description="Non-blocking warnings")
    suggestions: List[str] = Field(default_factory=list, description="Optimization hints")
    field_errors: dict = Field(default_factory=dict, description="Field name -> first issue")

    @classmethod
    def from_result(cls, result: ValidationResult) -> "ValidationResultResponse":
        return cls(**result.to_dict())


# =============================================================================
# Jobs
# =============================================================================


class JobCreateRequest(BaseModel):
    """Request to create a new job."""

    name: str = Field(..., description="Job name (letters, digits, '-' and '_')")
    resources: ResourceRequestModel
    simulation_config: dict = Field(
        default_factory=dict,
        description="NAMD parameters (steps, temperature, timestep, outputname, dcd_freq, restart_freq)",
    )
    input_files: List[str] = Field(
        default_factory=list,
        description="Input file names staged into the job directory",
    )


class JobResponse(BaseModel):
    """Response representing a Job."""

    job_id: str = Field(..., description="Local job identifier")
    name: str
    state: str = Field(..., description="Lifecycle state")
    remote_job_id: Optional[str] = Field(default=None, description="SLURM job id once submitted")
    resources: ResourceResponse
    simulation_config: dict = Field(default_factory=dict)
    input_files: List[str] = Field(default_factory=list)
    remote_state: Optional[str] = Field(default=None, description="Last state reported by SLURM")
    runtime: Optional[str] = None
    exit_code: Optional[int] = None
    error_info: Optional[str] = None
    created_at: str
    updated_at: str
    submitted_at: Optional[str] = None
    last_synced_at: Optional[str] = None
    finished_at: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            job_id=job.job_id,
            name=job.name,
            state=job.state.value,
            remote_job_id=job.remote_job_id,
            resources=ResourceResponse(**job.request.to_dict()),
            simulation_config=job.simulation_config,
            input_files=job.input_files,
            remote_state=job.remote_state,
            runtime=job.runtime,
            exit_code=job.exit_code,
            error_info=job.error_info,
            created_at=job.created_at,
            updated_at=job.updated_at,
            submitted_at=job.submitted_at,
            last_synced_at=job.last_synced_at,
            finished_at=job.finished_at,
        )


class JobListResponse(BaseModel):
    """Response for job list."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of jobs returned")


class JobDeleteResponse(BaseModel):
    """Response for job deletion."""

    job_id: str
    deleted: bool
    remote_cancelled: bool = False
    error: Optional[str] = Field(default=None, description="Cancellation error when not deleted")

    @classmethod
    def from_result(cls, result: DeleteResult) -> "JobDeleteResponse":
        return cls(
            job_id=result.job_id,
            deleted=result.deleted,
            remote_cancelled=result.remote_cancelled,
            error=str(result.error) if result.error is not None else None,
        )


class JobLogsResponse(BaseModel):
    job_id: str
    stdout: Optional[str] = None
    stderr: Optional[str] = None

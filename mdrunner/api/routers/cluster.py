"""
Cluster router.

Read-only catalog, presets, validation and estimates. Nothing here
contacts the cluster.
"""

from typing import List

from fastapi import APIRouter, HTTPException, Query

from mdrunner.cluster.validator import walltime_to_hours
from ..schemas.cluster import (
    EstimateResponse,
    PartitionResponse,
    PresetResponse,
    QosResponse,
)
from ..schemas.jobs import ResourceRequestModel, ValidationResultResponse
from .._service_state import get_job_service


router = APIRouter()


@router.get("/partitions", response_model=List[PartitionResponse])
async def list_partitions():
    catalog = get_job_service().catalog
    return [
        PartitionResponse(
            id=p.id,
            title=p.title,
            description=p.description,
            category=p.category.value,
            max_cores=p.max_cores,
            max_memory_per_core_gb=p.max_memory_per_core_gb,
            max_walltime=p.max_walltime,
            nodes=p.nodes,
            cores_per_node=p.cores_per_node,
            gpu_type=p.gpu_type,
            gpu_count=p.gpu_count,
            is_standard=p.is_standard,
            allowed_qos=[q.id for q in catalog.qos_for_partition(p.id)],
        )
        for p in catalog.partitions
    ]


@router.get("/qos", response_model=List[QosResponse])
async def list_qos():
    catalog = get_job_service().catalog
    return [
        QosResponse(
            id=q.id,
            title=q.title,
            description=q.description,
            max_walltime_hours=q.max_walltime_hours,
            max_jobs=q.max_jobs,
            node_limit=q.node_limit,
            valid_partitions=sorted(q.valid_partitions),
            priority=q.priority.value,
            min_memory_gb=q.min_memory_gb,
        )
        for q in catalog.qos_options
    ]


def _preset_response(validator, preset) -> PresetResponse:
    partition = validator.catalog.get_partition(preset.partition)
    hours = walltime_to_hours(preset.walltime) or 0.0
    gpu_count = partition.gpu_count if partition is not None and partition.gpu_count else 1
    return PresetResponse(
        id=preset.id,
        name=preset.name,
        description=preset.description,
        category=preset.category,
        cores=preset.cores,
        memory_gb=preset.memory_gb,
        walltime=preset.walltime,
        partition=preset.partition,
        qos=preset.qos,
        requires_gpu=preset.requires_gpu,
        estimated_cost=validator.calculate_cost(preset.cores, hours, preset.requires_gpu, gpu_count),
        estimated_queue=validator.estimate_queue_time(preset.cores, preset.partition),
    )


@router.get("/presets", response_model=List[PresetResponse])
async def list_presets():
    """Job presets with their estimated cost and queue time."""
    validator = get_job_service().validator
    return [_preset_response(validator, preset) for preset in validator.catalog.presets]


@router.get("/presets/{preset_id}", response_model=PresetResponse)
async def get_preset(preset_id: str):
    validator = get_job_service().validator
    preset = validator.catalog.get_preset(preset_id)
    if preset is None:
        raise HTTPException(status_code=404, detail=f"Unknown preset: {preset_id}")
    return _preset_response(validator, preset)


@router.post("/validate", response_model=ValidationResultResponse)
async def validate_resources(request: ResourceRequestModel):
    """Validate a resource request without creating a job."""
    result = get_job_service().validate_request(request.to_request())
    return ValidationResultResponse.from_result(result)


@router.get("/estimate", response_model=EstimateResponse)
async def estimate(
    cores: int = Query(..., gt=0),
    walltime_hours: float = Query(..., gt=0),
    partition: str = Query(...),
    gpu_count: int = Query(default=0, ge=0, description="GPUs requested (0 for CPU jobs)"),
):
    """Suggested QoS, queue wait band and SU cost for a planned job."""
    validator = get_job_service().validator
    if validator.catalog.get_partition(partition) is None:
        raise HTTPException(status_code=404, detail=f"Unknown partition: {partition}")

    return EstimateResponse(
        cores=cores,
        walltime_hours=walltime_hours,
        partition=partition,
        suggested_qos=validator.suggest_qos(walltime_hours, partition),
        estimated_queue=validator.estimate_queue_time(cores, partition),
        estimated_cost=validator.calculate_cost(cores, walltime_hours, gpu_count > 0, max(gpu_count, 1)),
    )

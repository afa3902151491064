"""
Cluster catalog API schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class PartitionResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    max_cores: int
    max_memory_per_core_gb: float
    max_walltime: str
    nodes: str = ""
    cores_per_node: str = ""
    gpu_type: Optional[str] = None
    gpu_count: Optional[int] = None
    is_standard: bool = False
    allowed_qos: List[str] = Field(default_factory=list)


class QosResponse(BaseModel):
    id: str
    title: str
    description: str
    max_walltime_hours: float
    max_jobs: int
    node_limit: int
    valid_partitions: List[str]
    priority: str
    min_memory_gb: Optional[float] = None


class PresetResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    cores: int
    memory_gb: float
    walltime: str
    partition: str
    qos: str
    requires_gpu: bool = False
    estimated_cost: int = Field(..., description="Estimated charge in SUs")
    estimated_queue: str


class EstimateResponse(BaseModel):
    """Advisory estimates for a planned job."""

    cores: int
    walltime_hours: float
    partition: str
    suggested_qos: str
    estimated_queue: str = Field(..., description="Advisory queue wait band, not a guarantee")
    estimated_cost: int = Field(..., description="Estimated charge in SUs")

"""
Cluster policy catalog.

Static description of the cluster's partitions, QoS classes, billing rates
and job presets. Values mirror the CURC Alpine cluster documentation.

The catalog is immutable after construction and safe to share between
threads without locking.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class PartitionCategory(str, Enum):
    """Coarse partition category shown to users."""

    COMPUTE = "compute"
    GPU = "gpu"
    MEMORY = "memory"
    TESTING = "testing"


class PartitionFamily(str, Enum):
    """
    Partition family used by the advisory heuristics.

    Category describes the hardware, family describes how the scheduler
    treats the partition (queue depth, default QoS).
    """

    GENERAL = "general"
    HIGH_CORE = "high_core"
    GPU = "gpu"
    MEMORY = "memory"
    TESTING = "testing"
    COMPILE = "compile"


class PriorityClass(str, Enum):
    STANDARD = "Standard"
    HIGH = "High"


@dataclass(frozen=True)
class PartitionSpec:
    """A named pool of cluster nodes and its per-job limits."""

    id: str
    title: str
    description: str
    category: PartitionCategory
    family: PartitionFamily
    max_cores: int
    max_memory_per_core_gb: float
    max_walltime: str
    nodes: str = ""
    cores_per_node: str = ""
    gpu_type: Optional[str] = None
    gpu_count: Optional[int] = None
    is_standard: bool = False

    @property
    def has_gpu(self) -> bool:
        return self.gpu_count is not None and self.gpu_count > 0


@dataclass(frozen=True)
class QosSpec:
    """Quality-of-service class: walltime and concurrency limits."""

    id: str
    title: str
    description: str
    max_walltime_hours: float
    max_jobs: int
    node_limit: int
    valid_partitions: frozenset
    priority: PriorityClass = PriorityClass.STANDARD
    min_memory_gb: Optional[float] = None

    def allows_partition(self, partition_id: str) -> bool:
        return partition_id in self.valid_partitions


@dataclass(frozen=True)
class BillingRates:
    """Service-unit charge rates (SU per core-hour / GPU-hour)."""

    cpu_per_core_hour: float = 1.0
    gpu_per_gpu_hour: float = 108.2


@dataclass(frozen=True)
class AdvisoryThresholds:
    """
    Thresholds used for warnings and suggestions only.

    None of these values ever block a submission.
    """

    small_job_cores: int = 16
    high_core_min_cores: int = 64
    memory_per_core_hint_gb: float = 2.0
    memory_hint_factor: float = 2.0
    long_run_hint_hours: float = 48.0
    long_qos_threshold_hours: float = 24.0


@dataclass(frozen=True)
class JobPreset:
    """Named starting point for a common kind of run."""

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


@dataclass(frozen=True)
class PolicyCatalog:
    """
    Read-only lookup of cluster policy.

    Use DEFAULT_CATALOG for the shipped cluster description, or build
    a custom one (tests, other clusters) with the same structure.
    """

    partitions: tuple
    qos_options: tuple
    billing: BillingRates = field(default_factory=BillingRates)
    thresholds: AdvisoryThresholds = field(default_factory=AdvisoryThresholds)
    presets: tuple = ()
    default_partition_id: str = "amilan"
    default_qos_id: str = "normal"
    long_qos_id: str = "long"
    memory_qos_id: str = "mem"
    testing_qos_id: str = "testing"
    compile_qos_id: str = "compile"

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_partition(self, partition_id: Optional[str]) -> Optional[PartitionSpec]:
        for partition in self.partitions:
            if partition.id == partition_id:
                return partition
        return None

    def get_qos(self, qos_id: Optional[str]) -> Optional[QosSpec]:
        for qos in self.qos_options:
            if qos.id == qos_id:
                return qos
        return None

    def get_preset(self, preset_id: str) -> Optional[JobPreset]:
        for preset in self.presets:
            if preset.id == preset_id:
                return preset
        return None

    def partition_ids(self) -> list[str]:
        return [p.id for p in self.partitions]

    def qos_ids(self) -> list[str]:
        return [q.id for q in self.qos_options]

    def qos_for_partition(self, partition_id: str) -> list[QosSpec]:
        """Return the QoS classes that accept jobs on the given partition."""
        return [q for q in self.qos_options if q.allows_partition(partition_id)]

    def partitions_by_category(self, category: PartitionCategory) -> list[PartitionSpec]:
        return [p for p in self.partitions if p.category == category]

    def with_thresholds(self, thresholds: AdvisoryThresholds) -> "PolicyCatalog":
        """Return a copy of this catalog with different advisory thresholds."""
        return PolicyCatalog(
            partitions=self.partitions,
            qos_options=self.qos_options,
            billing=self.billing,
            thresholds=thresholds,
            presets=self.presets,
            default_partition_id=self.default_partition_id,
            default_qos_id=self.default_qos_id,
            long_qos_id=self.long_qos_id,
            memory_qos_id=self.memory_qos_id,
            testing_qos_id=self.testing_qos_id,
            compile_qos_id=self.compile_qos_id,
        )


# =============================================================================
# Alpine cluster data
# =============================================================================

_STANDARD_QOS_PARTITIONS = frozenset({"amilan", "amilan128c", "aa100", "ami100", "al40"})

PARTITIONS = (
    PartitionSpec(
        id="amilan",
        title="Amilan (General Compute)",
        description="General purpose CPU nodes - default choice for most jobs",
        category=PartitionCategory.COMPUTE,
        family=PartitionFamily.GENERAL,
        max_cores=64,
        max_memory_per_core_gb=3.75,
        max_walltime="24H (7D with long QoS)",
        nodes="374+",
        cores_per_node="32/48/64",
        is_standard=True,
    ),
    PartitionSpec(
        id="amilan128c",
        title="Amilan 128-core",
        description="High-core-count CPU nodes for large parallel jobs",
        category=PartitionCategory.COMPUTE,
        family=PartitionFamily.HIGH_CORE,
        max_cores=128,
        max_memory_per_core_gb=2.01,
        max_walltime="24H (7D with long QoS)",
        nodes="16+",
        cores_per_node="128",
    ),
    PartitionSpec(
        id="amem",
        title="High Memory",
        description="Large-memory nodes; requires the mem QoS",
        category=PartitionCategory.MEMORY,
        family=PartitionFamily.MEMORY,
        max_cores=128,
        max_memory_per_core_gb=21.5,
        max_walltime="4H (7D with mem QoS)",
        nodes="24+",
        cores_per_node="48/64/128",
    ),
    PartitionSpec(
        id="aa100",
        title="NVIDIA A100 GPU",
        description="GPU nodes with NVIDIA A100 accelerators",
        category=PartitionCategory.GPU,
        family=PartitionFamily.GPU,
        max_cores=64,
        max_memory_per_core_gb=3.75,
        max_walltime="24H (7D with long QoS)",
        nodes="10+",
        cores_per_node="64",
        gpu_type="NVIDIA A100",
        gpu_count=3,
    ),
    PartitionSpec(
        id="ami100",
        title="AMD MI100 GPU",
        description="GPU nodes with AMD MI100 accelerators",
        category=PartitionCategory.GPU,
        family=PartitionFamily.GPU,
        max_cores=64,
        max_memory_per_core_gb=3.75,
        max_walltime="24H (7D with long QoS)",
        nodes="8+",
        cores_per_node="64",
        gpu_type="AMD MI100",
        gpu_count=3,
    ),
    PartitionSpec(
        id="al40",
        title="NVIDIA L40 GPU",
        description="GPU nodes with NVIDIA L40 accelerators",
        category=PartitionCategory.GPU,
        family=PartitionFamily.GPU,
        max_cores=64,
        max_memory_per_core_gb=3.75,
        max_walltime="24H (7D with long QoS)",
        nodes="2+",
        cores_per_node="64",
        gpu_type="NVIDIA L40",
        gpu_count=3,
    ),
    PartitionSpec(
        id="atesting",
        title="Testing (CPU)",
        description="Short CPU test runs with fast turnaround",
        category=PartitionCategory.TESTING,
        family=PartitionFamily.TESTING,
        max_cores=16,
        max_memory_per_core_gb=4.0,
        max_walltime="1 hour",
    ),
    PartitionSpec(
        id="atesting_a100",
        title="Testing (A100 GPU)",
        description="Short GPU test runs on an A100 MIG slice",
        category=PartitionCategory.TESTING,
        family=PartitionFamily.TESTING,
        max_cores=10,
        max_memory_per_core_gb=4.0,
        max_walltime="1 hour",
        gpu_type="NVIDIA A100 (MIG)",
        gpu_count=1,
    ),
    PartitionSpec(
        id="atesting_mi100",
        title="Testing (MI100 GPU)",
        description="Short GPU test runs on AMD MI100",
        category=PartitionCategory.TESTING,
        family=PartitionFamily.TESTING,
        max_cores=64,
        max_memory_per_core_gb=3.75,
        max_walltime="1 hour",
        gpu_type="AMD MI100",
        gpu_count=3,
    ),
    PartitionSpec(
        id="acompile",
        title="Compile",
        description="Compilation and build jobs",
        category=PartitionCategory.TESTING,
        family=PartitionFamily.COMPILE,
        max_cores=4,
        max_memory_per_core_gb=4.0,
        max_walltime="12 hours",
    ),
)

QOS_OPTIONS = (
    QosSpec(
        id="normal",
        title="Normal",
        description="Default QoS for most jobs (up to 24 hours)",
        max_walltime_hours=24,
        max_jobs=1000,
        node_limit=128,
        valid_partitions=_STANDARD_QOS_PARTITIONS,
    ),
    QosSpec(
        id="long",
        title="Long",
        description="Extended runs up to 7 days",
        max_walltime_hours=168,
        max_jobs=200,
        node_limit=20,
        valid_partitions=_STANDARD_QOS_PARTITIONS,
    ),
    QosSpec(
        id="mem",
        title="Memory",
        description="High-memory jobs on amem (256GB+ required)",
        max_walltime_hours=168,
        max_jobs=1000,
        node_limit=12,
        valid_partitions=frozenset({"amem"}),
        min_memory_gb=256,
    ),
    QosSpec(
        id="testing",
        title="Testing",
        description="Short test jobs with high priority",
        max_walltime_hours=1,
        max_jobs=5,
        node_limit=2,
        valid_partitions=frozenset({"atesting", "atesting_a100", "atesting_mi100"}),
        priority=PriorityClass.HIGH,
    ),
    QosSpec(
        id="compile",
        title="Compile",
        description="Compilation jobs on acompile",
        max_walltime_hours=12,
        max_jobs=999,
        node_limit=1,
        valid_partitions=frozenset({"acompile"}),
    ),
)

JOB_PRESETS = (
    JobPreset(
        id="small-test",
        name="Small Test",
        description="Quick test run for validating a system setup",
        category="test",
        cores=24,
        memory_gb=16,
        walltime="04:00:00",
        partition="amilan",
        qos="normal",
    ),
    JobPreset(
        id="production",
        name="Production Run",
        description="Standard production simulation",
        category="production",
        cores=48,
        memory_gb=32,
        walltime="24:00:00",
        partition="amilan",
        qos="normal",
    ),
    JobPreset(
        id="large-scale",
        name="Large Scale",
        description="Multi-day run on high-core-count nodes",
        category="large-scale",
        cores=128,
        memory_gb=64,
        walltime="168:00:00",
        partition="amilan128c",
        qos="long",
    ),
    JobPreset(
        id="gpu-accelerated",
        name="GPU Accelerated",
        description="NAMD CUDA run on A100 nodes",
        category="gpu",
        cores=64,
        memory_gb=48,
        walltime="24:00:00",
        partition="aa100",
        qos="normal",
        requires_gpu=True,
    ),
)

DEFAULT_CATALOG = PolicyCatalog(
    partitions=PARTITIONS,
    qos_options=QOS_OPTIONS,
    presets=JOB_PRESETS,
)

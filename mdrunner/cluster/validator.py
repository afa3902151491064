"""
Admission validation and resource advice.

Everything in this module is a pure function of its inputs and the
PolicyCatalog. Nothing here raises for bad user input: problems are
reported inside a ValidationResult so callers can render the full list.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Optional

from .catalog import DEFAULT_CATALOG, PartitionFamily, PolicyCatalog


_WALLTIME_RE = re.compile(r"^(?:(\d+)-)?(\d+):(\d{1,2}):(\d{1,2})$")
_MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)(?:I?B)?\s*$", re.IGNORECASE)
_JOB_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

MAX_JOB_NAME_LENGTH = 64


@dataclass(frozen=True)
class ResourceRequest:
    """
    Resources asked of the scheduler for one job.

    Any field may be None when the request is only partially known, which
    happens for jobs discovered on the cluster rather than created here.
    """

    cores: Optional[int] = None
    memory_gb: Optional[float] = None
    walltime: Optional[str] = None
    partition: Optional[str] = None
    qos: Optional[str] = None

    @classmethod
    def unknown(cls) -> "ResourceRequest":
        return cls()

    @property
    def walltime_hours(self) -> Optional[float]:
        if self.walltime is None:
            return None
        return walltime_to_hours(self.walltime)

    @property
    def is_complete(self) -> bool:
        return None not in (self.cores, self.memory_gb, self.walltime, self.partition, self.qos)

    def to_dict(self) -> dict:
        return {
            "cores": self.cores,
            "memory_gb": self.memory_gb,
            "walltime": self.walltime,
            "partition": self.partition,
            "qos": self.qos,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceRequest":
        return cls(
            cores=data.get("cores"),
            memory_gb=data.get("memory_gb"),
            walltime=data.get("walltime"),
            partition=data.get("partition"),
            qos=data.get("qos"),
        )


@dataclass
class ValidationResult:
    """
    Outcome of validating a ResourceRequest.

    issues block submission; warnings and suggestions are advice only.
    field_errors maps an input field name to its first blocking message.
    """

    is_valid: bool = True
    issues: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    suggestions: list = field(default_factory=list)
    field_errors: dict = field(default_factory=dict)

    def add_issue(self, message: str, field_name: Optional[str] = None) -> None:
        self.issues.append(message)
        self.is_valid = False
        if field_name is not None and field_name not in self.field_errors:
            self.field_errors[field_name] = message

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Append another result's messages to this one."""
        for message in other.issues:
            self.issues.append(message)
        for name, message in other.field_errors.items():
            self.field_errors.setdefault(name, message)
        self.warnings.extend(other.warnings)
        self.suggestions.extend(other.suggestions)
        self.is_valid = not self.issues
        return self

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
            "field_errors": dict(self.field_errors),
        }


# =============================================================================
# Parsing helpers
# =============================================================================


def walltime_to_hours(walltime: str) -> Optional[float]:
    """
    Convert "HH:MM:SS" (or SLURM "D-HH:MM:SS") to hours.

    Returns None for anything that does not parse.
    """
    if not isinstance(walltime, str):
        return None
    match = _WALLTIME_RE.match(walltime.strip())
    if match is None:
        return None
    days, hours, minutes, seconds = match.groups()
    if int(minutes) >= 60 or int(seconds) >= 60:
        return None
    total = int(days or 0) * 24 + int(hours)
    return total + int(minutes) / 60 + int(seconds) / 3600


def format_walltime(hours: float) -> str:
    """Format a number of hours as HH:MM:SS."""
    total_seconds = int(round(hours * 3600))
    h, rem = divmod(total_seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def parse_memory_gb(value) -> Optional[float]:
    """
    Parse a memory amount into GB.

    Accepts numbers (already GB) and strings such as "16GB", "16G",
    "512MB", "3840M" or "2TB". Returns None when unparseable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _MEMORY_RE.match(value)
    if match is None:
        return None
    amount = float(match.group(1))
    unit = match.group(2).upper()
    if unit == "K":
        return amount / (1024 * 1024)
    if unit == "M":
        return amount / 1024
    if unit == "T":
        return amount * 1024
    return amount


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


# =============================================================================
# Validation
# =============================================================================


def validate(
    request: ResourceRequest,
    catalog: Optional[PolicyCatalog] = None,
) -> ValidationResult:
    """
    Validate a resource request against cluster policy.

    Input sanity problems are collected first. An unknown partition or QoS
    stops evaluation there, since no limit can be checked without them.
    """
    catalog = catalog or DEFAULT_CATALOG
    thresholds = catalog.thresholds
    result = ValidationResult()

    cores = request.cores
    if cores is None or cores <= 0:
        result.add_issue("Cores must be greater than 0", "cores")
        cores = None

    memory = request.memory_gb
    if memory is None or memory <= 0:
        result.add_issue("Memory must be greater than 0", "memory")
        memory = None

    hours = None
    if not request.walltime:
        result.add_issue("Walltime is required", "walltime")
    else:
        hours = walltime_to_hours(request.walltime)
        if hours is None:
            result.add_issue(
                f"Invalid walltime format: {request.walltime} (expected HH:MM:SS)",
                "walltime",
            )
        elif hours <= 0:
            result.add_issue("Walltime must be greater than 0", "walltime")
            hours = None

    partition = catalog.get_partition(request.partition)
    qos = catalog.get_qos(request.qos)
    if partition is None:
        result.add_issue(f"Unknown partition: {request.partition}", "partition")
    if qos is None:
        result.add_issue(f"Unknown QOS: {request.qos}", "qos")
    if partition is None or qos is None:
        return result

    if cores is not None and cores > partition.max_cores:
        result.add_issue(
            f"Cores ({cores}) exceeds partition limit ({partition.max_cores})",
            "cores",
        )

    if memory is not None and cores is not None:
        ceiling = cores * partition.max_memory_per_core_gb
        if memory > ceiling:
            result.add_issue(
                f"Memory ({_fmt(memory)}GB) exceeds limit for {cores} cores ({ceiling:.1f}GB)",
                "memory",
            )

    if hours is not None and hours > qos.max_walltime_hours:
        result.add_issue(
            f"Walltime ({_fmt(round(hours, 2))}h) exceeds QOS limit ({_fmt(qos.max_walltime_hours)}h)",
            "walltime",
        )

    if qos.min_memory_gb is not None and memory is not None and memory < qos.min_memory_gb:
        result.add_issue(
            f"{qos.id} QOS requires at least {_fmt(qos.min_memory_gb)}GB memory",
            "memory",
        )

    if not qos.allows_partition(partition.id):
        result.add_issue(
            f'QOS "{qos.id}" is not valid for partition "{partition.id}"',
            "qos",
        )

    # Advice only from here on
    if cores is not None:
        if cores < thresholds.small_job_cores:
            result.warnings.append("Small core count may have longer queue times")
        if partition.family == PartitionFamily.HIGH_CORE and cores < thresholds.high_core_min_cores:
            result.warnings.append(
                f"Consider {catalog.default_partition_id} partition for jobs "
                f"under {thresholds.high_core_min_cores} cores"
            )

    if hours is not None and hours > thresholds.long_run_hint_hours and qos.id == catalog.default_qos_id:
        result.suggestions.append(
            f"Consider {catalog.long_qos_id} QOS for runs over "
            f"{_fmt(thresholds.long_run_hint_hours)} hours"
        )

    if memory is not None and cores is not None:
        proportional = cores * thresholds.memory_per_core_hint_gb
        if memory > proportional * thresholds.memory_hint_factor:
            result.suggestions.append(
                f"Consider reducing memory to ~{_fmt(proportional)}GB for better efficiency"
            )

    return result


def validate_job_name(name: Optional[str]) -> ValidationResult:
    """Check a job name is usable as a SLURM job name and directory name."""
    result = ValidationResult()
    if name is None or not name.strip():
        result.add_issue("Job name is required", "job_name")
        return result
    if len(name) > MAX_JOB_NAME_LENGTH:
        result.add_issue(
            f"Job name must be at most {MAX_JOB_NAME_LENGTH} characters",
            "job_name",
        )
    if not _JOB_NAME_RE.match(name):
        result.add_issue(
            "Job name may only contain letters, numbers, hyphens and underscores",
            "job_name",
        )
    return result


# =============================================================================
# Advice
# =============================================================================


def suggest_qos(
    walltime_hours: float,
    partition_id: str,
    catalog: Optional[PolicyCatalog] = None,
) -> str:
    """
    Pick the QoS a job on this partition should most likely use.

    Always returns an id present in the catalog's QoS list.
    """
    catalog = catalog or DEFAULT_CATALOG
    partition = catalog.get_partition(partition_id)
    family = partition.family if partition is not None else None

    if family == PartitionFamily.MEMORY:
        return catalog.memory_qos_id
    if family == PartitionFamily.TESTING:
        return catalog.testing_qos_id
    if family == PartitionFamily.COMPILE:
        return catalog.compile_qos_id
    if walltime_hours > catalog.thresholds.long_qos_threshold_hours:
        long_qos = catalog.get_qos(catalog.long_qos_id)
        if long_qos is not None and long_qos.allows_partition(partition_id):
            return catalog.long_qos_id
    return catalog.default_qos_id


def estimate_queue_time(
    cores: int,
    partition_id: str,
    catalog: Optional[PolicyCatalog] = None,
) -> str:
    """
    Rough queue wait band for a job of this size.

    Advisory text only; actual waits depend on cluster load.
    """
    catalog = catalog or DEFAULT_CATALOG
    partition = catalog.get_partition(partition_id)
    family = partition.family if partition is not None else PartitionFamily.GENERAL

    if family == PartitionFamily.GPU:
        if cores <= 32:
            return "1-4 hours"
        if cores <= 64:
            return "4-8 hours"
        return "> 8 hours"

    if family in (PartitionFamily.TESTING, PartitionFamily.COMPILE):
        return "< 15 minutes"

    if cores <= 24:
        return "< 30 minutes"
    if cores <= 48:
        return "< 2 hours"
    if cores <= 128:
        return "2-6 hours"
    return "> 6 hours"


def calculate_cost(
    cores: int,
    walltime_hours: float,
    has_gpu: bool = False,
    gpu_count: int = 1,
    catalog: Optional[PolicyCatalog] = None,
) -> int:
    """Estimated charge in service units, rounded half up."""
    catalog = catalog or DEFAULT_CATALOG
    rates = catalog.billing
    cost = cores * walltime_hours * rates.cpu_per_core_hour
    if has_gpu:
        cost += gpu_count * walltime_hours * rates.gpu_per_gpu_hour
    return int(math.floor(cost + 0.5))


class AdmissionValidator:
    """Validation and advice bound to one PolicyCatalog."""

    def __init__(self, catalog: Optional[PolicyCatalog] = None):
        self.catalog = catalog or DEFAULT_CATALOG

    def validate(self, request: ResourceRequest) -> ValidationResult:
        return validate(request, self.catalog)

    def validate_job(self, name: Optional[str], request: ResourceRequest) -> ValidationResult:
        """Validate a job name and its resource request together."""
        return validate_job_name(name).merge(validate(request, self.catalog))

    def suggest_qos(self, walltime_hours: float, partition_id: str) -> str:
        return suggest_qos(walltime_hours, partition_id, self.catalog)

    def estimate_queue_time(self, cores: int, partition_id: str) -> str:
        return estimate_queue_time(cores, partition_id, self.catalog)

    def calculate_cost(
        self,
        cores: int,
        walltime_hours: float,
        has_gpu: bool = False,
        gpu_count: int = 1,
    ) -> int:
        return calculate_cost(cores, walltime_hours, has_gpu, gpu_count, self.catalog)

"""
Cluster policy: partition/QoS catalog and admission validation.
"""

from .catalog import (
    AdvisoryThresholds,
    BillingRates,
    DEFAULT_CATALOG,
    JobPreset,
    PartitionCategory,
    PartitionFamily,
    PartitionSpec,
    PolicyCatalog,
    PriorityClass,
    QosSpec,
)
from .validator import (
    AdmissionValidator,
    ResourceRequest,
    ValidationResult,
    calculate_cost,
    estimate_queue_time,
    format_walltime,
    parse_memory_gb,
    suggest_qos,
    validate,
    validate_job_name,
    walltime_to_hours,
)

__all__ = [
    # Catalog
    "AdvisoryThresholds",
    "BillingRates",
    "DEFAULT_CATALOG",
    "JobPreset",
    "PartitionCategory",
    "PartitionFamily",
    "PartitionSpec",
    "PolicyCatalog",
    "PriorityClass",
    "QosSpec",
    # Validation
    "AdmissionValidator",
    "ResourceRequest",
    "ValidationResult",
    "calculate_cost",
    "estimate_queue_time",
    "format_walltime",
    "parse_memory_gb",
    "suggest_qos",
    "validate",
    "validate_job_name",
    "walltime_to_hours",
]

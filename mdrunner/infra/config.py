"""
Configuration from environment variables.

Entry points (CLI, API app) call load_dotenv() first, so a .env file in
the working directory is honoured.

Environment Variables:
- MDRUNNER_DB_PATH: SQLite job database (default: data/jobs.db)
- MDRUNNER_GATEWAY: "demo" (in-memory cluster) or "local-slurm" (default: demo)
- MDRUNNER_CLUSTER_USER: cluster account used for discovery (default: $USER)
- MDRUNNER_JOBS_ROOT: job directory root on the cluster (default: /scratch/alpine/<user>/mdrunner_jobs)
- MDRUNNER_GATEWAY_TIMEOUT_SECONDS: per-call gateway timeout (default: 60)
- MDRUNNER_AUTO_SYNC_MINUTES: auto sync interval, 0 disables (default: 0)
- MDRUNNER_MISSING_PASS_THRESHOLD: absent passes before UNKNOWN (default: 2)
- MDRUNNER_SMALL_JOB_CORES: small-job warning threshold (default: 16)
- MDRUNNER_MEMORY_PER_CORE_HINT_GB: memory suggestion baseline (default: 2.0)
- MDRUNNER_MEMORY_HINT_FACTOR: memory suggestion multiplier (default: 2.0)
- MDRUNNER_LOG_DIR: log file directory (default: logs)
- LOG_LEVEL: logging level (default: INFO)
"""

import getpass
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from mdrunner.cluster.catalog import AdvisoryThresholds, DEFAULT_CATALOG, PolicyCatalog

logger = logging.getLogger(__name__)

GATEWAY_DEMO = "demo"
GATEWAY_LOCAL_SLURM = "local-slurm"
GATEWAY_CHOICES = (GATEWAY_DEMO, GATEWAY_LOCAL_SLURM)


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def _default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("data/jobs.db")
    gateway: str = GATEWAY_DEMO
    cluster_user: str = field(default_factory=_default_user)
    jobs_root: str = ""
    gateway_timeout: float = 60.0
    auto_sync_minutes: float = 0
    missing_pass_threshold: int = 2
    thresholds: AdvisoryThresholds = field(default_factory=AdvisoryThresholds)
    log_dir: str = "logs"
    log_level: str = "INFO"
    api_auth_enabled: bool = False

    def catalog(self) -> PolicyCatalog:
        """The default cluster catalog with the configured advisory thresholds."""
        return DEFAULT_CATALOG.with_thresholds(self.thresholds)


def load_settings() -> Settings:
    """Read Settings from the environment."""
    defaults = AdvisoryThresholds()
    thresholds = AdvisoryThresholds(
        small_job_cores=_get_env_int("MDRUNNER_SMALL_JOB_CORES", defaults.small_job_cores),
        high_core_min_cores=defaults.high_core_min_cores,
        memory_per_core_hint_gb=_get_env_float(
            "MDRUNNER_MEMORY_PER_CORE_HINT_GB", defaults.memory_per_core_hint_gb
        ),
        memory_hint_factor=_get_env_float("MDRUNNER_MEMORY_HINT_FACTOR", defaults.memory_hint_factor),
        long_run_hint_hours=defaults.long_run_hint_hours,
        long_qos_threshold_hours=defaults.long_qos_threshold_hours,
    )

    gateway = os.getenv("MDRUNNER_GATEWAY", GATEWAY_DEMO).lower()
    if gateway not in GATEWAY_CHOICES:
        logger.warning(f"[Config] Unknown MDRUNNER_GATEWAY {gateway!r}, using {GATEWAY_DEMO}")
        gateway = GATEWAY_DEMO

    return Settings(
        db_path=Path(os.getenv("MDRUNNER_DB_PATH", "data/jobs.db")),
        gateway=gateway,
        cluster_user=os.getenv("MDRUNNER_CLUSTER_USER") or _default_user(),
        jobs_root=os.getenv("MDRUNNER_JOBS_ROOT", ""),
        gateway_timeout=_get_env_float("MDRUNNER_GATEWAY_TIMEOUT_SECONDS", 60.0),
        auto_sync_minutes=_get_env_float("MDRUNNER_AUTO_SYNC_MINUTES", 0),
        missing_pass_threshold=_get_env_int("MDRUNNER_MISSING_PASS_THRESHOLD", 2),
        thresholds=thresholds,
        log_dir=os.getenv("MDRUNNER_LOG_DIR", "logs"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        api_auth_enabled=_get_env_bool("API_AUTH_ENABLED", False),
    )

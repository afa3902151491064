"""
Job runner service - main entry point.

Wires the components together and exposes the public operations:
- JobStore (storage)
- AdmissionValidator (policy gate)
- GatewayClient (bounded calls to the scheduler)
- JobLifecycleController (create/submit/cancel/delete)
- SyncReconciler (sync/discover)
- AutoSyncTimer (optional periodic sync)

Usage:
    service = JobRunnerService.create(db_path, gateway)
    job = service.create_job("equil", request)
    service.submit_job(job.job_id)
    service.sync_jobs()
"""

import logging
from pathlib import Path
from typing import Optional

from mdrunner.cluster.catalog import PolicyCatalog
from mdrunner.cluster.validator import AdmissionValidator, ResourceRequest, ValidationResult
from mdrunner.gateway.base import GatewayClient, JobLogs, RemoteSchedulerGateway
from mdrunner.gateway.memory import InMemorySchedulerGateway
from mdrunner.gateway.slurm import LocalCommandRunner, SlurmGateway
from mdrunner.infra.config import GATEWAY_LOCAL_SLURM, Settings
from .auto_sync import AutoSyncTimer
from .controller import JobLifecycleController
from .entities import DeleteResult, Job, JobState, SyncOutcome
from .reconciler import DEFAULT_MISSING_PASS_THRESHOLD, SyncReconciler
from .store import JobStore


logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> RemoteSchedulerGateway:
    """Create the gateway selected by MDRUNNER_GATEWAY."""
    if settings.gateway == GATEWAY_LOCAL_SLURM:
        logger.info(f"Using local SLURM commands as {settings.cluster_user}")
        return SlurmGateway(
            runner=LocalCommandRunner(),
            username=settings.cluster_user,
            jobs_root=settings.jobs_root or None,
        )
    logger.info("Using in-memory demo cluster")
    return InMemorySchedulerGateway(auto_advance=True)


class JobRunnerService:
    """
    Coordinates all job runner components.

    Provides:
    - Component initialization and wiring
    - Auto sync start/stop
    - API-friendly methods for job operations
    """

    def __init__(
        self,
        store: JobStore,
        validator: AdmissionValidator,
        client: GatewayClient,
        controller: JobLifecycleController,
        reconciler: SyncReconciler,
        auto_sync: AutoSyncTimer,
    ):
        """
        Initialize JobRunnerService with all components.

        Use JobRunnerService.create() for convenient construction.
        """
        self.store = store
        self.validator = validator
        self.client = client
        self.controller = controller
        self.reconciler = reconciler
        self.auto_sync = auto_sync

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        gateway: RemoteSchedulerGateway,
        catalog: Optional[PolicyCatalog] = None,
        gateway_timeout: float = 60.0,
        auto_sync_minutes: float = 0,
        missing_pass_threshold: int = DEFAULT_MISSING_PASS_THRESHOLD,
        client: Optional[GatewayClient] = None,
    ) -> "JobRunnerService":
        """
        Create a fully wired JobRunnerService.

        Args:
            db_path: Path to SQLite database
            gateway: Scheduler gateway implementation
            catalog: Cluster policy (defaults to the shipped catalog)
            gateway_timeout: Seconds before a gateway call is abandoned
            auto_sync_minutes: Auto sync interval, 0 disables
            missing_pass_threshold: Absent passes before a job is UNKNOWN
            client: Pre-built GatewayClient (overrides gateway/timeout)

        Returns:
            Configured JobRunnerService
        """
        store = JobStore(db_path)
        validator = AdmissionValidator(catalog)
        client = client or GatewayClient(gateway, timeout=gateway_timeout)
        controller = JobLifecycleController(store, client, validator)
        reconciler = SyncReconciler(store, client, missing_pass_threshold=missing_pass_threshold)
        auto_sync = AutoSyncTimer(reconciler, interval_minutes=auto_sync_minutes)

        return cls(
            store=store,
            validator=validator,
            client=client,
            controller=controller,
            reconciler=reconciler,
            auto_sync=auto_sync,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobRunnerService":
        return cls.create(
            db_path=settings.db_path,
            gateway=build_gateway(settings),
            catalog=settings.catalog(),
            gateway_timeout=settings.gateway_timeout,
            auto_sync_minutes=settings.auto_sync_minutes,
            missing_pass_threshold=settings.missing_pass_threshold,
        )

    @property
    def catalog(self) -> PolicyCatalog:
        return self.validator.catalog

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def recover_on_startup(self) -> dict:
        """
        Clean up state left by a previous process.

        Submission claims still held in the store belong to a process that
        stopped mid-submit; they are released so the jobs can be deleted,
        cancelled or resubmitted. Idempotent.

        Returns:
            Recovery statistics
        """
        released = self.store.release_stale_claims()
        logger.info(f"Recovery complete: {len(released)} submission claims released")
        return {"claims_released": released}

    def start(self) -> bool:
        """
        Run startup recovery, then start auto sync if configured.

        Returns True if the timer runs.
        """
        self.recover_on_startup()
        return self.auto_sync.start()

    def stop(self, timeout: float = 30.0) -> None:
        self.auto_sync.stop(timeout=timeout)
        self.client.shutdown()

    @property
    def is_running(self) -> bool:
        return self.auto_sync.is_running

    # =========================================================================
    # Job operations
    # =========================================================================

    def validate_request(self, request: ResourceRequest) -> ValidationResult:
        return self.validator.validate(request)

    def create_job(
        self,
        name: str,
        request: ResourceRequest,
        simulation_config: Optional[dict] = None,
        input_files: Optional[list] = None,
    ) -> Job:
        return self.controller.create_job(name, request, simulation_config, input_files)

    def submit_job(self, job_id: str) -> Job:
        return self.controller.submit_job(job_id)

    def get_job_status(self, job_id: str) -> Job:
        return self.controller.get_job(job_id)

    def get_all_jobs(self, state: Optional[JobState] = None) -> list[Job]:
        return self.controller.list_jobs(state)

    def cancel_job(self, job_id: str) -> Job:
        return self.controller.cancel_job(job_id)

    def delete_job(self, job_id: str, delete_remote: bool = False) -> DeleteResult:
        return self.controller.delete_job(job_id, delete_remote=delete_remote)

    def refetch_logs(self, job_id: str) -> JobLogs:
        return self.controller.refetch_logs(job_id)

    # =========================================================================
    # Sync operations
    # =========================================================================

    def sync_jobs(self) -> SyncOutcome:
        """User-requested sync; never served by a pass that began earlier."""
        return self.reconciler.sync(manual=True)

    def discover_jobs_from_server(self) -> SyncOutcome:
        return self.reconciler.discover()

    def configure_auto_sync(self, interval_minutes: float) -> None:
        logger.info(f"Auto sync interval set to {interval_minutes} min")
        self.auto_sync.reconfigure(interval_minutes)

    def get_sync_status(self) -> dict:
        last = self.reconciler.last_outcome
        return {
            "auto_sync_enabled": self.auto_sync.enabled,
            "auto_sync_running": self.auto_sync.is_running,
            "interval_minutes": self.auto_sync.interval_minutes,
            "is_syncing": self.reconciler.is_syncing,
            "last_sync_at": last.finished_at if last is not None else None,
            "last_pass_id": last.pass_id if last is not None else None,
            "job_counts": self.store.count_jobs_by_state(),
        }

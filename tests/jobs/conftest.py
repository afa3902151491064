"""
Job runner test fixtures.

Base fixtures:
  - Empty temp-file database (":memory:" does not survive across connections)
  - In-memory scheduler with no automatic progression
  - GatewayClient without retries so injected failures surface once

Per-test fixtures:
  - Factories for CREATED, SUBMITTED and DISCOVERED jobs
"""

import pytest
import tempfile
from pathlib import Path
from typing import Callable, Generator

from mdrunner.cluster.validator import AdmissionValidator, ResourceRequest
from mdrunner.gateway.base import GatewayClient, NO_RETRY
from mdrunner.gateway.memory import InMemorySchedulerGateway
from mdrunner.jobs import (
    Job,
    JobLifecycleController,
    JobState,
    JobStore,
    SyncReconciler,
)


@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Provide a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_jobs.db"


@pytest.fixture
def store(temp_db_path: Path) -> JobStore:
    """Empty job store."""
    return JobStore(temp_db_path)


@pytest.fixture
def gateway() -> InMemorySchedulerGateway:
    """Scheduler double; jobs only move when a test moves them."""
    return InMemorySchedulerGateway()


@pytest.fixture
def client(gateway: InMemorySchedulerGateway) -> Generator[GatewayClient, None, None]:
    gateway_client = GatewayClient(gateway, timeout=2.0, retry_policy=NO_RETRY)
    yield gateway_client
    gateway_client.shutdown()


@pytest.fixture
def controller(store: JobStore, client: GatewayClient) -> JobLifecycleController:
    return JobLifecycleController(store, client, AdmissionValidator())


@pytest.fixture
def reconciler(store: JobStore, client: GatewayClient) -> SyncReconciler:
    return SyncReconciler(store, client, missing_pass_threshold=2)


@pytest.fixture
def valid_request() -> ResourceRequest:
    """A request that passes every policy check without warnings."""
    return ResourceRequest(
        cores=24,
        memory_gb=48,
        walltime="04:00:00",
        partition="amilan",
        qos="normal",
    )


@pytest.fixture
def create_job(controller: JobLifecycleController, valid_request: ResourceRequest) -> Callable[..., Job]:
    """Factory for CREATED jobs."""
    counter = {"n": 0}

    def _create(name: str = None, request: ResourceRequest = None, **kwargs) -> Job:
        counter["n"] += 1
        return controller.create_job(
            name or f"equil_{counter['n']}",
            request or valid_request,
            **kwargs,
        )

    return _create


@pytest.fixture
def submitted_job(controller: JobLifecycleController, create_job) -> Callable[..., Job]:
    """Factory for jobs submitted to the in-memory scheduler."""

    def _submit(**kwargs) -> Job:
        job = create_job(**kwargs)
        return controller.submit_job(job.job_id)

    return _submit


@pytest.fixture
def discovered_job(store: JobStore, gateway: InMemorySchedulerGateway) -> Callable[..., Job]:
    """Factory for DISCOVERED jobs that also exist on the scheduler."""

    def _discover(name: str = "remote_run") -> Job:
        remote_id = gateway.add_remote_job(name)
        job = Job.create(name=name, request=ResourceRequest.unknown())
        job.state = JobState.DISCOVERED
        job.remote_job_id = remote_id
        return store.insert_discovered(job)

    return _discover

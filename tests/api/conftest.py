"""
API test fixtures.

Each test gets a JobRunnerService backed by a temporary database and an
in-memory scheduler, installed as the API singleton before the app
starts so the lifespan reuses it.
"""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mdrunner.api._service_state import init_job_service, shutdown_job_service
from mdrunner.gateway.base import GatewayClient, NO_RETRY
from mdrunner.gateway.memory import InMemorySchedulerGateway
from mdrunner.jobs.service import JobRunnerService


@pytest.fixture
def gateway():
    return InMemorySchedulerGateway()


@pytest.fixture
def service(gateway):
    """JobRunnerService wired to the in-memory scheduler."""
    with tempfile.TemporaryDirectory() as tmpdir:
        svc = JobRunnerService.create(
            db_path=Path(tmpdir) / "api_jobs.db",
            gateway=gateway,
            client=GatewayClient(gateway, timeout=2.0, retry_policy=NO_RETRY),
        )
        init_job_service(service=svc)
        yield svc
        shutdown_job_service()


@pytest.fixture
def client(service, tmp_path, monkeypatch):
    from mdrunner.api.main import app

    monkeypatch.setenv("MDRUNNER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def job_payload():
    return {
        "name": "equil_1",
        "resources": {
            "cores": 24,
            "memory": "48GB",
            "walltime": "04:00:00",
            "partition": "amilan",
            "qos": "normal",
        },
        "simulation_config": {"steps": 5000, "temperature": 310},
        "input_files": ["system.psf", "system.pdb"],
    }


@pytest.fixture
def created_job(client, job_payload):
    response = client.post("/jobs", json=job_payload)
    assert response.status_code == 201
    return response.json()

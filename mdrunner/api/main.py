"""
FastAPI application entry point.

Job runner API for NAMD simulations on a SLURM cluster.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from dotenv import load_dotenv

from mdrunner import __version__
from mdrunner.infra.config import load_settings
from mdrunner.infra.logging_config import setup_logging
from .routers import cluster, jobs, sync
from ._service_state import get_job_service, init_job_service, shutdown_job_service
from .dependencies.auth import verify_api_key


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup configures logging, builds the job runner service from the
    environment (unless one was already initialized) and starts auto
    sync. Shutdown stops the timer and the gateway worker pool.
    """
    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_job_service(settings)

    yield

    shutdown_job_service()

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Job lifecycle - create, submit, cancel, delete and log retrieval",
    },
    {
        "name": "sync",
        "description": "Reconciliation with the scheduler - manual sync, discovery and auto sync settings",
    },
    {
        "name": "cluster",
        "description": "Cluster policy - partitions, QoS, presets, validation and estimates",
    },
]

app = FastAPI(
    title="MD Runner API",
    lifespan=lifespan,
    description="""
## MD Runner API

Submit NAMD simulations to a SLURM cluster and keep a local record of
their state.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
# Start server
uvicorn mdrunner.api.main:app --host 127.0.0.1 --port 8000

# Create a job
curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"name": "equil_1", "resources": {"cores": 24, "memory": "48GB", "walltime": "04:00:00", "partition": "amilan", "qos": "normal"}}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    service = get_job_service()
    return {
        "status": "ok",
        "version": __version__,
        "auto_sync_running": service.is_running,
    }


# verify_api_key reads API_AUTH_ENABLED per request
auth_dependency = [Depends(verify_api_key)]

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)
app.include_router(
    sync.router, prefix="/sync", tags=["sync"], dependencies=auth_dependency
)
app.include_router(
    cluster.router, prefix="/cluster", tags=["cluster"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)

"""
Job runner service singleton for the API.

Initialized during the FastAPI lifespan; routers fetch it per request.

Usage:
    from ._service_state import get_job_service, init_job_service

    # In lifespan:
    init_job_service(settings)

    # In routers:
    service = get_job_service()
"""

from typing import Optional

from mdrunner.infra.config import Settings
from mdrunner.jobs.service import JobRunnerService


_job_service: Optional[JobRunnerService] = None


def init_job_service(
    settings: Optional[Settings] = None,
    service: Optional[JobRunnerService] = None,
) -> JobRunnerService:
    """
    Initialize the service singleton and start auto sync if configured.

    Args:
        settings: Settings to build the service from
        service: Pre-built service (tests inject one with a fake gateway)

    Returns:
        The active JobRunnerService
    """
    global _job_service

    if _job_service is not None:
        return _job_service

    if service is None:
        service = JobRunnerService.from_settings(settings or Settings())

    service.start()
    _job_service = service
    return _job_service


def get_job_service() -> JobRunnerService:
    """
    Get the service singleton.

    Raises:
        RuntimeError: If the service was not initialized
    """
    if _job_service is None:
        raise RuntimeError(
            "Job service not initialized. "
            "Ensure init_job_service() is called during startup."
        )

    return _job_service


def shutdown_job_service() -> None:
    """Stop auto sync and release the singleton."""
    global _job_service

    if _job_service is not None:
        _job_service.stop()
        _job_service = None

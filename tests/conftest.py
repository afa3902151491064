"""
Pytest configuration and shared fixtures.
"""

import logging

import pytest

from mdrunner.infra.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def api_auth_disabled(monkeypatch):
    """
    Run every test with API key auth off.

    The auth dependency reads the environment per request, so a test
    turns auth on by patching os.environ around its requests.
    """
    monkeypatch.setenv("API_AUTH_ENABLED", "false")
    monkeypatch.delenv("API_KEY", raising=False)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Close handlers left on the mdrunner logger by setup_logging()."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

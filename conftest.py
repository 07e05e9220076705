"""Global pytest configuration and fixtures."""

import os

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep the developer's COLONY_* settings out of the test run."""
    saved = {key: os.environ.pop(key) for key in list(os.environ) if key.startswith("COLONY_")}

    yield

    os.environ.update(saved)

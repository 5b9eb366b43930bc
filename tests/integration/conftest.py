"""Fixtures for integration tests."""

from collections.abc import AsyncGenerator

import pytest
from aioresponses import aioresponses as aioresponses_cls

from vm_test_manager.runner_client import RunnerClient
from vm_test_manager.testing.fakes import RUNNER_URL


@pytest.fixture
async def runner_client(
    aioresponses: aioresponses_cls,
) -> AsyncGenerator[RunnerClient, None]:
    """Client for the fake runner URL with managed session."""
    async with RunnerClient.from_url(RUNNER_URL) as client:
        yield client

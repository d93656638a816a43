"""Shared test fixtures for premortem."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from premortem.collector import SystemMetrics
from premortem.config import Config, ThresholdConfig


def make_metrics(
    memory: int = 50,
    disk: int = 60,
    cpu: int = 40,
    processes: int = 250,
) -> SystemMetrics:
    """Create a SystemMetrics snapshot for testing."""
    return SystemMetrics(
        memory_percent=memory,
        disk_percent=disk,
        cpu_percent=cpu,
        process_count=processes,
    )


def make_response(status: int = 200, url: str = "https://hooks.test/endpoint") -> httpx.Response:
    """Create an httpx response bound to a POST request."""
    return httpx.Response(status, request=httpx.Request("POST", url))


def mock_async_client(
    response: httpx.Response | None = None,
    side_effect: BaseException | None = None,
) -> tuple[MagicMock, AsyncMock]:
    """Build a stand-in for `httpx.AsyncClient(...)` used as an async context manager.

    Returns:
        (context_manager, client) - patch AsyncClient to return the first,
        assert on client.post
    """
    client = AsyncMock()
    if side_effect is not None:
        client.post.side_effect = side_effect
    else:
        client.post.return_value = response or make_response()

    ctx = MagicMock()
    ctx.__aenter__.return_value = client
    ctx.__aexit__.return_value = False
    return ctx, client


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with a memory threshold and a temporary archive dir."""
    return Config(
        webhook_url="https://hooks.test/webhook",
        anthropic_api_key="sk-ant-test",
        thresholds=ThresholdConfig(memory_percent=90, disk_percent=85, cpu_percent=80),
        archive_dir=tmp_path,
    )

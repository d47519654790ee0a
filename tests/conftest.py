"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from watchbatch.config import reset_config
from watchbatch.logging import reset_logging

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the config cache, log handlers and env from leaking between tests."""
    monkeypatch.delenv("WATCHBATCH_LOG", raising=False)
    monkeypatch.delenv("WATCHMAN_SOCK", raising=False)
    reset_config()
    reset_logging()
    yield
    reset_config()
    reset_logging()

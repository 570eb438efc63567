"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for grafana_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from grafana_mock import MockGrafanaServer  # noqa: E402


@pytest.fixture
def grafana() -> MockGrafanaServer:
    """Mock Grafana with a configured generic_oauth provider."""
    return MockGrafanaServer(
        settings={
            "generic_oauth": {
                "clientId": "grafana-client",
                "scopes": "openid profile",
                "orgAttributePath": "groups",
            }
        }
    )


@pytest.fixture
def tenants_dir(tmp_path: Path) -> Path:
    """Empty directory for Tenant manifests."""
    path = tmp_path / "tenants"
    path.mkdir()
    return path


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo root logger changes made by setup_logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)

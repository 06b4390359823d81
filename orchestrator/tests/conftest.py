"""
Test configuration and fixtures for pytest.

Fixtures include: settings with near-zero poll / retry delays, a mocked
KubernetesClient, and small builders for Kubernetes API objects.
"""

import sys
import os
from pathlib import Path
import pytest
from unittest.mock import AsyncMock, Mock

# Add the orchestrator directory to sys.path
orchestrator_dir = Path(__file__).parent.parent
sys.path.insert(0, str(orchestrator_dir))


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # Set test environment variables BEFORE any devplatform imports
    os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
    os.environ["LOG_LEVEL"] = "DEBUG"

    # Import and clear settings cache after env vars are set
    from devplatform.config import get_settings
    get_settings.cache_clear()

    # Register custom markers
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "kubernetes: mark test as exercising Kubernetes-facing code")


@pytest.fixture
def settings():
    """Settings with tiny delays so poll / retry paths run instantly."""
    from devplatform.config import Settings

    return Settings(
        _env_file=None,
        admin_api_token="test-admin-token",
        namespace_ready_timeout_seconds=0.2,
        namespace_ready_poll_interval_seconds=0,
        quota_create_max_attempts=3,
        quota_create_retry_delay_seconds=0,
        service_visible_timeout_seconds=0.2,
        service_visible_poll_interval_seconds=0,
        routing_list_max_attempts=3,
        routing_list_retry_delay_seconds=0,
        exec_open_timeout_seconds=0.05,
        exec_read_timeout_seconds=0,
        routing_hostname="workspaces.example.com",
    )


@pytest.fixture
def mock_k8s():
    """KubernetesClient with every coroutine method mocked."""
    from devplatform.services.orchestration.kubernetes.client import KubernetesClient

    k8s = AsyncMock(spec=KubernetesClient)
    k8s.list_services = AsyncMock(return_value=[])
    k8s.list_pods = AsyncMock(return_value=[])
    k8s.list_pods_all_namespaces = AsyncMock(return_value=[])
    k8s.list_nodes = AsyncMock(return_value=[])
    return k8s


def make_api_exception(status: int, reason: str = "error"):
    """Build a kubernetes ApiException with the given HTTP status."""
    from kubernetes.client.rest import ApiException

    return ApiException(status=status, reason=reason)


@pytest.fixture
def api_exception():
    return make_api_exception


@pytest.fixture
def named():
    """Factory for mocks with metadata.name set (services, pods, nodes)."""
    def _named(name: str, **attrs) -> Mock:
        obj = Mock(**attrs)
        obj.metadata = Mock()
        obj.metadata.name = name
        return obj
    return _named


@pytest.fixture
def workspace_spec():
    from devplatform.schemas import WorkspaceResources, WorkspaceSpec

    return WorkspaceSpec(
        workspace_id="ws-abc123",
        name="workspace-abc123",
        resources=WorkspaceResources(cpu="1", memory="2Gi", storage="20Gi"),
        access_token="s3cret-token",
    )

"""
Tests for the admin HTTP / WebSocket endpoints.

The router is mounted on a bare FastAPI app with a mocked orchestrator, so
no cluster is needed.
"""

from unittest.mock import AsyncMock, Mock

import pytest

pytest.importorskip("kubernetes")

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from devplatform.config import get_settings
from devplatform.routers import admin
from devplatform.schemas import (
    ClusterCapacity,
    ComponentHealthStatus,
    RoutingSyncResult,
    WorkspaceStatus,
)
from devplatform.services.orchestration.errors import KubernetesError, ResourceNotFoundError
from devplatform.services.orchestration.orchestrator import WorkspaceOrchestrator

AUTH = {"Authorization": "Bearer test-admin-token"}


@pytest.fixture
def orchestrator():
    return AsyncMock(spec=WorkspaceOrchestrator)


@pytest.fixture
def app(orchestrator, settings):
    app = FastAPI()
    app.include_router(admin.router, prefix="/api/admin")
    app.state.orchestrator = orchestrator
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def component(name, healthy):
    return ComponentHealthStatus(name=name, type="pod", healthy=healthy, status="Running" if healthy else "Degraded")


@pytest.mark.unit
class TestAdminAuth:

    def test_missing_token_is_rejected(self, client):
        response = client.get("/api/admin/cluster/capacity")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    def test_wrong_token_is_rejected(self, client):
        response = client.get("/api/admin/cluster/capacity", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_non_bearer_scheme_is_rejected(self, client):
        response = client.get("/api/admin/cluster/capacity", headers={"Authorization": "Basic test-admin-token"})

        assert response.status_code == 401

    def test_admin_api_disabled_without_token(self, client, settings):
        settings.admin_api_token = ""

        response = client.get("/api/admin/cluster/capacity", headers=AUTH)

        assert response.status_code == 503


@pytest.mark.unit
class TestAdminEndpoints:

    def test_cluster_capacity(self, client, orchestrator):
        orchestrator.get_cluster_capacity.return_value = ClusterCapacity(node_count=2, available_workspace_capacity=7)

        response = client.get("/api/admin/cluster/capacity", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["node_count"] == 2
        assert body["available_workspace_capacity"] == 7

    def test_health_is_healthy_only_if_all_components_are(self, client, orchestrator):
        orchestrator.get_component_health.return_value = [
            component("StatefulSet", True),
            component("Pods", False),
        ]

        response = client.get("/api/admin/namespaces/group-acme/workspaces/workspace-a/health", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["healthy"] is False
        assert [c["name"] for c in body["components"]] == ["StatefulSet", "Pods"]
        orchestrator.get_component_health.assert_awaited_once_with("group-acme", "workspace-a")

    def test_status(self, client, orchestrator):
        orchestrator.get_workspace_status.return_value = WorkspaceStatus.RUNNING

        response = client.get("/api/admin/namespaces/group-acme/workspaces/workspace-a/status", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_status_of_missing_workspace_is_404(self, client, orchestrator):
        orchestrator.get_workspace_status.side_effect = ResourceNotFoundError(
            "statefulset not found", namespace="group-acme", resource="workspace-a"
        )

        response = client.get("/api/admin/namespaces/group-acme/workspaces/workspace-a/status", headers=AUTH)

        assert response.status_code == 404

    def test_cluster_error_is_502(self, client, orchestrator):
        orchestrator.sync_routing_for_namespace.side_effect = KubernetesError("forbidden", namespace="group-acme")

        response = client.post("/api/admin/namespaces/group-acme/routing/sync", headers=AUTH)

        assert response.status_code == 502
        assert "forbidden" in response.json()["detail"]

    def test_routing_sync(self, client, orchestrator):
        orchestrator.sync_routing_for_namespace.return_value = RoutingSyncResult(
            namespace="group-acme",
            services=["workspace-a"],
            path_prefixes=["/group-acme/workspace-a"],
            config_published=True,
        )

        response = client.post("/api/admin/namespaces/group-acme/routing/sync", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["path_prefixes"] == ["/group-acme/workspace-a"]
        orchestrator.sync_routing_for_namespace.assert_awaited_once_with("group-acme")


@pytest.mark.unit
class TestExecWebSocket:

    URL = "/api/admin/namespaces/group-acme/workspaces/workspace-a/exec"

    def test_invalid_token_closes_with_policy_violation(self, client, orchestrator):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"{self.URL}?token=nope"):
                pass

        assert exc_info.value.code == 1008
        orchestrator.find_workspace_pod.assert_not_awaited()

    def test_no_running_pod(self, client, orchestrator):
        orchestrator.find_workspace_pod.return_value = None

        with client.websocket_connect(f"{self.URL}?token=test-admin-token") as websocket:
            message = websocket.receive_text()

        assert message == "Failed to start exec session: no pod found for workspace workspace-a\r\n"
        orchestrator.attach_exec.assert_not_awaited()

    def test_attaches_to_workspace_pod(self, client, orchestrator):
        pod = Mock()
        pod.metadata.name = "workspace-a-0"
        orchestrator.find_workspace_pod.return_value = pod

        async def fake_attach(namespace, pod_name, transport, actor, container=None):
            await transport.send(f"attached to {pod_name}")
            await transport.close()

        orchestrator.attach_exec.side_effect = fake_attach

        with client.websocket_connect(self.URL, headers=AUTH) as websocket:
            message = websocket.receive_text()

        assert message == "attached to workspace-a-0"
        args, kwargs = orchestrator.attach_exec.call_args
        assert args[:2] == ("group-acme", "workspace-a-0")
        assert isinstance(args[2], admin.WebSocketTransport)
        assert kwargs == {"actor": "admin", "container": None}

    def test_binary_frames_are_forwarded_as_utf8_text(self, client, orchestrator):
        pod = Mock()
        pod.metadata.name = "workspace-a-0"
        orchestrator.find_workspace_pod.return_value = pod

        async def echo_attach(namespace, pod_name, transport, actor, container=None):
            for _ in range(2):
                await transport.send(repr(await transport.receive()))
            await transport.close()

        orchestrator.attach_exec.side_effect = echo_attach

        with client.websocket_connect(self.URL, headers=AUTH) as websocket:
            websocket.send_bytes("ls é\n".encode("utf-8"))
            valid = websocket.receive_text()
            websocket.send_bytes(b"\xffq")
            invalid = websocket.receive_text()

        assert valid == repr("ls é\n")
        assert invalid == repr("\ufffdq")

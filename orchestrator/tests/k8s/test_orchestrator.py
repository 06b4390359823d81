"""
Tests for the orchestrator facade: provisioning followed by routing sync.
"""

import pytest
from unittest.mock import AsyncMock

pytest.importorskip("kubernetes")

from devplatform.schemas import RoutingSyncResult
from devplatform.services.orchestration.errors import KubernetesError, TeardownError
from devplatform.services.orchestration.orchestrator import WorkspaceOrchestrator


@pytest.fixture
def orchestrator(mock_k8s, settings):
    orchestrator = WorkspaceOrchestrator(mock_k8s, settings)
    orchestrator.provisioner = AsyncMock()
    orchestrator.routing = AsyncMock()
    orchestrator.routing.sync_routing_for_namespace.return_value = RoutingSyncResult(namespace="group-acme")
    return orchestrator


@pytest.mark.unit
class TestWorkspaceOrchestrator:

    @pytest.mark.asyncio
    async def test_create_routes_new_workspace(self, orchestrator, workspace_spec):
        result = await orchestrator.create_workspace_resources("group-acme", workspace_spec)

        orchestrator.provisioner.create_workspace_resources.assert_awaited_once_with("group-acme", workspace_spec)
        orchestrator.routing.sync_routing_for_namespace.assert_awaited_once_with(
            "group-acme", expect_present=workspace_spec.name
        )
        assert result.namespace == "group-acme"

    @pytest.mark.asyncio
    async def test_failed_provisioning_skips_routing(self, orchestrator, workspace_spec):
        orchestrator.provisioner.create_workspace_resources.side_effect = KubernetesError("quota exceeded")

        with pytest.raises(KubernetesError):
            await orchestrator.create_workspace_resources("group-acme", workspace_spec)

        orchestrator.routing.sync_routing_for_namespace.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_drops_route(self, orchestrator):
        await orchestrator.delete_workspace_resources("group-acme", "workspace-a")

        orchestrator.routing.sync_routing_for_namespace.assert_awaited_once_with(
            "group-acme", expect_absent="workspace-a"
        )

    @pytest.mark.asyncio
    async def test_teardown_error_is_not_masked_by_routing_error(self, orchestrator):
        teardown = TeardownError(
            "teardown failed",
            failures=[("workspace-a-pvc", KubernetesError("forbidden"))],
            namespace="group-acme",
        )
        orchestrator.provisioner.delete_workspace_resources.side_effect = teardown
        orchestrator.routing.sync_routing_for_namespace.side_effect = KubernetesError("ingress forbidden")

        with pytest.raises(TeardownError) as exc_info:
            await orchestrator.delete_workspace_resources("group-acme", "workspace-a")

        assert exc_info.value is teardown
        orchestrator.routing.sync_routing_for_namespace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_routing_error_after_clean_teardown_propagates(self, orchestrator):
        orchestrator.routing.sync_routing_for_namespace.side_effect = KubernetesError("ingress forbidden")

        with pytest.raises(KubernetesError):
            await orchestrator.delete_workspace_resources("group-acme", "workspace-a")

    @pytest.mark.asyncio
    async def test_start_and_stop_scale(self, orchestrator):
        await orchestrator.start_workspace("group-acme", "workspace-a")
        await orchestrator.stop_workspace("group-acme", "workspace-a")

        calls = orchestrator.provisioner.scale_workspace.await_args_list
        assert [c.args for c in calls] == [("group-acme", "workspace-a", 1), ("group-acme", "workspace-a", 0)]

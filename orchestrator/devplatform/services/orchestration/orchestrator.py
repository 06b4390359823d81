"""
Workspace Orchestrator

Single entry point the management API talks to. Composes the provisioner,
routing synchronizer, health aggregator, capacity planner and exec bridge
around one explicitly constructed KubernetesClient.

Workspace creation and deletion are followed by a routing sync so the
shared proxy and Ingress always reflect the live service list.
"""

import logging
from typing import Dict, List, Optional

from kubernetes import client

from ...config import Settings
from ...schemas import (
    ClusterCapacity,
    ComponentHealthStatus,
    NamespaceUsage,
    ResourceQuotaSpec,
    RoutingSyncResult,
    WorkspaceSpec,
    WorkspaceStatus,
)
from ..audit import AuditSink, LoggingAuditSink
from ..exec_bridge import ExecBridge, ExecSession, ExecTransport
from .capacity import ClusterCapacityPlanner
from .errors import OrchestrationError
from .health import ComponentHealthAggregator
from .kubernetes.client import KubernetesClient
from .provisioner import WorkspaceProvisioner
from .routing import RoutingSynchronizer

logger = logging.getLogger(__name__)


class WorkspaceOrchestrator:
    """
    Facade over the workspace control-plane components.

    Args:
        k8s: Cluster client shared by every component
        settings: Orchestrator settings
        audit_sink: Destination for exec audit events (defaults to logging)
    """

    def __init__(self, k8s: KubernetesClient, settings: Settings, audit_sink: Optional[AuditSink] = None):
        self.k8s = k8s
        self.settings = settings
        self.audit_sink = audit_sink or LoggingAuditSink()

        self.provisioner = WorkspaceProvisioner(k8s, settings)
        self.routing = RoutingSynchronizer(k8s, settings)
        self.health = ComponentHealthAggregator(k8s, settings)
        self.capacity = ClusterCapacityPlanner(k8s, settings)
        self.exec_bridge = ExecBridge(k8s, settings, self.audit_sink)

        logger.info("Workspace orchestrator initialized")

    # =========================================================================
    # NAMESPACES
    # =========================================================================

    async def create_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        await self.provisioner.create_namespace(name, labels)

    async def delete_namespace(self, name: str) -> None:
        await self.provisioner.delete_namespace(name)

    async def namespace_exists(self, name: str) -> bool:
        return await self.provisioner.namespace_exists(name)

    async def create_resource_quota(self, namespace: str, quota: ResourceQuotaSpec) -> None:
        await self.provisioner.create_resource_quota(namespace, quota)

    async def get_namespace_usage(self, namespace: str) -> NamespaceUsage:
        return await self.provisioner.get_namespace_usage(namespace)

    # =========================================================================
    # WORKSPACES
    # =========================================================================

    async def create_workspace_resources(self, namespace: str, spec: WorkspaceSpec) -> RoutingSyncResult:
        """Provision a workspace, then route it."""
        await self.provisioner.create_workspace_resources(namespace, spec)
        return await self.routing.sync_routing_for_namespace(namespace, expect_present=spec.name)

    async def delete_workspace_resources(self, namespace: str, name: str) -> Optional[RoutingSyncResult]:
        """
        Tear a workspace down, then drop its route.

        The routing sync runs even if teardown failed; a teardown error is
        re-raised afterwards and is never replaced by a routing error.
        """
        teardown_error: Optional[OrchestrationError] = None
        try:
            await self.provisioner.delete_workspace_resources(namespace, name)
        except OrchestrationError as e:
            teardown_error = e

        try:
            result = await self.routing.sync_routing_for_namespace(namespace, expect_absent=name)
        except OrchestrationError as e:
            if teardown_error is None:
                raise
            logger.error(f"[ROUTING] Routing sync after failed teardown of {name} also failed: {e}")
            result = None

        if teardown_error is not None:
            raise teardown_error
        return result

    async def scale_workspace(self, namespace: str, name: str, replicas: int) -> None:
        await self.provisioner.scale_workspace(namespace, name, replicas)

    async def start_workspace(self, namespace: str, name: str) -> None:
        await self.provisioner.scale_workspace(namespace, name, 1)

    async def stop_workspace(self, namespace: str, name: str) -> None:
        await self.provisioner.scale_workspace(namespace, name, 0)

    async def get_workspace_status(self, namespace: str, name: str) -> WorkspaceStatus:
        return await self.provisioner.get_workspace_status(namespace, name)

    async def find_workspace_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        return await self.provisioner.find_workspace_pod(namespace, name)

    async def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[client.V1Pod]:
        return await self.provisioner.list_pods(namespace, label_selector)

    async def get_pod_logs(self, namespace: str, pod_name: str, lines: int = 100) -> str:
        return await self.provisioner.get_pod_logs(namespace, pod_name, lines)

    # =========================================================================
    # ROUTING / OBSERVABILITY
    # =========================================================================

    async def sync_routing_for_namespace(self, namespace: str) -> RoutingSyncResult:
        return await self.routing.sync_routing_for_namespace(namespace)

    async def get_component_health(self, namespace: str, name: str) -> List[ComponentHealthStatus]:
        return await self.health.get_component_health(namespace, name)

    async def get_cluster_capacity(self) -> ClusterCapacity:
        return await self.capacity.get_cluster_capacity()

    # =========================================================================
    # INTERACTIVE ACCESS
    # =========================================================================

    async def open_exec_session(
        self,
        namespace: str,
        pod_name: str,
        command: Optional[List[str]] = None,
        container: Optional[str] = None,
    ) -> ExecSession:
        return await self.exec_bridge.open_session(namespace, pod_name, container=container, command=command)

    async def run_exec_session(self, session: ExecSession, transport: ExecTransport, actor: str) -> None:
        await self.exec_bridge.run_session(session, transport, actor)

    async def attach_exec(
        self,
        namespace: str,
        pod_name: str,
        transport: ExecTransport,
        actor: str,
        container: Optional[str] = None,
    ) -> Optional[ExecSession]:
        return await self.exec_bridge.attach(namespace, pod_name, transport, actor, container=container)

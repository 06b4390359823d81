"""
Orchestration Module - Workspace control-plane on Kubernetes

Architecture:
- KubernetesClient: async, error-normalized cluster API surface
- WorkspaceProvisioner: namespaces, quotas and per-workspace resources
- RoutingSynchronizer: shared proxy config + Ingress rebuilt from live services
- ComponentHealthAggregator: per-resource health verdicts
- ClusterCapacityPlanner: spare capacity in workspace units
- WorkspaceOrchestrator (orchestrator.py): facade composing all of the above

Usage:
    from devplatform.services.orchestration import KubernetesClient
    from devplatform.services.orchestration.orchestrator import WorkspaceOrchestrator

    orchestrator = WorkspaceOrchestrator(KubernetesClient(settings), settings)
    await orchestrator.create_workspace_resources(namespace, spec)
"""

from .errors import (
    ErrorKind,
    OrchestrationError,
    ResourceNotFoundError,
    ResourceConflictError,
    TransientNotReadyError,
    ProvisioningTimeoutError,
    KubernetesError,
    TeardownError,
)
from .kubernetes import KubernetesClient
from .provisioner import WorkspaceProvisioner
from .routing import RoutingSynchronizer
from .health import ComponentHealthAggregator
from .capacity import ClusterCapacityPlanner

__all__ = [
    # Errors
    "ErrorKind",
    "OrchestrationError",
    "ResourceNotFoundError",
    "ResourceConflictError",
    "TransientNotReadyError",
    "ProvisioningTimeoutError",
    "KubernetesError",
    "TeardownError",
    # Components
    "KubernetesClient",
    "WorkspaceProvisioner",
    "RoutingSynchronizer",
    "ComponentHealthAggregator",
    "ClusterCapacityPlanner",
]

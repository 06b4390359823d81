"""
Kubernetes Orchestration Module

This module contains all Kubernetes-specific code:
- KubernetesClient: Low-level Kubernetes API interactions (async, error-normalized)
- helpers: Manifest builders and the routing proxy config renderer

These are used internally by the provisioner, routing synchronizer, health
aggregator, capacity planner and exec bridge.
"""

from .client import KubernetesClient, load_kubernetes_config, RESIZE_CHANNEL
from .helpers import (
    get_standard_labels,
    create_namespace_manifest,
    create_resource_quota_manifest,
    create_workspace_secret_manifest,
    create_pvc_manifest,
    create_workspace_statefulset,
    create_service_manifest,
    render_proxy_config,
    create_proxy_config_map,
    create_proxy_deployment,
    create_restart_patch,
    create_ingress_manifest,
)

__all__ = [
    # Client
    "KubernetesClient",
    "load_kubernetes_config",
    "RESIZE_CHANNEL",
    # Manifest Helpers
    "get_standard_labels",
    "create_namespace_manifest",
    "create_resource_quota_manifest",
    "create_workspace_secret_manifest",
    "create_pvc_manifest",
    "create_workspace_statefulset",
    "create_service_manifest",
    "render_proxy_config",
    "create_proxy_config_map",
    "create_proxy_deployment",
    "create_restart_patch",
    "create_ingress_manifest",
]

"""
Component Health Aggregator

Probes the four resources that make up a workspace independently and
returns one verdict per resource, in a fixed order:

    StatefulSet, Service, PersistentVolumeClaim, Pods

Probes run concurrently and never raise. A missing resource is a valid
observation (status "NotFound"); any other API failure degrades only that
probe's verdict (status "Unknown", error in the reason and details).
Rolling the list up into one workspace status is left to the caller.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

from kubernetes import client

from ...config import Settings
from ...schemas import ComponentHealthStatus
from ...utils.resource_naming import get_pvc_name
from .errors import ResourceNotFoundError
from .kubernetes.client import KubernetesClient

logger = logging.getLogger(__name__)

STATEFULSET = ("StatefulSet", "statefulset")
SERVICE = ("Service", "service")
PVC = ("PersistentVolumeClaim", "pvc")
PODS = ("Pods", "pod")


def _condition_message(conditions, types) -> str:
    """Message of the first False condition among `types`, in the given order."""
    by_type = {c.type: c for c in (conditions or [])}
    for condition_type in types:
        condition = by_type.get(condition_type)
        if condition is not None and condition.status == "False" and condition.message:
            return condition.message
    return ""


def classify_statefulset(statefulset: client.V1StatefulSet) -> ComponentHealthStatus:
    name, kind = STATEFULSET
    replicas = (statefulset.spec.replicas if statefulset.spec else 0) or 0
    status = statefulset.status
    ready = (status.ready_replicas if status else 0) or 0
    available = (getattr(status, "available_replicas", 0) if status else 0) or 0
    details = {
        "replicas": replicas,
        "readyReplicas": ready,
        "availableReplicas": available,
        "updatedReplicas": (status.updated_replicas if status else 0) or 0,
    }

    if replicas == 0:
        return ComponentHealthStatus(
            name=name, type=kind, healthy=True, status="Stopped",
            reason="Scaled to 0 replicas (workspace is stopped)",
            details=details,
        )

    if ready < replicas:
        conditions = status.conditions if status else None
        reason = _condition_message(conditions, ("Progressing", "Available", "Ready"))
        return ComponentHealthStatus(
            name=name, type=kind, healthy=False, status="Unavailable",
            reason=reason or f"Only {ready} of {replicas} replicas are ready",
            details=details,
        )

    return ComponentHealthStatus(
        name=name, type=kind, healthy=True, status="Available",
        reason=f"All {replicas} replicas are ready",
        details=details,
    )


def classify_service(service: client.V1Service) -> ComponentHealthStatus:
    name, kind = SERVICE
    spec = service.spec
    cluster_ip = spec.cluster_ip if spec else None
    ports = (spec.ports if spec else None) or []

    if not cluster_ip or cluster_ip == "None":
        healthy, reason = False, "Service has no ClusterIP assigned"
    elif not ports:
        healthy, reason = False, "Service has no ports configured"
    else:
        healthy, reason = True, f"Service is available at {cluster_ip}"

    return ComponentHealthStatus(
        name=name,
        type=kind,
        healthy=healthy,
        status="Active" if healthy else "Misconfigured",
        reason=reason,
        details={
            "clusterIP": cluster_ip or "None",
            "ports": [
                {"port": p.port, "targetPort": p.target_port, "protocol": p.protocol}
                for p in ports
            ],
            "type": (spec.type if spec else None) or "ClusterIP",
        },
    )


def classify_pvc(pvc: client.V1PersistentVolumeClaim) -> ComponentHealthStatus:
    name, kind = PVC
    phase = pvc.status.phase if pvc.status else None

    if phase == "Bound":
        healthy, reason = True, "PVC is bound to a persistent volume"
    elif phase == "Pending":
        healthy, reason = False, "PVC is pending - waiting for volume provisioning"
    elif phase == "Lost":
        healthy, reason = False, "PVC has lost its underlying volume"
    else:
        healthy, reason = False, f"PVC is in {phase} state"

    capacity = (pvc.status.capacity if pvc.status else None) or {}
    return ComponentHealthStatus(
        name=name,
        type=kind,
        healthy=healthy,
        status=phase or "Unknown",
        reason=reason,
        details={
            "capacity": capacity.get("storage", "Unknown"),
            "storageClass": (pvc.spec.storage_class_name if pvc.spec else None) or "default",
            "accessModes": (pvc.spec.access_modes if pvc.spec else None) or [],
            "volumeName": (pvc.spec.volume_name if pvc.spec else None) or "None",
        },
    )


def classify_pod(pod: client.V1Pod) -> dict:
    """Per-pod verdict used inside the Pods component."""
    status = pod.status
    phase = status.phase if status else None
    container_statuses = (status.container_statuses if status else None) or []
    conditions = (status.conditions if status else None) or []
    ready_condition = next((c for c in conditions if c.type == "Ready"), None)

    healthy = phase == "Running" and ready_condition is not None and ready_condition.status == "True"

    if phase == "Pending":
        waiting = next(
            (cs.state.waiting for cs in container_statuses if cs.state and cs.state.waiting),
            None,
        )
        reason = (waiting.message or waiting.reason) if waiting else None
        reason = reason or "Pod is pending"
    elif phase == "Failed":
        reason = (status.message if status else None) or "Pod has failed"
    elif phase == "Running":
        not_ready = [cs for cs in container_statuses if not cs.ready]
        if not_ready:
            healthy = False
            reason = f"{len(not_ready)} container(s) not ready"
        else:
            reason = "All containers are running and ready"
    else:
        reason = f"Pod is in {phase} state"

    return {
        "name": pod.metadata.name if pod.metadata else "unknown",
        "healthy": healthy,
        "phase": phase or "Unknown",
        "reason": reason,
        "restarts": sum((cs.restart_count or 0) for cs in container_statuses),
    }


def classify_pods(pods: List[client.V1Pod]) -> ComponentHealthStatus:
    name, kind = PODS
    if not pods:
        return ComponentHealthStatus(
            name=name, type=kind, healthy=True, status="NoPods",
            reason="No pods found (workspace may be stopped)",
            details={"count": 0},
        )

    pod_statuses = [classify_pod(pod) for pod in pods]
    healthy_count = sum(1 for p in pod_statuses if p["healthy"])
    all_healthy = healthy_count == len(pod_statuses)

    return ComponentHealthStatus(
        name=name,
        type=kind,
        healthy=all_healthy,
        status="Running" if all_healthy else "Degraded",
        reason=(
            f"All {len(pods)} pod(s) are healthy"
            if all_healthy
            else f"{healthy_count} of {len(pods)} pod(s) are healthy"
        ),
        details={"pods": pod_statuses, "count": len(pods)},
    )


class ComponentHealthAggregator:
    """Reports per-resource health for one workspace."""

    def __init__(self, k8s: KubernetesClient, settings: Settings):
        self.k8s = k8s
        self.settings = settings

    async def get_component_health(self, namespace: str, name: str) -> List[ComponentHealthStatus]:
        """
        Probe a workspace's StatefulSet, Service, PVC and Pods.

        Args:
            namespace: Group namespace
            name: Workspace resource name

        Returns:
            Four ComponentHealthStatus entries in fixed order
        """
        pvc_name = get_pvc_name(name)
        results = await asyncio.gather(
            self._probe(STATEFULSET, name, lambda: self.k8s.read_stateful_set(namespace, name), classify_statefulset),
            self._probe(SERVICE, name, lambda: self.k8s.read_service(namespace, name), classify_service),
            self._probe(PVC, pvc_name, lambda: self.k8s.read_pvc(namespace, pvc_name), classify_pvc),
            self._probe(
                PODS, name,
                lambda: self.k8s.list_pods(namespace, label_selector=f"app={name}"),
                classify_pods,
            ),
        )
        return list(results)

    async def _probe(
        self,
        component: tuple,
        resource_name: str,
        fetch: Callable[[], Awaitable],
        classify: Callable,
    ) -> ComponentHealthStatus:
        name, kind = component
        try:
            return classify(await fetch())
        except ResourceNotFoundError:
            return ComponentHealthStatus(
                name=name, type=kind, healthy=False, status="NotFound",
                reason=f"{name} {resource_name} does not exist",
            )
        except Exception as e:
            logger.warning(f"[HEALTH] Failed to probe {name} {resource_name}: {e}")
            return ComponentHealthStatus(
                name=name, type=kind, healthy=False, status="Unknown",
                reason=f"Failed to fetch {name} status: {e}",
                details={"error": str(e)},
            )

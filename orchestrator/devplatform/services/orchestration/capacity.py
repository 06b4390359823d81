"""
Cluster Capacity Planner

Answers "how many more workspaces fit?" from the node inventory and the
resource requests of every active pod:

- allocatable per node comes from node.status.allocatable
- used per node is the sum of container requests of Running / Pending pods
  bound to it; pods not yet scheduled land in an "unassigned" bucket that
  counts toward cluster-wide usage but not toward any node
- per node, workspace units = floor(min(available cpu / unit cpu,
  available memory / unit memory)), never negative; the cluster figure is the
  sum over nodes, since a workspace cannot span nodes

The query never raises. Without pods, usage is reported as zero and flagged
as degraded; without nodes, an empty capacity is returned.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from kubernetes import client

from ...config import Settings
from ...resource_tiers import RESOURCE_TIERS
from ...schemas import ClusterCapacity, NodeCapacity, ResourceAmounts
from .kubernetes.client import KubernetesClient
from .quantities import parse_cpu, parse_memory

logger = logging.getLogger(__name__)

INSTANCE_TYPE_LABELS = (
    "node.kubernetes.io/instance-type",
    "beta.kubernetes.io/instance-type",
)
ACTIVE_POD_PHASES = ("Running", "Pending")
UNASSIGNED = "unassigned"


def _millicores(cores: float) -> int:
    return int(round(cores * 1000))


def workspace_units(available: ResourceAmounts, unit: ResourceAmounts) -> int:
    """
    Whole workspaces of size `unit` that fit into `available`.

    Arithmetic is done in integer millicores / bytes so float noise from
    summing requests never drops a unit.
    """
    unit_cpu = _millicores(unit.cpu)
    if unit_cpu <= 0 or unit.memory <= 0:
        return 0
    by_cpu = _millicores(available.cpu) // unit_cpu
    by_memory = available.memory // unit.memory
    return max(0, min(by_cpu, by_memory))


def get_instance_type(node: client.V1Node) -> Optional[str]:
    labels = (node.metadata.labels if node.metadata else None) or {}
    for label in INSTANCE_TYPE_LABELS:
        if labels.get(label):
            return labels[label]
    return None


def _amounts(resources: Optional[Dict[str, str]]) -> ResourceAmounts:
    resources = resources or {}
    return ResourceAmounts(cpu=parse_cpu(resources.get("cpu")), memory=parse_memory(resources.get("memory")))


def pod_requests(pod: client.V1Pod) -> ResourceAmounts:
    """Sum of container resource requests of one pod."""
    total = ResourceAmounts()
    containers = (pod.spec.containers if pod.spec else None) or []
    for container in containers:
        requests = container.resources.requests if container.resources else None
        total = total + _amounts(requests)
    return total


def summarize_usage(pods: List[client.V1Pod]) -> Dict[str, ResourceAmounts]:
    """Requests of active pods keyed by node name (or "unassigned")."""
    usage: Dict[str, ResourceAmounts] = defaultdict(ResourceAmounts)
    for pod in pods:
        phase = pod.status.phase if pod.status else None
        if phase not in ACTIVE_POD_PHASES:
            continue
        node_name = (pod.spec.node_name if pod.spec else None) or UNASSIGNED
        usage[node_name] = usage[node_name] + pod_requests(pod)
    return dict(usage)


def build_node_capacity(
    node: client.V1Node,
    usage: Dict[str, ResourceAmounts],
    unit: ResourceAmounts,
) -> NodeCapacity:
    name = node.metadata.name
    status = node.status
    raw_capacity = (status.capacity if status else None) or {}
    raw_allocatable = (status.allocatable if status else None) or {}
    allocatable = _amounts(raw_allocatable)
    used = usage.get(name, ResourceAmounts())
    available = allocatable - used

    return NodeCapacity(
        name=name,
        instance_type=get_instance_type(node),
        capacity=_amounts(raw_capacity),
        allocatable=allocatable,
        used=used,
        available=available,
        pods_capacity=int(raw_capacity.get("pods") or 0),
        pods_allocatable=int(raw_allocatable.get("pods") or 0),
        workspace_capacity=workspace_units(available, unit),
    )


class ClusterCapacityPlanner:
    """Computes cluster-wide and per-node spare capacity in workspace units."""

    def __init__(self, k8s: KubernetesClient, settings: Settings):
        self.k8s = k8s
        self.settings = settings

    @property
    def workspace_unit(self) -> ResourceAmounts:
        return ResourceAmounts(
            cpu=parse_cpu(self.settings.capacity_unit_cpu),
            memory=parse_memory(self.settings.capacity_unit_memory),
        )

    async def get_cluster_capacity(self) -> ClusterCapacity:
        """
        Compute spare capacity across all nodes.

        Returns:
            ClusterCapacity (empty if nodes could not be listed)
        """
        unit = self.workspace_unit

        try:
            nodes = await self.k8s.list_nodes()
        except Exception as e:
            logger.error(f"[CAPACITY] Failed to list nodes: {e}", exc_info=True)
            return ClusterCapacity(workspace_unit=unit)

        usage_degraded = False
        try:
            pods = await self.k8s.list_pods_all_namespaces()
            usage = summarize_usage(pods)
        except Exception as e:
            logger.warning(f"[CAPACITY] Failed to list pods, reporting zero usage: {e}")
            usage = {}
            usage_degraded = True

        tier_units = {tier.value: 0 for tier in RESOURCE_TIERS}
        tier_sizes = {
            tier.value: ResourceAmounts(cpu=parse_cpu(res.cpu), memory=parse_memory(res.memory))
            for tier, res in RESOURCE_TIERS.items()
        }

        cluster = ClusterCapacity(workspace_unit=unit, usage_degraded=usage_degraded)
        instance_types = set()

        for node in nodes:
            try:
                node_capacity = build_node_capacity(node, usage, unit)
            except ValueError as e:
                logger.warning(f"[CAPACITY] Skipping node {node.metadata.name}: {e}")
                continue
            cluster.nodes.append(node_capacity)

            cluster.capacity = cluster.capacity + node_capacity.capacity
            cluster.allocatable = cluster.allocatable + node_capacity.allocatable
            cluster.used = cluster.used + node_capacity.used
            cluster.pods_capacity += node_capacity.pods_capacity
            cluster.pods_allocatable += node_capacity.pods_allocatable
            cluster.available_workspace_capacity += node_capacity.workspace_capacity
            for tier, size in tier_sizes.items():
                tier_units[tier] += workspace_units(node_capacity.available, size)
            if node_capacity.instance_type:
                instance_types.add(node_capacity.instance_type)

        cluster.unassigned = usage.get(UNASSIGNED, ResourceAmounts())
        cluster.used = cluster.used + cluster.unassigned
        cluster.available = cluster.allocatable - cluster.used
        cluster.node_count = len(cluster.nodes)
        cluster.instance_types = sorted(instance_types)
        cluster.workspace_capacity_by_tier = tier_units

        logger.info(
            f"[CAPACITY] {cluster.node_count} node(s), "
            f"{cluster.available_workspace_capacity} workspace unit(s) available"
            + (" (usage degraded)" if usage_degraded else "")
        )
        return cluster

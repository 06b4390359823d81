"""
Namespace & Resource Provisioner

Creates and tears down a group's namespace and quota, and a workspace's
secret, storage claim, workload and service.

Creates are idempotent ("already exists" is success) and fail loud on any
other error. Deletes are idempotent ("not found" is success). The cluster is
eventually consistent, so namespace readiness, quota creation and service
visibility are awaited with bounded polls / retries.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from kubernetes import client

from ...config import Settings
from ...schemas import NamespaceUsage, ResourceQuotaSpec, WorkspaceSpec, WorkspaceStatus
from ...utils.resource_naming import get_pvc_name, get_quota_name, get_secret_name
from .errors import (
    OrchestrationError,
    ResourceConflictError,
    ResourceNotFoundError,
    TeardownError,
)
from .kubernetes.client import KubernetesClient
from .kubernetes.helpers import (
    create_namespace_manifest,
    create_pvc_manifest,
    create_resource_quota_manifest,
    create_service_manifest,
    create_workspace_secret_manifest,
    create_workspace_statefulset,
)
from .quantities import parse_cpu, parse_memory
from .retry import poll_until, retry_on_exceptions

logger = logging.getLogger(__name__)


class WorkspaceProvisioner:
    """Turns namespace / quota / workspace records into cluster resources."""

    def __init__(self, k8s: KubernetesClient, settings: Settings):
        self.k8s = k8s
        self.settings = settings

    async def _create_if_absent(
        self,
        create: Callable[[], Awaitable],
        kind: str,
        namespace: Optional[str],
        name: str,
    ) -> bool:
        """Run a create; "already exists" is success. Returns True if it was created."""
        try:
            await create()
            logger.info(f"[K8S] ✅ Created {kind}: {name}" + (f" in {namespace}" if namespace else ""))
            return True
        except ResourceConflictError:
            logger.info(f"[K8S] {kind} {name} already exists" + (f" in {namespace}" if namespace else ""))
            return False

    async def _delete_if_present(self, delete: Callable[[], Awaitable], kind: str, namespace: Optional[str], name: str) -> bool:
        """Run a delete; "not found" is success. Returns True if something was deleted."""
        try:
            await delete()
            logger.info(f"[K8S] Deleted {kind}: {name}" + (f" in {namespace}" if namespace else ""))
            return True
        except ResourceNotFoundError:
            logger.debug(f"[K8S] {kind} {name} not found for deletion")
            return False

    # =========================================================================
    # NAMESPACE MANAGEMENT
    # =========================================================================

    async def create_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        """
        Create a namespace and wait until it is Active.

        Args:
            name: Namespace name
            labels: Extra labels (managed-by is always set)

        Raises:
            ProvisioningTimeoutError: namespace did not become Active in time
        """
        body = create_namespace_manifest(name, self.settings.k8s_managed_by, labels)
        await self._create_if_absent(lambda: self.k8s.create_namespace(body), "namespace", None, name)

        async def _is_active() -> bool:
            try:
                namespace = await self.k8s.read_namespace(name)
            except ResourceNotFoundError:
                return False
            phase = namespace.status.phase if namespace.status else None
            return phase == "Active"

        await poll_until(
            _is_active,
            timeout=self.settings.namespace_ready_timeout_seconds,
            interval=self.settings.namespace_ready_poll_interval_seconds,
            description=f"namespace {name} to become Active",
            resource=name,
        )
        logger.info(f"[K8S] Namespace {name} is Active")

    async def delete_namespace(self, name: str) -> None:
        await self._delete_if_present(lambda: self.k8s.delete_namespace(name), "namespace", None, name)

    async def namespace_exists(self, name: str) -> bool:
        """
        Check if a namespace exists.

        Returns:
            True if namespace exists, False otherwise
        """
        try:
            await self.k8s.read_namespace(name)
            return True
        except ResourceNotFoundError:
            return False

    async def create_resource_quota(self, namespace: str, quota: ResourceQuotaSpec) -> None:
        """
        Create (or update) the namespace's resource quota.

        A freshly created namespace may briefly be invisible to the quota
        admission path, so "not found" is retried a bounded number of times.
        If the quota already exists its hard caps are replaced.

        Raises:
            ProvisioningTimeoutError: namespace never became visible
        """
        body = create_resource_quota_manifest(namespace, quota)
        quota_name = get_quota_name(namespace)

        async def _create_or_replace() -> None:
            try:
                await self.k8s.create_resource_quota(namespace, body)
                logger.info(f"[K8S] ✅ Created resource quota {quota_name} in {namespace}")
            except ResourceConflictError:
                await self.k8s.replace_resource_quota(namespace, quota_name, body)
                logger.info(f"[K8S] ✅ Updated resource quota {quota_name} in {namespace}")

        await retry_on_exceptions(
            _create_or_replace,
            exceptions=(ResourceNotFoundError,),
            attempts=self.settings.quota_create_max_attempts,
            delay=self.settings.quota_create_retry_delay_seconds,
            description=f"resource quota for {namespace}",
            namespace=namespace,
            resource=quota_name,
        )

    # =========================================================================
    # WORKSPACE RESOURCES
    # =========================================================================

    async def create_workspace_resources(self, namespace: str, spec: WorkspaceSpec) -> None:
        """
        Create a workspace's secret, storage claim, workload (0 replicas) and
        service, then wait until the service is visible to list queries.

        Args:
            namespace: Group namespace (must exist)
            spec: Workspace description

        Raises:
            OrchestrationError: any create failure other than "already exists",
                or the service never becoming visible
        """
        settings = self.settings
        name = spec.name

        secret = create_workspace_secret_manifest(namespace, spec, settings)
        pvc = create_pvc_manifest(
            namespace,
            spec,
            storage_class=settings.k8s_storage_class,
            managed_by=settings.k8s_managed_by,
            access_mode=settings.k8s_pvc_access_mode,
        )
        statefulset = create_workspace_statefulset(namespace, spec, settings)
        service = create_service_manifest(
            namespace,
            name,
            target_port=settings.k8s_workspace_port,
            port=settings.k8s_workspace_service_port,
            labels=statefulset.metadata.labels,
        )

        await self._create_if_absent(
            lambda: self.k8s.create_secret(namespace, secret), "secret", namespace, get_secret_name(name)
        )
        await self._create_if_absent(
            lambda: self.k8s.create_pvc(namespace, pvc), "PVC", namespace, get_pvc_name(name)
        )
        await self._create_if_absent(
            lambda: self.k8s.create_stateful_set(namespace, statefulset), "statefulset", namespace, name
        )
        await self._create_if_absent(
            lambda: self.k8s.create_service(namespace, service), "service", namespace, name
        )

        await self.wait_for_service_visible(namespace, name)

    async def wait_for_service_visible(self, namespace: str, name: str) -> None:
        """Wait until a service is both readable and present in the namespace listing."""

        async def _is_visible() -> bool:
            try:
                await self.k8s.read_service(namespace, name)
            except ResourceNotFoundError:
                return False
            services = await self.k8s.list_services(namespace)
            return any(svc.metadata.name == name for svc in services)

        await poll_until(
            _is_visible,
            timeout=self.settings.service_visible_timeout_seconds,
            interval=self.settings.service_visible_poll_interval_seconds,
            description=f"service {name} to become visible",
            namespace=namespace,
            resource=name,
        )

    async def delete_workspace_resources(self, namespace: str, name: str) -> None:
        """
        Delete a workspace's workload, service, storage claim and secret.

        Every deletion is attempted even if an earlier one fails.

        Raises:
            TeardownError: at least one deletion failed with a hard error
        """
        steps = [
            ("statefulset", name, lambda: self.k8s.delete_stateful_set(namespace, name)),
            ("service", name, lambda: self.k8s.delete_service(namespace, name)),
            ("PVC", get_pvc_name(name), lambda: self.k8s.delete_pvc(namespace, get_pvc_name(name))),
            ("secret", get_secret_name(name), lambda: self.k8s.delete_secret(namespace, get_secret_name(name))),
        ]

        failures: List[tuple] = []
        for kind, resource_name, delete in steps:
            try:
                await self._delete_if_present(delete, kind, namespace, resource_name)
            except OrchestrationError as e:
                logger.error(f"[K8S] Failed to delete {kind} {resource_name} in {namespace}: {e}")
                failures.append((resource_name, e))

        if failures:
            raise TeardownError(
                f"Failed to delete {len(failures)} resource(s) of workspace {name}",
                failures=failures,
                namespace=namespace,
            )

        logger.info(f"[K8S] ✅ Deleted workspace resources for {name} in {namespace}")

    async def scale_workspace(self, namespace: str, name: str, replicas: int) -> None:
        """
        Start (1) or stop (0) a workspace.

        Patches only spec.replicas, without a resourceVersion precondition,
        so concurrent scales are last-writer-wins rather than conflicts.

        Raises:
            ValueError: replicas is not 0 or 1
            ResourceNotFoundError: the workload does not exist
        """
        if replicas not in (0, 1):
            raise ValueError(f"Workspace replicas must be 0 or 1, got {replicas}")

        # Missing workload surfaces as ResourceNotFoundError
        await self.k8s.read_stateful_set(namespace, name)
        await self.k8s.patch_stateful_set(namespace, name, {"spec": {"replicas": replicas}})
        logger.info(f"[K8S] Scaled workspace {name} in {namespace} to {replicas} replica(s)")

    async def get_workspace_status(self, namespace: str, name: str) -> WorkspaceStatus:
        """Derive the workspace status from the live workload."""
        try:
            statefulset = await self.k8s.read_stateful_set(namespace, name)
        except ResourceNotFoundError:
            return WorkspaceStatus.STOPPED

        desired = (statefulset.spec.replicas if statefulset.spec else 0) or 0
        status = statefulset.status
        current = (status.replicas if status else 0) or 0
        ready = (status.ready_replicas if status else 0) or 0

        if desired == 0:
            # Pods still terminating after a scale-down
            return WorkspaceStatus.STOPPING if current > 0 else WorkspaceStatus.STOPPED
        if ready < desired:
            return WorkspaceStatus.STARTING
        return WorkspaceStatus.RUNNING

    # =========================================================================
    # PODS
    # =========================================================================

    async def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[client.V1Pod]:
        return await self.k8s.list_pods(namespace, label_selector=label_selector)

    async def find_workspace_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        """Return the workspace's pod, preferring a Running one; None if there is none."""
        pods = await self.k8s.list_pods(namespace, label_selector=f"app={name}")
        for pod in pods:
            if pod.status and pod.status.phase == "Running":
                return pod
        return pods[0] if pods else None

    async def get_pod_logs(self, namespace: str, pod_name: str, lines: int = 100) -> str:
        return await self.k8s.read_pod_log(namespace, pod_name, tail_lines=lines)

    # =========================================================================
    # METRICS
    # =========================================================================

    async def get_namespace_usage(self, namespace: str) -> NamespaceUsage:
        """
        Live CPU / memory usage of a namespace against its quota.

        Never raises: if the metrics API is unavailable, usage is reported
        as zero with `degraded` set.
        """
        usage = NamespaceUsage(namespace=namespace)

        try:
            pod_metrics = await self.k8s.list_pod_metrics(namespace)
            for pod in pod_metrics:
                for container in pod.get("containers", []):
                    container_usage = container.get("usage", {})
                    usage.cpu_used += parse_cpu(container_usage.get("cpu"))
                    usage.memory_used += parse_memory(container_usage.get("memory"))
            usage.pod_count = len(pod_metrics)
        except Exception as e:
            logger.warning(f"[K8S] Failed to read metrics for namespace {namespace}: {e}")
            usage.cpu_used = 0.0
            usage.memory_used = 0
            usage.pod_count = 0
            usage.degraded = True

        try:
            quota = await self.k8s.read_resource_quota(namespace, get_quota_name(namespace))
            hard = (quota.spec.hard if quota.spec else None) or {}
            if hard.get("limits.cpu"):
                usage.cpu_limit = parse_cpu(hard["limits.cpu"])
            if hard.get("limits.memory"):
                usage.memory_limit = parse_memory(hard["limits.memory"])
        except Exception as e:
            logger.warning(f"[K8S] Failed to read resource quota for namespace {namespace}: {e}")

        return usage

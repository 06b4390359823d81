"""
Kubernetes Client for Workspace Orchestration

Thin async capability surface over the official Kubernetes API client.
Every blocking call runs in a worker thread and every ApiException is
translated into the orchestration error taxonomy at this boundary, so the
components above never inspect raw status codes.

The client is constructed explicitly and passed to every component that
needs it. API objects can be injected (tests pass mocks); otherwise the
in-cluster configuration is tried first with kubeconfig as fallback.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
import logging
import asyncio
from typing import Any, Callable, Dict, List, Optional

from ..errors import translate_api_exception
from ....config import Settings, get_settings

logger = logging.getLogger(__name__)

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"

# Exec stream channel used by the API server for terminal resize events
RESIZE_CHANNEL = 4


def load_kubernetes_config() -> None:
    """Load in-cluster config, falling back to kubeconfig for development."""
    try:
        # Try in-cluster config first (for production)
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to kubeconfig (for development)
            config.load_kube_config()
            logger.info("Loaded kubeconfig for development")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes config: {e}")
            raise RuntimeError("Cannot load Kubernetes configuration") from e


def _resource_name(kwargs: Dict[str, Any]) -> Optional[str]:
    if kwargs.get("name"):
        return kwargs["name"]
    body = kwargs.get("body")
    metadata = getattr(body, "metadata", None)
    return getattr(metadata, "name", None)


class KubernetesClient:
    """
    Async wrapper around CoreV1Api, AppsV1Api, NetworkingV1Api and
    CustomObjectsApi for the resources the orchestrator manages.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
        networking_v1: Optional[client.NetworkingV1Api] = None,
        custom_objects: Optional[client.CustomObjectsApi] = None,
        stream_client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.settings = settings or get_settings()

        injected = (core_v1, apps_v1, networking_v1, custom_objects)
        if any(api is None for api in injected):
            load_kubernetes_config()

        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()
        self.networking_v1 = networking_v1 or client.NetworkingV1Api()
        self.custom_objects = custom_objects or client.CustomObjectsApi()
        self._stream_client_factory = stream_client_factory or client.CoreV1Api

        logger.info("[K8S] Kubernetes client initialized")

    async def _call(self, func: Callable, action: str, **kwargs) -> Any:
        """
        Run a blocking API call in a worker thread and normalize its errors.

        The namespace / resource context attached to errors is taken from the
        call's own `namespace`, `name` and `body.metadata.name` arguments.
        """
        try:
            return await asyncio.to_thread(func, **kwargs)
        except ApiException as e:
            raise translate_api_exception(
                e,
                action,
                namespace=kwargs.get("namespace"),
                resource=_resource_name(kwargs),
            ) from e

    # =========================================================================
    # NAMESPACES
    # =========================================================================

    async def read_namespace(self, name: str) -> client.V1Namespace:
        return await self._call(self.core_v1.read_namespace, "read namespace", name=name)

    async def create_namespace(self, body: client.V1Namespace) -> client.V1Namespace:
        return await self._call(self.core_v1.create_namespace, "create namespace", body=body)

    async def delete_namespace(self, name: str) -> None:
        await self._call(self.core_v1.delete_namespace, "delete namespace", name=name)

    # =========================================================================
    # RESOURCE QUOTAS
    # =========================================================================

    async def create_resource_quota(self, namespace: str, body: client.V1ResourceQuota):
        return await self._call(
            self.core_v1.create_namespaced_resource_quota,
            "create resource quota",
            namespace=namespace,
            body=body,
        )

    async def read_resource_quota(self, namespace: str, name: str) -> client.V1ResourceQuota:
        return await self._call(
            self.core_v1.read_namespaced_resource_quota,
            "read resource quota",
            name=name,
            namespace=namespace,
        )

    async def replace_resource_quota(self, namespace: str, name: str, body: client.V1ResourceQuota):
        return await self._call(
            self.core_v1.replace_namespaced_resource_quota,
            "replace resource quota",
            name=name,
            namespace=namespace,
            body=body,
        )

    # =========================================================================
    # PERSISTENT VOLUME CLAIMS
    # =========================================================================

    async def create_pvc(self, namespace: str, body: client.V1PersistentVolumeClaim):
        return await self._call(
            self.core_v1.create_namespaced_persistent_volume_claim,
            "create persistent volume claim",
            namespace=namespace,
            body=body,
        )

    async def read_pvc(self, namespace: str, name: str) -> client.V1PersistentVolumeClaim:
        return await self._call(
            self.core_v1.read_namespaced_persistent_volume_claim,
            "read persistent volume claim",
            name=name,
            namespace=namespace,
        )

    async def delete_pvc(self, namespace: str, name: str) -> None:
        await self._call(
            self.core_v1.delete_namespaced_persistent_volume_claim,
            "delete persistent volume claim",
            name=name,
            namespace=namespace,
        )

    # =========================================================================
    # SECRETS & CONFIGMAPS
    # =========================================================================

    async def create_secret(self, namespace: str, body: client.V1Secret):
        return await self._call(
            self.core_v1.create_namespaced_secret, "create secret", namespace=namespace, body=body
        )

    async def delete_secret(self, namespace: str, name: str) -> None:
        await self._call(
            self.core_v1.delete_namespaced_secret, "delete secret", name=name, namespace=namespace
        )

    async def create_config_map(self, namespace: str, body: client.V1ConfigMap):
        return await self._call(
            self.core_v1.create_namespaced_config_map,
            "create config map",
            namespace=namespace,
            body=body,
        )

    async def replace_config_map(self, namespace: str, name: str, body: client.V1ConfigMap):
        return await self._call(
            self.core_v1.replace_namespaced_config_map,
            "replace config map",
            name=name,
            namespace=namespace,
            body=body,
        )

    # =========================================================================
    # STATEFULSETS (workspace workloads)
    # =========================================================================

    async def create_stateful_set(self, namespace: str, body: client.V1StatefulSet):
        return await self._call(
            self.apps_v1.create_namespaced_stateful_set,
            "create statefulset",
            namespace=namespace,
            body=body,
        )

    async def read_stateful_set(self, namespace: str, name: str) -> client.V1StatefulSet:
        return await self._call(
            self.apps_v1.read_namespaced_stateful_set,
            "read statefulset",
            name=name,
            namespace=namespace,
        )

    async def patch_stateful_set(self, namespace: str, name: str, body: Any):
        return await self._call(
            self.apps_v1.patch_namespaced_stateful_set,
            "patch statefulset",
            name=name,
            namespace=namespace,
            body=body,
        )

    async def delete_stateful_set(self, namespace: str, name: str) -> None:
        await self._call(
            self.apps_v1.delete_namespaced_stateful_set,
            "delete statefulset",
            name=name,
            namespace=namespace,
        )

    # =========================================================================
    # DEPLOYMENTS (shared routing proxy)
    # =========================================================================

    async def create_deployment(self, namespace: str, body: client.V1Deployment):
        return await self._call(
            self.apps_v1.create_namespaced_deployment,
            "create deployment",
            namespace=namespace,
            body=body,
        )

    async def patch_deployment(self, namespace: str, name: str, body: Any):
        return await self._call(
            self.apps_v1.patch_namespaced_deployment,
            "patch deployment",
            name=name,
            namespace=namespace,
            body=body,
        )

    # =========================================================================
    # SERVICES
    # =========================================================================

    async def create_service(self, namespace: str, body: client.V1Service):
        return await self._call(
            self.core_v1.create_namespaced_service, "create service", namespace=namespace, body=body
        )

    async def read_service(self, namespace: str, name: str) -> client.V1Service:
        return await self._call(
            self.core_v1.read_namespaced_service, "read service", name=name, namespace=namespace
        )

    async def list_services(self, namespace: str) -> List[client.V1Service]:
        result = await self._call(
            self.core_v1.list_namespaced_service, "list services", namespace=namespace
        )
        return list(result.items or [])

    async def delete_service(self, namespace: str, name: str) -> None:
        await self._call(
            self.core_v1.delete_namespaced_service, "delete service", name=name, namespace=namespace
        )

    # =========================================================================
    # INGRESS
    # =========================================================================

    async def read_ingress(self, namespace: str, name: str) -> client.V1Ingress:
        return await self._call(
            self.networking_v1.read_namespaced_ingress,
            "read ingress",
            name=name,
            namespace=namespace,
        )

    async def create_ingress(self, namespace: str, body: client.V1Ingress):
        return await self._call(
            self.networking_v1.create_namespaced_ingress,
            "create ingress",
            namespace=namespace,
            body=body,
        )

    async def replace_ingress(self, namespace: str, name: str, body: client.V1Ingress):
        return await self._call(
            self.networking_v1.replace_namespaced_ingress,
            "replace ingress",
            name=name,
            namespace=namespace,
            body=body,
        )

    async def delete_ingress(self, namespace: str, name: str) -> None:
        await self._call(
            self.networking_v1.delete_namespaced_ingress,
            "delete ingress",
            name=name,
            namespace=namespace,
        )

    # =========================================================================
    # PODS & NODES
    # =========================================================================

    async def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[client.V1Pod]:
        kwargs = {"namespace": namespace}
        if label_selector:
            kwargs["label_selector"] = label_selector
        result = await self._call(self.core_v1.list_namespaced_pod, "list pods", **kwargs)
        return list(result.items or [])

    async def list_pods_all_namespaces(self) -> List[client.V1Pod]:
        result = await self._call(self.core_v1.list_pod_for_all_namespaces, "list pods in all namespaces")
        return list(result.items or [])

    async def read_pod(self, namespace: str, name: str) -> client.V1Pod:
        return await self._call(
            self.core_v1.read_namespaced_pod, "read pod", name=name, namespace=namespace
        )

    async def read_pod_log(self, namespace: str, name: str, tail_lines: int = 100) -> str:
        return await self._call(
            self.core_v1.read_namespaced_pod_log,
            "read pod log",
            name=name,
            namespace=namespace,
            tail_lines=tail_lines,
        )

    async def list_nodes(self) -> List[client.V1Node]:
        result = await self._call(self.core_v1.list_node, "list nodes")
        return list(result.items or [])

    async def list_pod_metrics(self, namespace: str) -> List[Dict[str, Any]]:
        """Pod usage from the metrics API (requires metrics-server)."""
        result = await self._call(
            self.custom_objects.list_namespaced_custom_object,
            "list pod metrics",
            group=METRICS_GROUP,
            version=METRICS_VERSION,
            namespace=namespace,
            plural="pods",
        )
        return list((result or {}).get("items", []))

    # =========================================================================
    # EXEC STREAMS
    # =========================================================================

    def _get_stream_client(self) -> client.CoreV1Api:
        """
        Create a fresh CoreV1Api client for stream operations.

        IMPORTANT: The kubernetes-python `stream()` function temporarily patches
        the api_client.request method to use WebSocket. If we used the shared
        self.core_v1 client, concurrent regular API calls would go through the
        WebSocket-patched method and fail with
        "WebSocketBadStatusException: Handshake status 200 OK".
        """
        return self._stream_client_factory()

    async def open_exec_stream(
        self,
        namespace: str,
        pod_name: str,
        container: str,
        command: List[str],
        tty: bool = True,
    ) -> Any:
        """
        Open an interactive exec stream (stdin/stdout/stderr) into a pod.

        Returns:
            The kubernetes WSClient for the stream (not preloaded)
        """
        stream_client = self._get_stream_client()

        def _connect():
            return stream(
                stream_client.connect_get_namespaced_pod_exec,
                pod_name,
                namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=True,
                stdout=True,
                tty=tty,
                _preload_content=False,  # Required for streaming
            )

        try:
            return await asyncio.to_thread(_connect)
        except ApiException as e:
            raise translate_api_exception(
                e, "open exec stream", namespace=namespace, resource=pod_name
            ) from e

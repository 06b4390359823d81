"""
Kubernetes manifest helpers for workspaces and the shared routing proxy.

Every builder returns a kubernetes client model (V1*) ready to hand to the
KubernetesClient. Nothing here talks to the cluster.

Per group namespace:
- Namespace + ResourceQuota
- Per workspace: Secret (editor config), PVC, StatefulSet (0/1 replicas), Service
- One shared nginx proxy (ConfigMap + Deployment + Service) and one Ingress
  that fans all workspace paths into it
"""

from kubernetes import client
from typing import Dict, List, Optional
import logging

import yaml

from ....config import Settings
from ....schemas import ResourceQuotaSpec, WorkspaceSpec
from ....utils.resource_naming import (
    get_proxy_config_name,
    get_pvc_name,
    get_quota_name,
    get_route_prefix,
    get_secret_name,
    get_tls_secret_name,
)

logger = logging.getLogger(__name__)

WORKSPACE_CONTAINER_NAME = "workspace"
WORKSPACE_CONFIG_MOUNT = "/etc/workspace"
WORKSPACE_CONFIG_FILE = "config.yaml"
PROXY_CONFIG_KEY = "default.conf"
RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


# =============================================================================
# Labels
# =============================================================================

def get_standard_labels(
    component: str,
    managed_by: str,
    workspace_name: str = None,
    workspace_id: str = None,
) -> Dict[str, str]:
    """
    Get standard labels for orchestrator-managed resources.

    Args:
        component: Component name (workspace, storage, proxy, routing)
        managed_by: Value for app.kubernetes.io/managed-by
        workspace_name: Optional workspace resource name (also set as "app")
        workspace_id: Optional workspace record ID

    Returns:
        Dict of labels
    """
    labels = {
        "app.kubernetes.io/managed-by": managed_by,
        "devplatform.io/component": component,
    }

    if workspace_name:
        labels["app"] = workspace_name

    if workspace_id:
        labels["devplatform.io/workspace-id"] = str(workspace_id)

    return labels


# =============================================================================
# Namespace & Quota
# =============================================================================

def create_namespace_manifest(name: str, managed_by: str, labels: Optional[Dict[str, str]] = None) -> client.V1Namespace:
    namespace_labels = {"app.kubernetes.io/managed-by": managed_by}
    namespace_labels.update(labels or {})
    return client.V1Namespace(
        metadata=client.V1ObjectMeta(name=name, labels=namespace_labels)
    )


def create_resource_quota_manifest(namespace: str, quota: ResourceQuotaSpec) -> client.V1ResourceQuota:
    """
    Create the ResourceQuota that caps a group's namespace.

    Requests and limits share the same ceiling, matching how workspace
    containers are sized (requests == limits).
    """
    return client.V1ResourceQuota(
        metadata=client.V1ObjectMeta(
            name=get_quota_name(namespace),
            namespace=namespace,
        ),
        spec=client.V1ResourceQuotaSpec(
            hard={
                "requests.cpu": quota.cpu,
                "limits.cpu": quota.cpu,
                "requests.memory": quota.memory,
                "limits.memory": quota.memory,
                "requests.storage": quota.storage,
                "pods": str(quota.pods),
            }
        ),
    )


# =============================================================================
# Workspace resources
# =============================================================================

def render_workspace_config(spec: WorkspaceSpec, port: int) -> str:
    """Render the editor's config file with the workspace access credential."""
    return yaml.safe_dump(
        {
            "bind-addr": f"0.0.0.0:{port}",
            "auth": "password",
            "password": spec.access_token,
            "cert": False,
            "disable-telemetry": True,
        },
        default_flow_style=False,
        sort_keys=False,
    )


def create_workspace_secret_manifest(
    namespace: str,
    spec: WorkspaceSpec,
    settings: Settings,
) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=get_secret_name(spec.name),
            namespace=namespace,
            labels=get_standard_labels(
                component="workspace-config",
                managed_by=settings.k8s_managed_by,
                workspace_name=spec.name,
                workspace_id=spec.workspace_id,
            ),
        ),
        type="Opaque",
        string_data={
            WORKSPACE_CONFIG_FILE: render_workspace_config(spec, settings.k8s_workspace_port),
        },
    )


def create_pvc_manifest(
    namespace: str,
    spec: WorkspaceSpec,
    storage_class: str,
    managed_by: str,
    access_mode: str = "ReadWriteOnce",
) -> client.V1PersistentVolumeClaim:
    """
    Create PVC manifest for a workspace's home directory.

    The claim outlives start/stop cycles; only workspace deletion removes it.
    """
    return client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(
            name=get_pvc_name(spec.name),
            namespace=namespace,
            labels=get_standard_labels(
                component="storage",
                managed_by=managed_by,
                workspace_name=spec.name,
                workspace_id=spec.workspace_id,
            ),
        ),
        spec=client.V1PersistentVolumeClaimSpec(
            storage_class_name=storage_class,
            access_modes=[access_mode],
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": spec.resources.storage}
            ),
        ),
    )


def create_workspace_statefulset(
    namespace: str,
    spec: WorkspaceSpec,
    settings: Settings,
) -> client.V1StatefulSet:
    """
    Create the StatefulSet that runs one workspace editor.

    It is always created with 0 replicas; starting and stopping the
    workspace only scales it between 0 and 1.

    Args:
        namespace: Group namespace
        spec: Workspace to run
        settings: Image / port / storage defaults

    Returns:
        V1StatefulSet manifest
    """
    labels = get_standard_labels(
        component="workspace",
        managed_by=settings.k8s_managed_by,
        workspace_name=spec.name,
        workspace_id=spec.workspace_id,
    )
    labels.update(spec.labels)
    port = settings.k8s_workspace_port

    resources = {
        "cpu": spec.resources.cpu,
        "memory": spec.resources.memory,
    }

    container = client.V1Container(
        name=WORKSPACE_CONTAINER_NAME,
        image=spec.image or settings.k8s_workspace_image,
        image_pull_policy=settings.k8s_image_pull_policy,
        args=[
            "--config", f"{WORKSPACE_CONFIG_MOUNT}/{WORKSPACE_CONFIG_FILE}",
            "--abs-proxy-base-path", get_route_prefix(namespace, spec.name),
            settings.k8s_workspace_home,
        ],
        ports=[client.V1ContainerPort(container_port=port, name="http")],
        resources=client.V1ResourceRequirements(
            requests=dict(resources),
            limits=dict(resources),
        ),
        volume_mounts=[
            client.V1VolumeMount(name="workspace-storage", mount_path=settings.k8s_workspace_home),
            client.V1VolumeMount(name="workspace-config", mount_path=WORKSPACE_CONFIG_MOUNT, read_only=True),
        ],
        readiness_probe=client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=port),
            initial_delay_seconds=5,
            period_seconds=5,
        ),
        liveness_probe=client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=port),
            initial_delay_seconds=30,
            period_seconds=10,
        ),
    )

    return client.V1StatefulSet(
        metadata=client.V1ObjectMeta(name=spec.name, namespace=namespace, labels=labels),
        spec=client.V1StatefulSetSpec(
            replicas=0,
            service_name=spec.name,
            selector=client.V1LabelSelector(match_labels={"app": spec.name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    containers=[container],
                    volumes=[
                        client.V1Volume(
                            name="workspace-storage",
                            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                                claim_name=get_pvc_name(spec.name)
                            ),
                        ),
                        client.V1Volume(
                            name="workspace-config",
                            secret=client.V1SecretVolumeSource(secret_name=get_secret_name(spec.name)),
                        ),
                    ],
                ),
            ),
        ),
    )


def create_service_manifest(
    namespace: str,
    name: str,
    target_port: int,
    port: int = 80,
    labels: Optional[Dict[str, str]] = None,
) -> client.V1Service:
    """
    Create a ClusterIP Service selecting pods labelled app=<name>.

    Used for both workspace services and the routing proxy service.
    """
    return client.V1Service(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or {"app": name}),
        spec=client.V1ServiceSpec(
            selector={"app": name},
            ports=[
                client.V1ServicePort(
                    name="http",
                    port=port,
                    target_port=target_port,
                    protocol="TCP",
                )
            ],
            type="ClusterIP",
        ),
    )


# =============================================================================
# Routing proxy
# =============================================================================

def render_proxy_config(namespace: str, service_names: List[str], service_port: int = 80) -> str:
    """
    Render the complete nginx server block for a namespace's workspaces.

    One location per workspace service, proxying the full original path
    (prefix included) with WebSocket upgrade headers. The bare prefix
    (no trailing slash) redirects to the slash form. A catch-all location
    returning 404 is always present, so the output is a valid config even
    with zero services.
    """
    lines = [
        "map $http_upgrade $connection_upgrade {",
        "    default upgrade;",
        "    ''      close;",
        "}",
        "",
        "server {",
        "    listen 80;",
        "    absolute_redirect off;",
        "    port_in_redirect off;",
        "    client_max_body_size 0;",
        "",
    ]

    for service_name in sorted(service_names):
        prefix = get_route_prefix(namespace, service_name)
        upstream = f"http://{service_name}.{namespace}.svc.cluster.local:{service_port}"
        lines.extend([
            f"    location = {prefix} {{",
            f"        return 301 {prefix}/$is_args$args;",
            "    }",
            f"    location {prefix}/ {{",
            f"        proxy_pass {upstream};",
            "        proxy_http_version 1.1;",
            "        proxy_set_header Upgrade $http_upgrade;",
            "        proxy_set_header Connection $connection_upgrade;",
            "        proxy_set_header Host $host;",
            "        proxy_set_header X-Real-IP $remote_addr;",
            "        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
            "        proxy_set_header X-Forwarded-Proto $scheme;",
            "        proxy_read_timeout 3600s;",
            "        proxy_send_timeout 3600s;",
            "    }",
            "",
        ])

    lines.extend([
        "    location / {",
        "        return 404;",
        "    }",
        "}",
        "",
    ])
    return "\n".join(lines)


def create_proxy_config_map(namespace: str, proxy_name: str, config_text: str, managed_by: str) -> client.V1ConfigMap:
    return client.V1ConfigMap(
        metadata=client.V1ObjectMeta(
            name=get_proxy_config_name(proxy_name),
            namespace=namespace,
            labels=get_standard_labels(component="proxy", managed_by=managed_by, workspace_name=proxy_name),
        ),
        data={PROXY_CONFIG_KEY: config_text},
    )


def create_proxy_deployment(namespace: str, settings: Settings) -> client.V1Deployment:
    """Create the nginx Deployment that serves the rendered routing config."""
    proxy_name = settings.routing_proxy_name
    labels = get_standard_labels(component="proxy", managed_by=settings.k8s_managed_by, workspace_name=proxy_name)

    container = client.V1Container(
        name="nginx",
        image=settings.routing_proxy_image,
        ports=[client.V1ContainerPort(container_port=settings.routing_proxy_port, name="http")],
        volume_mounts=[
            client.V1VolumeMount(
                name="proxy-config",
                mount_path=f"/etc/nginx/conf.d/{PROXY_CONFIG_KEY}",
                sub_path=PROXY_CONFIG_KEY,
            )
        ],
        resources=client.V1ResourceRequirements(
            requests={"cpu": "50m", "memory": "64Mi"},
            limits={"cpu": "250m", "memory": "128Mi"},
        ),
        readiness_probe=client.V1Probe(
            tcp_socket=client.V1TCPSocketAction(port=settings.routing_proxy_port),
            period_seconds=5,
        ),
    )

    return client.V1Deployment(
        metadata=client.V1ObjectMeta(name=proxy_name, namespace=namespace, labels=labels),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels={"app": proxy_name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(
                    containers=[container],
                    volumes=[
                        client.V1Volume(
                            name="proxy-config",
                            config_map=client.V1ConfigMapVolumeSource(name=get_proxy_config_name(proxy_name)),
                        )
                    ],
                ),
            ),
        ),
    )


def create_restart_patch(timestamp: str) -> Dict:
    """Strategic-merge patch equivalent to `kubectl rollout restart`."""
    return {
        "spec": {
            "template": {
                "metadata": {
                    "annotations": {RESTARTED_AT_ANNOTATION: timestamp}
                }
            }
        }
    }


def create_ingress_manifest(
    namespace: str,
    service_names: List[str],
    settings: Settings,
) -> client.V1Ingress:
    """
    Create the namespace's Ingress: one Prefix path per workspace, all
    pointing at the shared proxy service.

    Args:
        namespace: Group namespace
        service_names: Workspace services to expose (must be non-empty)
        settings: Hostname / ingress class / TLS configuration

    Returns:
        V1Ingress manifest
    """
    if not service_names:
        raise ValueError("An ingress rule needs at least one path")

    host = settings.routing_hostname
    paths = [
        client.V1HTTPIngressPath(
            path=get_route_prefix(namespace, service_name),
            path_type="Prefix",
            backend=client.V1IngressBackend(
                service=client.V1IngressServiceBackend(
                    name=settings.routing_proxy_name,
                    port=client.V1ServiceBackendPort(number=settings.routing_proxy_port),
                )
            ),
        )
        for service_name in sorted(service_names)
    ]

    ingress_spec = client.V1IngressSpec(
        ingress_class_name=settings.routing_ingress_class,
        rules=[
            client.V1IngressRule(
                host=host,
                http=client.V1HTTPIngressRuleValue(paths=paths),
            )
        ],
    )

    annotations = {
        # WebSocket support for the editor
        "nginx.ingress.kubernetes.io/proxy-http-version": "1.1",
        "nginx.ingress.kubernetes.io/proxy-read-timeout": "3600",
        "nginx.ingress.kubernetes.io/proxy-send-timeout": "3600",
        "nginx.ingress.kubernetes.io/proxy-body-size": "0",
    }

    if settings.routing_tls_enabled:
        annotations["cert-manager.io/issuer"] = settings.routing_cert_issuer
        ingress_spec.tls = [
            client.V1IngressTLS(hosts=[host], secret_name=get_tls_secret_name(namespace))
        ]

    return client.V1Ingress(
        metadata=client.V1ObjectMeta(
            name=settings.routing_ingress_name,
            namespace=namespace,
            labels=get_standard_labels(component="routing", managed_by=settings.k8s_managed_by),
            annotations=annotations,
        ),
        spec=ingress_spec,
    )

"""
Resource naming utilities for groups and workspaces.

Centralized functions for generating consistent identifiers across:
- Namespaces
- Workload / service / storage names
- Routing path prefixes

All generated names are valid DNS-1123 labels (lowercase alphanumerics and
'-', at most 63 characters, starting and ending with an alphanumeric).
"""

import re

DNS_LABEL_MAX_LENGTH = 63
_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")


def sanitize_dns_label(value: str) -> str:
    """
    Turn an arbitrary string into a DNS-1123 label.

    Examples:
        >>> sanitize_dns_label("My_Team 42")
        "my-team-42"
    """
    label = _INVALID_CHARS.sub("-", value.lower()).strip("-")
    label = label[:DNS_LABEL_MAX_LENGTH].rstrip("-")
    if not label:
        raise ValueError(f"Cannot derive a DNS label from {value!r}")
    return label


def get_namespace_name(group_slug: str, prefix: str = "group-") -> str:
    """
    Get the namespace that holds all workspaces of one group.

    Examples:
        >>> get_namespace_name("acme")
        "group-acme"
    """
    return sanitize_dns_label(f"{prefix}{group_slug}")


def get_workspace_resource_name(workspace_id: str, prefix: str = "workspace-") -> str:
    """
    Get the name shared by a workspace's StatefulSet, Service and pods.

    Workspace IDs are issued as "ws-<random>"; the "ws-" part is dropped.

    Examples:
        >>> get_workspace_resource_name("ws-Ab12Cd")
        "workspace-ab12cd"
    """
    suffix = workspace_id[3:] if workspace_id.lower().startswith("ws-") else workspace_id
    return sanitize_dns_label(f"{prefix}{suffix}")


def get_pvc_name(workspace_name: str) -> str:
    return f"{workspace_name}-pvc"


def get_secret_name(workspace_name: str) -> str:
    return f"{workspace_name}-config"


def get_quota_name(namespace: str) -> str:
    return f"{namespace}-quota"


def get_tls_secret_name(namespace: str) -> str:
    return f"{namespace}-tls"


def get_proxy_config_name(proxy_name: str) -> str:
    return f"{proxy_name}-config"


def get_route_prefix(namespace: str, service_name: str) -> str:
    """
    Get the URL path prefix a workspace is served under.

    Examples:
        >>> get_route_prefix("group-acme", "workspace-ab12cd")
        "/group-acme/workspace-ab12cd"
    """
    return f"/{namespace}/{service_name}"


def is_workspace_service(service_name: str, prefix: str, proxy_name: str) -> bool:
    """
    True if a service belongs to a workspace.

    The proxy shares the prefix, so it is excluded by exact name.
    """
    return service_name.startswith(prefix) and service_name != proxy_name

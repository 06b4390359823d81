from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    # Shared token for the admin API and the exec WebSocket.
    # Empty string disables the admin surface entirely.
    admin_api_token: str = ""

    # ==========================================================================
    # Kubernetes Configuration
    # ==========================================================================
    # Each group gets its own namespace: "<prefix><group-slug>"
    k8s_namespace_prefix: str = "group-"
    k8s_managed_by: str = "devplatform-orchestrator"

    # Workspace storage
    k8s_storage_class: str = "gp3"
    k8s_pvc_access_mode: str = "ReadWriteOnce"

    # Workspace container (code-server)
    k8s_workspace_image: str = "codercom/code-server:latest"
    k8s_workspace_port: int = 8000  # Port the editor listens on inside the pod
    k8s_workspace_service_port: int = 80  # Port exposed by the ClusterIP service
    k8s_workspace_home: str = "/home/coder"
    k8s_image_pull_policy: str = "IfNotPresent"

    # Every workspace service name starts with this prefix; routing only
    # considers services that match it
    workspace_service_prefix: str = "workspace-"

    # ==========================================================================
    # Provisioning poll / retry bounds
    # ==========================================================================
    namespace_ready_timeout_seconds: float = 30.0
    namespace_ready_poll_interval_seconds: float = 1.0
    quota_create_max_attempts: int = 5
    quota_create_retry_delay_seconds: float = 2.0
    service_visible_timeout_seconds: float = 30.0
    service_visible_poll_interval_seconds: float = 1.0

    # ==========================================================================
    # Routing (shared reverse proxy + ingress)
    # ==========================================================================
    routing_list_max_attempts: int = 5
    routing_list_retry_delay_seconds: float = 1.0
    routing_proxy_name: str = "workspace-proxy"
    routing_proxy_image: str = "nginx:1.27-alpine"
    routing_proxy_port: int = 80
    routing_ingress_name: str = "workspace-ingress"
    routing_hostname: str = "workspaces.localhost"
    routing_ingress_class: str = "nginx"
    routing_cert_issuer: str = "letsencrypt-prod"
    routing_tls_enabled: bool = True

    # ==========================================================================
    # Capacity planning
    # ==========================================================================
    # One "workspace unit" of schedulable capacity
    capacity_unit_cpu: str = "2"
    capacity_unit_memory: str = "4Gi"

    # ==========================================================================
    # Exec / terminal bridge
    # ==========================================================================
    exec_open_timeout_seconds: float = 5.0
    exec_read_timeout_seconds: float = 0.1
    exec_default_shell: str = (
        "stty sane; stty opost onlcr; export TERM=xterm-256color; "
        "exec bash -i || exec sh -i"
    )

    class Config:
        # For native development: looks for .env in parent directory (project root)
        env_file = "../.env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False  # Allow lowercase env vars to match uppercase field names


@lru_cache()
def get_settings():
    return Settings()

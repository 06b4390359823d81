from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class WorkspaceStatus(str, Enum):
    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class ResourceTier(str, Enum):
    SINGLE_USER = "single-user"
    SMALL_TEAM = "small-team"
    ENTERPRISE = "enterprise"


class WorkspaceResources(BaseModel):
    """CPU / memory / storage for one workspace, as cluster quantity strings."""
    cpu: str
    memory: str
    storage: str


class WorkspaceSpec(BaseModel):
    workspace_id: str
    name: str  # Cluster resource name, e.g. "workspace-abc123"
    resources: WorkspaceResources
    access_token: str
    image: Optional[str] = None  # Falls back to settings.k8s_workspace_image
    labels: Dict[str, str] = Field(default_factory=dict)


class ResourceQuotaSpec(BaseModel):
    cpu: str
    memory: str
    storage: str
    pods: int

    @field_validator('pods')
    @classmethod
    def validate_pods(cls, v):
        if v < 0:
            raise ValueError('Pod count cannot be negative')
        return v


# =============================================================================
# Health
# =============================================================================

class ComponentHealthStatus(BaseModel):
    name: str
    type: str  # "statefulset", "service", "pvc" or "pod"
    healthy: bool
    status: str
    reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class WorkspaceHealthResponse(BaseModel):
    namespace: str
    workspace: str
    healthy: bool
    components: List[ComponentHealthStatus]


class WorkspaceStatusResponse(BaseModel):
    namespace: str
    workspace: str
    status: WorkspaceStatus


# =============================================================================
# Capacity
# =============================================================================

class ResourceAmounts(BaseModel):
    cpu: float = 0.0  # cores
    memory: int = 0  # bytes

    def __add__(self, other: "ResourceAmounts") -> "ResourceAmounts":
        return ResourceAmounts(cpu=self.cpu + other.cpu, memory=self.memory + other.memory)

    def __sub__(self, other: "ResourceAmounts") -> "ResourceAmounts":
        return ResourceAmounts(cpu=self.cpu - other.cpu, memory=self.memory - other.memory)


class NodeCapacity(BaseModel):
    name: str
    instance_type: Optional[str] = None
    capacity: ResourceAmounts
    allocatable: ResourceAmounts
    used: ResourceAmounts
    available: ResourceAmounts
    pods_capacity: int = 0
    pods_allocatable: int = 0
    workspace_capacity: int = 0


class ClusterCapacity(BaseModel):
    node_count: int = 0
    instance_types: List[str] = Field(default_factory=list)
    capacity: ResourceAmounts = Field(default_factory=ResourceAmounts)
    allocatable: ResourceAmounts = Field(default_factory=ResourceAmounts)
    used: ResourceAmounts = Field(default_factory=ResourceAmounts)
    unassigned: ResourceAmounts = Field(default_factory=ResourceAmounts)
    available: ResourceAmounts = Field(default_factory=ResourceAmounts)
    pods_capacity: int = 0
    pods_allocatable: int = 0
    workspace_unit: ResourceAmounts = Field(default_factory=ResourceAmounts)
    available_workspace_capacity: int = 0
    workspace_capacity_by_tier: Dict[str, int] = Field(default_factory=dict)
    nodes: List[NodeCapacity] = Field(default_factory=list)
    usage_degraded: bool = False


class NamespaceUsage(BaseModel):
    namespace: str
    cpu_used: float = 0.0
    memory_used: int = 0
    cpu_limit: Optional[float] = None
    memory_limit: Optional[int] = None
    pod_count: int = 0
    degraded: bool = False


# =============================================================================
# Routing
# =============================================================================

class RoutingSyncResult(BaseModel):
    namespace: str
    services: List[str] = Field(default_factory=list)
    path_prefixes: List[str] = Field(default_factory=list)
    config_published: bool = False
    proxy_restarted: bool = False
    ingress_deleted: bool = False


# =============================================================================
# Audit
# =============================================================================

class AuditEvent(BaseModel):
    actor: str
    action: str  # e.g. "workspace_exec_start"
    resource: str
    success: bool = True
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

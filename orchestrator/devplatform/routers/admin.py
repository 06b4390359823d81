"""
Admin Router

Operator-facing endpoints for workspace observability and interactive
access: cluster capacity, per-workspace component health and status,
manual routing sync, and an exec terminal over WebSocket.

All endpoints require the shared admin token (Authorization: Bearer <token>,
or ?token=<token> on the WebSocket since browsers cannot set headers there).
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, WebSocket, status
from starlette.requests import HTTPConnection

from ..config import Settings, get_settings
from ..schemas import ClusterCapacity, RoutingSyncResult, WorkspaceHealthResponse, WorkspaceStatusResponse
from ..services.exec_bridge import ExecTransport
from ..services.orchestration.errors import OrchestrationError, ResourceNotFoundError
from ..services.orchestration.orchestrator import WorkspaceOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


# Dependencies

def get_orchestrator(connection: HTTPConnection) -> WorkspaceOrchestrator:
    return connection.app.state.orchestrator


def _token_matches(candidate: Optional[str], settings: Settings) -> bool:
    expected = settings.admin_api_token
    if not expected or not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def require_admin(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.admin_api_token:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Admin API is disabled")
    if not _token_matches(_bearer_token(authorization), settings):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _raise_http(e: OrchestrationError) -> None:
    if isinstance(e, ResourceNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


# Endpoints

@router.get("/cluster/capacity", response_model=ClusterCapacity, dependencies=[Depends(require_admin)])
async def get_cluster_capacity(orchestrator: WorkspaceOrchestrator = Depends(get_orchestrator)):
    """Spare cluster capacity in workspace units (never fails; see usage_degraded)."""
    return await orchestrator.get_cluster_capacity()


@router.get(
    "/namespaces/{namespace}/workspaces/{name}/health",
    response_model=WorkspaceHealthResponse,
    dependencies=[Depends(require_admin)],
)
async def get_workspace_health(
    namespace: str,
    name: str,
    orchestrator: WorkspaceOrchestrator = Depends(get_orchestrator),
):
    components = await orchestrator.get_component_health(namespace, name)
    return WorkspaceHealthResponse(
        namespace=namespace,
        workspace=name,
        healthy=all(component.healthy for component in components),
        components=components,
    )


@router.get(
    "/namespaces/{namespace}/workspaces/{name}/status",
    response_model=WorkspaceStatusResponse,
    dependencies=[Depends(require_admin)],
)
async def get_workspace_status(
    namespace: str,
    name: str,
    orchestrator: WorkspaceOrchestrator = Depends(get_orchestrator),
):
    try:
        workspace_status = await orchestrator.get_workspace_status(namespace, name)
    except OrchestrationError as e:
        logger.error(f"Failed to get status of {namespace}/{name}: {e}")
        _raise_http(e)
    return WorkspaceStatusResponse(namespace=namespace, workspace=name, status=workspace_status)


@router.post(
    "/namespaces/{namespace}/routing/sync",
    response_model=RoutingSyncResult,
    dependencies=[Depends(require_admin)],
)
async def sync_routing(namespace: str, orchestrator: WorkspaceOrchestrator = Depends(get_orchestrator)):
    """Rebuild the namespace's proxy config and Ingress from the live service list."""
    try:
        return await orchestrator.sync_routing_for_namespace(namespace)
    except OrchestrationError as e:
        logger.error(f"Routing sync failed for {namespace}: {e}")
        _raise_http(e)


# WebSocket exec

class WebSocketTransport(ExecTransport):
    """Adapts a FastAPI WebSocket to the exec bridge transport interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    async def receive(self) -> Optional[str]:
        """
        Next client frame as text.

        The terminal stdin channel is text, so binary frames are decoded as
        UTF-8; invalid sequences become U+FFFD rather than being forwarded
        as raw bytes.
        """
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            self.closed = True
            return None
        if message.get("text") is not None:
            return message["text"]
        if message.get("bytes") is not None:
            return message["bytes"].decode("utf-8", errors="replace")
        return ""

    async def send(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.websocket.close()


@router.websocket("/namespaces/{namespace}/workspaces/{name}/exec")
async def workspace_exec(
    websocket: WebSocket,
    namespace: str,
    name: str,
    token: Optional[str] = Query(None),
    container: Optional[str] = Query(None),
    actor: str = Query("admin"),
    settings: Settings = Depends(get_settings),
    orchestrator: WorkspaceOrchestrator = Depends(get_orchestrator),
):
    """Interactive terminal into the workspace's running pod."""
    candidate = token or _bearer_token(websocket.headers.get("authorization"))
    if not _token_matches(candidate, settings):
        logger.warning(f"[EXEC] Rejected exec into {namespace}/{name}: invalid admin token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    transport = WebSocketTransport(websocket)

    try:
        pod = await orchestrator.find_workspace_pod(namespace, name)
    except OrchestrationError as e:
        logger.error(f"[EXEC] Failed to look up pod for {namespace}/{name}: {e}")
        pod = None

    if pod is None:
        await transport.send(f"Failed to start exec session: no pod found for workspace {name}\r\n")
        await transport.close()
        return

    await orchestrator.attach_exec(namespace, pod.metadata.name, transport, actor=actor, container=container)

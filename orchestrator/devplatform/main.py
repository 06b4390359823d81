from contextlib import asynccontextmanager
from fastapi import FastAPI
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
import logging

from .config import get_settings
from .routers import admin
from .services.audit import LoggingAuditSink
from .services.orchestration.kubernetes.client import KubernetesClient
from .services.orchestration.orchestrator import WorkspaceOrchestrator

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One cluster client for the whole process, shared by every component
    k8s = KubernetesClient(settings)
    app.state.orchestrator = WorkspaceOrchestrator(k8s, settings, audit_sink=LoggingAuditSink())
    if not settings.admin_api_token:
        logger.warning("ADMIN_API_TOKEN is not set - admin endpoints are disabled")
    logger.info("Orchestrator API started")
    yield
    logger.info("Orchestrator API shutting down")


app = FastAPI(title="Workspace Orchestrator API", lifespan=lifespan)

# Runs behind the cluster ingress; honor its X-Forwarded-* headers
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

"""
Routing Config Synchronizer

Keeps a namespace's shared nginx proxy and its Ingress consistent with the
live set of workspace services. The configuration is always rebuilt from
the service list, never patched incrementally:

1. List services, keep the workspace ones (prefix match, proxy excluded)
2. If the caller just added / removed a service and the list does not
   reflect it yet, re-list a few times, then proceed with what is visible
3. Render the full proxy config and publish it (ConfigMap create-or-replace)
4. Make sure the proxy Deployment + Service exist
5. Restart the proxy so it picks up the config (best-effort)
6. Replace / create the Ingress, or delete it when no workspace is left

Rebuilds for the same namespace are serialized with a per-namespace lock;
different namespaces sync independently. A namespace's lock only lives while
syncs for it are running or queued.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ...config import Settings
from ...schemas import RoutingSyncResult
from ...utils.resource_naming import get_proxy_config_name, get_route_prefix, is_workspace_service
from .errors import ResourceConflictError, ResourceNotFoundError, best_effort
from .kubernetes.client import KubernetesClient
from .kubernetes.helpers import (
    create_ingress_manifest,
    create_proxy_config_map,
    create_proxy_deployment,
    create_restart_patch,
    create_service_manifest,
    get_standard_labels,
    render_proxy_config,
)
from .retry import retry_until

logger = logging.getLogger(__name__)


class RoutingSynchronizer:
    """Rebuilds per-namespace path routing from the live service list."""

    def __init__(self, k8s: KubernetesClient, settings: Settings):
        self.k8s = k8s
        self.settings = settings
        self._locks: Dict[str, asyncio.Lock] = {}
        # Syncs holding or waiting on each lock; the lock is dropped at zero
        self._lock_users: Dict[str, int] = {}

    async def list_workspace_services(self, namespace: str) -> List[str]:
        """Names of the workspace services currently listed in a namespace."""
        services = await self.k8s.list_services(namespace)
        return sorted(
            svc.metadata.name
            for svc in services
            if is_workspace_service(
                svc.metadata.name,
                self.settings.workspace_service_prefix,
                self.settings.routing_proxy_name,
            )
        )

    async def sync_routing_for_namespace(
        self,
        namespace: str,
        expect_present: Optional[str] = None,
        expect_absent: Optional[str] = None,
    ) -> RoutingSyncResult:
        """
        Rebuild routing for a namespace.

        Args:
            namespace: Group namespace
            expect_present: Service that was just created and should be routed
            expect_absent: Service that was just deleted and should be dropped

        Returns:
            RoutingSyncResult describing what was published

        Raises:
            OrchestrationError: listing, publishing the config, ensuring the
                proxy or updating the Ingress failed
        """
        lock = self._locks.setdefault(namespace, asyncio.Lock())
        self._lock_users[namespace] = self._lock_users.get(namespace, 0) + 1
        try:
            async with lock:
                return await self._sync(namespace, expect_present, expect_absent)
        finally:
            self._lock_users[namespace] -= 1
            if not self._lock_users[namespace]:
                del self._lock_users[namespace]
                del self._locks[namespace]

    async def _sync(
        self,
        namespace: str,
        expect_present: Optional[str],
        expect_absent: Optional[str],
    ) -> RoutingSyncResult:
        def _reflects_expectation(names: List[str]) -> bool:
            if expect_present and expect_present not in names:
                return False
            if expect_absent and expect_absent in names:
                return False
            return True

        service_names = await retry_until(
            lambda: self.list_workspace_services(namespace),
            _reflects_expectation,
            attempts=self.settings.routing_list_max_attempts,
            delay=self.settings.routing_list_retry_delay_seconds,
        )
        if not _reflects_expectation(service_names):
            logger.warning(
                f"[ROUTING] Service list for {namespace} still stale after "
                f"{self.settings.routing_list_max_attempts} attempts, syncing with {service_names}"
            )

        result = RoutingSyncResult(
            namespace=namespace,
            services=service_names,
            path_prefixes=[get_route_prefix(namespace, name) for name in service_names],
        )

        config_text = render_proxy_config(
            namespace, service_names, service_port=self.settings.k8s_workspace_service_port
        )
        await self._publish_config(namespace, config_text)
        result.config_published = True

        await self._ensure_proxy(namespace)
        result.proxy_restarted = await best_effort(
            self._restart_proxy(namespace), f"restart routing proxy in {namespace}"
        )

        if service_names:
            await self._apply_ingress(namespace, service_names)
        else:
            result.ingress_deleted = await self._delete_ingress(namespace)

        logger.info(f"[ROUTING] ✅ Synced {len(service_names)} workspace route(s) in {namespace}")
        return result

    async def _publish_config(self, namespace: str, config_text: str) -> None:
        name = get_proxy_config_name(self.settings.routing_proxy_name)
        body = create_proxy_config_map(
            namespace, self.settings.routing_proxy_name, config_text, self.settings.k8s_managed_by
        )
        try:
            await self.k8s.create_config_map(namespace, body)
            logger.info(f"[ROUTING] Created proxy config {name} in {namespace}")
        except ResourceConflictError:
            await self.k8s.replace_config_map(namespace, name, body)
            logger.debug(f"[ROUTING] Replaced proxy config {name} in {namespace}")

    async def _ensure_proxy(self, namespace: str) -> None:
        """Create the proxy Deployment and Service if they are missing."""
        proxy_name = self.settings.routing_proxy_name

        try:
            await self.k8s.create_deployment(namespace, create_proxy_deployment(namespace, self.settings))
            logger.info(f"[ROUTING] ✅ Created proxy deployment {proxy_name} in {namespace}")
        except ResourceConflictError:
            pass

        service = create_service_manifest(
            namespace,
            proxy_name,
            target_port=self.settings.routing_proxy_port,
            port=self.settings.routing_proxy_port,
            labels=get_standard_labels(
                component="proxy", managed_by=self.settings.k8s_managed_by, workspace_name=proxy_name
            ),
        )
        try:
            await self.k8s.create_service(namespace, service)
            logger.info(f"[ROUTING] ✅ Created proxy service {proxy_name} in {namespace}")
        except ResourceConflictError:
            pass

    async def _restart_proxy(self, namespace: str) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        await self.k8s.patch_deployment(
            namespace, self.settings.routing_proxy_name, create_restart_patch(timestamp)
        )
        logger.info(f"[ROUTING] Restarted proxy {self.settings.routing_proxy_name} in {namespace}")

    async def _apply_ingress(self, namespace: str, service_names: List[str]) -> None:
        name = self.settings.routing_ingress_name
        body = create_ingress_manifest(namespace, service_names, self.settings)

        try:
            existing = await self.k8s.read_ingress(namespace, name)
        except ResourceNotFoundError:
            existing = None

        if existing is None:
            try:
                await self.k8s.create_ingress(namespace, body)
                logger.info(f"[ROUTING] ✅ Created ingress {name} in {namespace}")
                return
            except ResourceConflictError:
                # Created concurrently by another replica; fall through to replace
                pass
        else:
            body.metadata.resource_version = existing.metadata.resource_version

        await self.k8s.replace_ingress(namespace, name, body)
        logger.info(f"[ROUTING] ✅ Updated ingress {name} in {namespace}")

    async def _delete_ingress(self, namespace: str) -> bool:
        name = self.settings.routing_ingress_name
        try:
            await self.k8s.delete_ingress(namespace, name)
            logger.info(f"[ROUTING] Deleted ingress {name} in {namespace} (no workspaces left)")
            return True
        except ResourceNotFoundError:
            return False

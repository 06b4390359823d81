"""
Default workspace sizes per group tier.

The capacity planner also uses these to report how many workspaces of each
tier the cluster could still schedule.
"""

from typing import Dict

from .schemas import ResourceTier, WorkspaceResources


RESOURCE_TIERS: Dict[ResourceTier, WorkspaceResources] = {
    ResourceTier.SINGLE_USER: WorkspaceResources(cpu="1", memory="2Gi", storage="20Gi"),
    ResourceTier.SMALL_TEAM: WorkspaceResources(cpu="2", memory="4Gi", storage="20Gi"),
    ResourceTier.ENTERPRISE: WorkspaceResources(cpu="2", memory="4Gi", storage="20Gi"),
}


def get_tier_resources(tier) -> WorkspaceResources:
    """Return a copy of the default resources for a tier (enum or its string value)."""
    return RESOURCE_TIERS[ResourceTier(tier)].model_copy()

"""
Services Module

Key Submodules:
- orchestration: Workspace control-plane on Kubernetes
- exec_bridge: Interactive terminal sessions into workspace pods
- audit: Audit event sinks

Usage:
    from devplatform.services.orchestration.orchestrator import WorkspaceOrchestrator
"""

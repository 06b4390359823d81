"""
Audit trail for administrative access to workspaces.

The durable audit store is owned by the management API; the orchestrator
only emits events through an AuditSink. The default sink writes each event
as one structured log line on the "devplatform.audit" logger.

Audit writes are best-effort: callers wrap `record` with
`errors.best_effort` so a failing sink never breaks the audited action.
"""

import logging
from abc import ABC, abstractmethod

from ..schemas import AuditEvent

audit_logger = logging.getLogger("devplatform.audit")


class AuditSink(ABC):
    """Abstract destination for audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        """Persist one audit event."""
        pass


class LoggingAuditSink(AuditSink):
    """Writes audit events to the audit logger as JSON."""

    async def record(self, event: AuditEvent) -> None:
        level = logging.INFO if event.success else logging.WARNING
        audit_logger.log(level, event.model_dump_json())

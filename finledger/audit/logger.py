"""
Audit Logger

DESIGN DECISION: Every significant step of a command is logged.
This provides:
1. Traceability of what was applied locally vs. what the server accepted
2. A record of every superseded local change (divergence is never silent)
3. Data for a "recent activity" panel

The audit logger:
- Is synchronous: it runs inside local mutations, which never await
- Keeps a bounded in-memory history of recent events
- Supports correlation IDs (the command id) to trace related events
"""

from collections import deque
from typing import Optional
from uuid import UUID

import structlog

from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events to the structured local log and remembers the most recent
    ones for display.
    """

    def __init__(self, history_size: int = 200):
        self._history: deque[AuditEvent] = deque(maxlen=history_size)
        self._logger = structlog.get_logger("finledger.audit")

    def log(self, event: AuditEvent) -> AuditEvent:
        """Log an audit event and keep it in the recent history."""
        self._history.append(event)
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)
        return event

    def recent(
        self,
        limit: int = 50,
        event_type: Optional[AuditEventType] = None,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        events = [e for e in reversed(self._history) if event_type is None or e.event_type == event_type]
        return events[:limit]

    def divergences(self) -> list[AuditEvent]:
        """Every superseded local change still in the history."""
        return self.recent(limit=len(self._history), event_type=AuditEventType.DIVERGENCE_DETECTED)

    def log_command_applied(self, command_id: UUID, name: str, operation_count: int) -> None:
        self.log(AuditEventBuilder.command_applied(command_id, name, operation_count))

    def log_command_rejected(self, name: str, reason: str) -> None:
        self.log(AuditEventBuilder.command_rejected(name, reason))

    def log_remote_write_succeeded(self, command_id: UUID, operation: str) -> None:
        self.log(AuditEventBuilder.remote_write_succeeded(command_id, operation))

    def log_remote_write_failed(self, command_id: UUID, operation: str, error_message: str) -> None:
        self.log(AuditEventBuilder.remote_write_failed(command_id, operation, error_message))

    def log_resync_completed(
        self,
        transactions: int,
        obligations: int,
        goals: int,
        accounts: int,
    ) -> None:
        self.log(AuditEventBuilder.resync_completed(transactions, obligations, goals, accounts))

    def log_resync_deferred(self, in_flight: list[str]) -> None:
        self.log(AuditEventBuilder.resync_deferred(in_flight))

    def log_resync_failed(self, error_message: str) -> None:
        self.log(AuditEventBuilder.resync_failed(error_message))

    def log_divergence(self, command_id: UUID, name: str, unmet: list[str]) -> None:
        self.log(AuditEventBuilder.divergence_detected(command_id, name, unmet))

    def log_snapshot_issues(self, errors: int, warnings: int, messages: list[str]) -> None:
        self.log(AuditEventBuilder.snapshot_issues(errors, warnings, messages))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

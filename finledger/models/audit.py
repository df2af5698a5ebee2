"""
Audit Models for FinLedger

Every significant action in the engine is logged for audit purposes.
This provides:
1. Traceability from a user command to every remote request it caused
2. Debugging information when local and remote state drift apart
3. A record of local changes the server superseded

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Local commands
    COMMAND_APPLIED = "command_applied"
    COMMAND_REJECTED = "command_rejected"

    # Remote writes
    REMOTE_WRITE_SUCCEEDED = "remote_write_succeeded"
    REMOTE_WRITE_FAILED = "remote_write_failed"

    # Reconciliation
    RESYNC_COMPLETED = "resync_completed"
    RESYNC_DEFERRED = "resync_deferred"
    RESYNC_FAILED = "resync_failed"
    DIVERGENCE_DETECTED = "divergence_detected"
    SNAPSHOT_ISSUES = "snapshot_issues"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'goal', 'command')"
    )
    entity_id: Optional[str] = None

    # Correlation - all events caused by one user command share this
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.command_applied(command_id, "record_expense")
        event = AuditEventBuilder.remote_write_failed(command_id, "insert Gastos", err)
    """

    @staticmethod
    def command_applied(
        command_id: UUID,
        name: str,
        operation_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_APPLIED,
            entity_type="command",
            entity_id=str(command_id),
            correlation_id=command_id,
            description=f"Applied locally: {name}",
            details={"command": name, "remote_operations": operation_count},
        )

    @staticmethod
    def command_rejected(
        name: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="command",
            description=f"Rejected before applying: {name}",
            error_message=reason,
            details={"command": name},
        )

    @staticmethod
    def remote_write_succeeded(
        command_id: UUID,
        operation: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_WRITE_SUCCEEDED,
            entity_type="command",
            entity_id=str(command_id),
            correlation_id=command_id,
            description=f"Remote write accepted: {operation}",
            details={"operation": operation},
        )

    @staticmethod
    def remote_write_failed(
        command_id: UUID,
        operation: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REMOTE_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="command",
            entity_id=str(command_id),
            correlation_id=command_id,
            description=f"Remote write failed, local change kept: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def resync_completed(
        transactions: int,
        obligations: int,
        goals: int,
        accounts: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESYNC_COMPLETED,
            entity_type="snapshot",
            description="Local state replaced by server snapshot",
            details={
                "transactions": transactions,
                "obligations": obligations,
                "goals": goals,
                "accounts": accounts,
            },
        )

    @staticmethod
    def resync_deferred(in_flight: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESYNC_DEFERRED,
            entity_type="snapshot",
            description=f"Snapshot discarded, {len(in_flight)} command(s) still in flight",
            details={"in_flight": in_flight},
        )

    @staticmethod
    def resync_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESYNC_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="snapshot",
            description="Could not fetch server snapshot",
            error_message=error_message,
        )

    @staticmethod
    def divergence_detected(
        command_id: UUID,
        name: str,
        unmet: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DIVERGENCE_DETECTED,
            severity=AuditSeverity.WARNING,
            entity_type="command",
            entity_id=str(command_id),
            correlation_id=command_id,
            description=f"Local change superseded by server state: {name}",
            details={"command": name, "unmet_expectations": unmet},
        )

    @staticmethod
    def snapshot_issues(
        errors: int,
        warnings: int,
        messages: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_ISSUES,
            severity=AuditSeverity.WARNING if errors or warnings else AuditSeverity.INFO,
            entity_type="snapshot",
            description=f"Snapshot normalized with {errors} error(s), {warnings} warning(s)",
            details={"messages": messages[:50]},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

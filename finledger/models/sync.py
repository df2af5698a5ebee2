"""
Sync Models for FinLedger

Typed records for the optimistic sync state machine:
- RemoteOperation: one request to the remote store
- EntityExpectation: what the remote store should contain once a write lands
- CommandRecord: the lifecycle of one user command

DESIGN DECISION: A command is the unit of optimism. It may carry several
remote operations; they are dispatched in order and the command only
reconciles when all of them succeeded.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class RemoteAction(str, Enum):
    """Verbs understood by the remote store's POST endpoint."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    SAVE_PROFILE = "saveProfile"


class CommandState(str, Enum):
    """
    Lifecycle of a mutating command.

    IDLE -> APPLIED -> DISPATCHING -> RECONCILED | DIVERGED
    """
    IDLE = "idle"
    APPLIED = "applied"
    DISPATCHING = "dispatching"
    RECONCILED = "reconciled"
    DIVERGED = "diverged"

    @property
    def is_in_flight(self) -> bool:
        return self in (CommandState.APPLIED, CommandState.DISPATCHING)


class ReconcilePolicy(str, Enum):
    """
    How a resync treats local changes the server has not acknowledged.

    SERVER_WINS: the snapshot always replaces local state.
    DEFER_WHEN_IN_FLIGHT: a snapshot that arrives while commands are still
    being dispatched is discarded and fetched again once they finish.
    Both report superseded local changes.
    """
    SERVER_WINS = "server_wins"
    DEFER_WHEN_IN_FLIGHT = "defer_when_in_flight"


class RemoteOperation(BaseModel):
    """A single request to the remote store."""

    action: RemoteAction
    collection: Optional[str] = Field(
        default=None,
        description="Target worksheet ('tipo'); not used by saveProfile"
    )
    payload: dict[str, str] = Field(default_factory=dict)

    def describe(self) -> str:
        target = self.collection or "profile"
        return f"{self.action.value} {target}"


class EntityExpectation(BaseModel):
    """
    What a command expects to find in the next snapshot.

    If a resync produces state that contradicts this, the command's local
    change has been superseded by the server.
    """

    collection: str = Field(
        ...,
        pattern="^(transactions|obligations|goals|accounts)$"
    )
    key: str
    present: bool = True
    fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Attribute values the entity should have (compared by equality)"
    )

    def describe(self) -> str:
        verb = "present" if self.present else "absent"
        return f"{self.collection}[{self.key}] {verb}"


class CommandRecord(BaseModel):
    """The lifecycle of one user command."""

    command_id: UUID = Field(default_factory=uuid4)
    name: str
    state: CommandState = CommandState.IDLE
    operations: list[RemoteOperation] = Field(default_factory=list)
    expectations: list[EntityExpectation] = Field(default_factory=list)
    completed_operations: int = 0
    applied_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    superseded: bool = False
    superseded_details: list[str] = Field(default_factory=list)

    def transition(self, state: CommandState) -> None:
        self.state = state
        if state == CommandState.APPLIED:
            self.applied_at = datetime.now(timezone.utc)
        elif state in (CommandState.RECONCILED, CommandState.DIVERGED):
            self.finished_at = datetime.now(timezone.utc)

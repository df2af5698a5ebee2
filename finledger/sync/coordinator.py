"""
Optimistic Sync Coordinator

Every mutating user command goes through here:

1. The local mutation runs synchronously; a validation error propagates
   and nothing is recorded or sent.
2. The command is recorded as APPLIED and readers see the change at once.
3. Its remote operations are sent in order by a background task; the
   caller never waits for the network.
4. On success, after a short delay, a full resync replaces every local
   collection with the server's state.
5. On failure the command is DIVERGED: the local change stays, and the
   error is surfaced through the notifier and the audit log.

DESIGN DECISION: The server is the final authority, but a local change is
never lost silently. Each command carries expectations about what the next
snapshot should contain; if a resync contradicts them the command is
flagged as superseded and reported.

TRADEOFFS:
- Commands are not queued against each other; only the operations inside
  one command are ordered
- Remote writes are never retried (an insert that timed out may have landed)
- No task is ever cancelled; the HTTP timeout is the only bound on a call
"""

import asyncio
from typing import Any, Callable, Coroutine, Iterable, Optional

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.config.settings import SyncSettings
from finledger.ledger.errors import LedgerError
from finledger.ledger.store import LedgerStore
from finledger.models.sync import (
    CommandRecord,
    CommandState,
    EntityExpectation,
    ReconcilePolicy,
    RemoteOperation,
)
from finledger.services.gateway.interface import GatewayError, RemoteLedgerGateway
from finledger.sync.clock import Clock, SystemClock
from finledger.sync.notifier import LogNotifier, Notifier
from finledger.validation.normalizer import SnapshotNormalizer


PERSISTENCE_FAILED = "Cloud persistence failed; resync manually"
SUPERSEDED = "Local change superseded by server state"


class OptimisticSyncCoordinator:
    """
    Applies commands locally first and reconciles with the remote store.

    Must be used from inside a running event loop: execute() schedules
    background tasks on it.
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: RemoteLedgerGateway,
        normalizer: Optional[SnapshotNormalizer] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
        policy: Optional[ReconcilePolicy] = None,
    ):
        settings = settings or get_settings().sync
        self._store = store
        self._gateway = gateway
        self._normalizer = normalizer or SnapshotNormalizer(store.accounts.wallet_alias)
        self._clock = clock or SystemClock()
        self._notifier = notifier or LogNotifier()
        self._audit = audit_logger or AuditLogger()
        self.policy = policy or ReconcilePolicy(settings.reconcile_policy)
        self.resync_delay_seconds = settings.resync_delay_seconds
        self.history_size = settings.history_size

        self.history: list[CommandRecord] = []
        self._tasks: set[asyncio.Task] = set()
        self._resync_deferred = False

    # =========================================================================
    # Commands
    # =========================================================================

    def execute(
        self,
        name: str,
        apply: Callable[[], Any],
        operations: Iterable[RemoteOperation],
        expectations: Optional[Iterable[EntityExpectation]] = None,
    ) -> CommandRecord:
        """
        Apply a command locally and schedule its remote writes.

        Returns as soon as the local mutation is done. Raises whatever
        apply() raises, in which case the command never happened.

        operations and expectations are read after apply() has run, so
        apply() may fill them with values only the mutation computes.
        """
        loop = asyncio.get_running_loop()

        try:
            apply()
        except (LedgerError, ValueError) as e:
            self._audit.log_command_rejected(name, str(e))
            raise

        record = CommandRecord(
            name=name,
            operations=list(operations),
            expectations=list(expectations or []),
        )
        record.transition(CommandState.APPLIED)
        self.history.append(record)
        self._prune_history()
        self._audit.log_command_applied(record.command_id, name, len(record.operations))

        if not record.operations:
            record.transition(CommandState.RECONCILED)
            return record

        self._spawn(loop, self._dispatch(record))
        return record

    def pending(self) -> list[CommandRecord]:
        """Commands that have not reached a terminal state."""
        return [r for r in self.history if r.state.is_in_flight]

    def diverged(self) -> list[CommandRecord]:
        return [r for r in self.history if r.state == CommandState.DIVERGED]

    def superseded(self) -> list[CommandRecord]:
        return [r for r in self.history if r.superseded]

    async def drain(self) -> None:
        """Wait until every background write and resync has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _spawn(self, loop: asyncio.AbstractEventLoop, coroutine: Coroutine) -> None:
        task = loop.create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _is_writing(record: CommandRecord) -> bool:
        """Still has remote operations that have not been acknowledged."""
        return record.state.is_in_flight and record.completed_operations < len(record.operations)

    def _prune_history(self) -> None:
        """Drop the oldest reconciled commands beyond history_size."""
        excess = len(self.history) - self.history_size
        if excess <= 0:
            return
        kept = []
        for record in self.history:
            if excess > 0 and record.state == CommandState.RECONCILED:
                excess -= 1
                continue
            kept.append(record)
        self.history = kept

    def _writing(self) -> list[CommandRecord]:
        return [r for r in self.history if self._is_writing(r)]

    async def _dispatch(self, record: CommandRecord) -> None:
        record.transition(CommandState.DISPATCHING)

        try:
            for operation in record.operations:
                try:
                    await self._gateway.send(operation)
                except GatewayError as e:
                    self._write_failed(record, operation, str(e))
                    return
                except Exception as e:
                    self._audit.log_error(
                        type(e).__name__,
                        str(e),
                        details={"command": record.name, "operation": operation.describe()},
                        correlation_id=record.command_id,
                    )
                    self._write_failed(record, operation, f"{type(e).__name__}: {e}")
                    return

                record.completed_operations += 1
                self._audit.log_remote_write_succeeded(record.command_id, operation.describe())
        finally:
            self._writes_finished()

        await self._clock.sleep(self.resync_delay_seconds)
        await self.resync()

    def _write_failed(self, record: CommandRecord, operation: RemoteOperation, message: str) -> None:
        record.error_message = message
        record.transition(CommandState.DIVERGED)
        self._audit.log_remote_write_failed(record.command_id, operation.describe(), message)
        self._notifier.error(f"{PERSISTENCE_FAILED} ({record.name}: {message})")

    def _writes_finished(self) -> None:
        """Re-run a deferred resync once nothing is being written."""
        if self._resync_deferred and not self._writing():
            self._resync_deferred = False
            self._spawn(asyncio.get_running_loop(), self.resync())

    # =========================================================================
    # Resync
    # =========================================================================

    async def resync(self) -> bool:
        """
        Fetch the full remote state and replace the local state with it.

        Returns True if the snapshot was applied. Under
        DEFER_WHEN_IN_FLIGHT a snapshot fetched while writes are still
        outstanding is discarded and fetched again when they finish.
        """
        try:
            raw = await self._gateway.fetch_snapshot()
            result = self._normalizer.normalize(raw)
        except GatewayError as e:
            self._audit.log_resync_failed(str(e))
            self._notifier.error(f"Could not refresh from the cloud: {e}")
            return False

        in_flight = self._writing()
        if in_flight and self.policy == ReconcilePolicy.DEFER_WHEN_IN_FLIGHT:
            self._resync_deferred = True
            self._audit.log_resync_deferred([r.name for r in in_flight])
            return False

        if result.issues:
            self._audit.log_snapshot_issues(
                len(result.errors),
                len(result.warnings),
                [issue.message for issue in result.issues],
            )

        try:
            self._store.replace_from_snapshot(result.snapshot)
        except LedgerError as e:
            self._audit.log_error(
                type(e).__name__,
                str(e),
                details={"transactions": len(result.snapshot.transactions)},
            )
            self._notifier.error(f"Cloud data could not be loaded: {e}")
            return False

        snapshot = result.snapshot
        self._audit.log_resync_completed(
            len(snapshot.transactions),
            len(snapshot.obligations),
            len(snapshot.goals),
            len(snapshot.accounts),
        )
        self._check_expectations()
        return True

    def _unmet(self, record: CommandRecord) -> list[str]:
        unmet = []
        for expectation in record.expectations:
            entity = self._store.lookup(expectation.collection, expectation.key)
            if not expectation.present:
                if entity is not None:
                    unmet.append(expectation.describe())
                continue
            if entity is None:
                unmet.append(expectation.describe())
                continue
            for field, value in expectation.fields.items():
                actual = getattr(entity, field, None)
                if actual != value:
                    unmet.append(f"{expectation.describe()}: {field} is {actual}, expected {value}")
        return unmet

    def _check_expectations(self) -> None:
        """Compare every unsettled command against the state just loaded."""
        for record in self.history:
            if record.state == CommandState.RECONCILED:
                continue

            unmet = self._unmet(record)
            if not unmet:
                if not self._is_writing(record):
                    record.superseded = False
                    record.superseded_details = []
                    record.transition(CommandState.RECONCILED)
                continue

            if not record.superseded:
                record.superseded = True
                record.superseded_details = unmet
                self._audit.log_divergence(record.command_id, record.name, unmet)
                self._notifier.warning(f"{SUPERSEDED}: {record.name}")

            if record.state == CommandState.DISPATCHING and not self._is_writing(record):
                record.error_message = SUPERSEDED
                record.transition(CommandState.DIVERGED)

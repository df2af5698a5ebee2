"""Tests for the optimistic sync coordinator against the in-memory remote store."""

import asyncio
import pytest
import requests
from decimal import Decimal

from finledger.config import SyncSettings
from finledger.ledger import NotFoundError
from finledger.models.audit import AuditEventType
from finledger.models.sync import CommandState, ReconcilePolicy, RemoteAction
from finledger.orchestrator import FinanceTracker
from finledger.services.gateway.interface import GOALS, INCOMES
from finledger.sync import OptimisticSyncCoordinator
from finledger.sync.coordinator import PERSISTENCE_FAILED, SUPERSEDED
from finledger.validation.normalizer import NormalizationResult, SnapshotNormalizer


def event_types(audit_logger):
    return [e.event_type for e in reversed(audit_logger.recent(limit=500))]


async def until(condition):
    """Let background tasks run until condition() holds."""
    for _ in range(1000):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestCommandLifecycle:
    """Tests for the happy path and local validation."""

    def test_local_state_visible_before_remote_write(self, tracker, gateway, clock):
        """Test that execute returns with the change applied and nothing sent yet."""
        async def scenario():
            transaction, record = tracker.record_income(Decimal("1000"))
            assert record.state == CommandState.APPLIED
            assert tracker.projector.wallet_balance() == Decimal("1000")
            assert gateway.sent == []
            await tracker.drain()
            return transaction, record

        transaction, record = asyncio.run(scenario())
        assert record.state == CommandState.RECONCILED
        assert record.completed_operations == 1
        assert clock.sleeps == [1.5]
        assert gateway.fetch_count == 1
        assert len(gateway.sheets[INCOMES]) == 1
        assert tracker.store.ledger.get(transaction.timestamp).amount == Decimal("1000")

    def test_audit_trail_of_a_command(self, tracker, audit_logger):
        """Test the events one successful command leaves behind."""
        async def scenario():
            tracker.record_income(Decimal("50"))
            await tracker.drain()

        asyncio.run(scenario())
        assert event_types(audit_logger) == [
            AuditEventType.COMMAND_APPLIED,
            AuditEventType.REMOTE_WRITE_SUCCEEDED,
            AuditEventType.RESYNC_COMPLETED,
        ]

    def test_rejected_command_is_not_recorded(self, tracker, coordinator, gateway, audit_logger):
        """Test that a failing local mutation sends nothing."""
        async def scenario():
            with pytest.raises(NotFoundError):
                tracker.delete_goal("MT404")
            await tracker.drain()

        asyncio.run(scenario())
        assert coordinator.history == []
        assert gateway.sent == []
        assert event_types(audit_logger) == [AuditEventType.COMMAND_REJECTED]

    def test_command_without_operations(self, coordinator, gateway):
        """Test that a purely local command reconciles at once."""
        async def scenario():
            return coordinator.execute("noop", lambda: None, [])

        record = asyncio.run(scenario())
        assert record.state == CommandState.RECONCILED
        assert gateway.fetch_count == 0

    def test_execute_needs_running_loop(self, coordinator):
        """Test that commands cannot be issued outside an event loop."""
        with pytest.raises(RuntimeError):
            coordinator.execute("noop", lambda: None, [])

    def test_operations_sent_in_order(self, tracker, gateway):
        """Test that a two-operation command is dispatched in order."""
        async def scenario():
            tracker.record_income(Decimal("1000"))
            goal, _ = tracker.create_goal("Viaje", Decimal("500"))
            tracker.contribute_to_goal(goal.id, Decimal("200"))
            await tracker.drain()
            gateway.sent.clear()
            tracker.delete_goal_with_funds(goal.id)
            await tracker.drain()

        asyncio.run(scenario())
        assert [(op.action, op.collection) for op in gateway.sent] == [
            (RemoteAction.INSERT, INCOMES),
            (RemoteAction.DELETE, GOALS),
        ]
        assert tracker.projector.wallet_balance() == Decimal("1000")
        assert len(tracker.store.goals) == 0


class TestRemoteFailure:
    """Tests for failed remote writes."""

    def test_failed_write_keeps_local_change(self, tracker, gateway, clock, notifier, audit_logger):
        """Test that a failed insert diverges without rolling back."""
        gateway.fail_next_send()

        async def scenario():
            transaction, record = tracker.record_income(Decimal("300"))
            await tracker.drain()
            return transaction, record

        transaction, record = asyncio.run(scenario())
        assert record.state == CommandState.DIVERGED
        assert "Network unreachable" in record.error_message
        assert transaction.timestamp in tracker.store.ledger
        assert tracker.projector.wallet_balance() == Decimal("300")
        assert notifier.errors[0].startswith(PERSISTENCE_FAILED)
        assert len(audit_logger.recent(event_type=AuditEventType.REMOTE_WRITE_FAILED)) == 1
        assert clock.sleeps == []
        assert gateway.fetch_count == 0

    def test_later_operations_not_sent_after_failure(self, tracker, gateway):
        """Test that a failed operation stops the rest of its command."""
        async def scenario():
            tracker.record_income(Decimal("1000"))
            goal, _ = tracker.create_goal("Viaje", Decimal("500"))
            tracker.contribute_to_goal(goal.id, Decimal("200"))
            await tracker.drain()
            gateway.sent.clear()
            gateway.fail_next_send()
            _, record = tracker.delete_goal_with_funds(goal.id)
            await tracker.drain()
            return record

        record = asyncio.run(scenario())
        assert record.state == CommandState.DIVERGED
        assert record.completed_operations == 0
        assert len(gateway.sent) == 1

    def test_manual_resync_reports_lost_change(self, tracker, gateway, notifier, audit_logger):
        """Test that resyncing after a failure drops the change loudly."""
        gateway.fail_next_send()

        async def scenario():
            transaction, record = tracker.record_income(Decimal("300"))
            await tracker.drain()
            applied = await tracker.resync()
            return transaction, record, applied

        transaction, record, applied = asyncio.run(scenario())
        assert applied
        assert transaction.timestamp not in tracker.store.ledger
        assert record.superseded
        assert notifier.warnings == [f"{SUPERSEDED}: record_income"]
        assert len(audit_logger.divergences()) == 1

    def test_failed_fetch_keeps_local_state(self, tracker, gateway, notifier, audit_logger):
        """Test that an unreachable store leaves the local state alone."""
        gateway.fail_next_send()
        gateway.fail_next_fetch()

        async def scenario():
            tracker.record_income(Decimal("300"))
            await tracker.drain()
            return await tracker.resync()

        assert asyncio.run(scenario()) is False
        assert tracker.projector.wallet_balance() == Decimal("300")
        assert len(notifier.errors) == 2
        assert len(audit_logger.recent(event_type=AuditEventType.RESYNC_FAILED)) == 1

    def test_unexpected_error_diverges_and_unblocks_resync(self, tracker, coordinator, gateway, notifier, audit_logger):
        """Test that an exception outside the gateway hierarchy still ends the command."""
        gateway.fail_next_send(requests.exceptions.ConnectionError("connection reset"))

        async def scenario():
            _, failed = tracker.record_income(Decimal("300"))
            await tracker.drain()
            _, later = tracker.record_income(Decimal("50"))
            await tracker.drain()
            return failed, later

        failed, later = asyncio.run(scenario())
        assert failed.state == CommandState.DIVERGED
        assert failed.error_message == "ConnectionError: connection reset"
        assert notifier.errors[0].startswith(PERSISTENCE_FAILED)
        assert coordinator.pending() == []
        assert later.state == CommandState.RECONCILED
        event = audit_logger.recent(event_type=AuditEventType.SYSTEM_ERROR)[0]
        assert event.description == "System error: ConnectionError"


class TestReconciliation:
    """Tests for resync against concurrent server changes."""

    def test_server_change_supersedes_local(self, tracker, gateway, clock, notifier, audit_logger):
        """Test that a row removed by another device is reported, and the server wins."""
        clock.hold()

        async def scenario():
            transaction, record = tracker.record_income(Decimal("300"))
            await until(lambda: clock.sleeps)
            gateway.sheets[INCOMES].clear()
            clock.advance()
            await tracker.drain()
            return transaction, record

        transaction, record = asyncio.run(scenario())
        assert record.state == CommandState.DIVERGED
        assert record.error_message == SUPERSEDED
        assert record.superseded_details == [f"transactions[{transaction.timestamp}] present"]
        assert transaction.timestamp not in tracker.store.ledger
        assert notifier.warnings == [f"{SUPERSEDED}: record_income"]
        assert len(audit_logger.divergences()) == 1

    def test_resync_deferred_while_writing(self, tracker, gateway, audit_logger):
        """Test that a snapshot fetched mid-write is discarded and refetched."""
        async def scenario():
            tracker.record_income(Decimal("1000"))
            goal, _ = tracker.create_goal("Viaje", Decimal("500"))
            tracker.contribute_to_goal(goal.id, Decimal("400"))
            await tracker.drain()

            gateway.hold_writes()
            release, record = tracker.delete_goal_with_funds(goal.id)
            assert await tracker.resync() is False
            # The stale snapshot still has the goal; local state is untouched
            assert goal.id not in tracker.store.goals
            assert tracker.projector.wallet_balance() == Decimal("1000")

            gateway.release_writes()
            await tracker.drain()
            return goal, release, record

        goal, release, record = asyncio.run(scenario())
        assert release.amount == Decimal("400")
        assert record.state == CommandState.RECONCILED
        assert not record.superseded
        assert goal.id not in tracker.store.goals
        assert tracker.projector.wallet_balance() == Decimal("1000")
        assert len(audit_logger.recent(event_type=AuditEventType.RESYNC_DEFERRED)) == 1

    def test_server_wins_policy(self, store, gateway, clock, notifier, audit_logger, sync_settings):
        """Test that server_wins applies stale snapshots and recovers once the write lands."""
        coordinator = OptimisticSyncCoordinator(
            store,
            gateway,
            clock=clock,
            notifier=notifier,
            audit_logger=audit_logger,
            settings=sync_settings,
            policy=ReconcilePolicy.SERVER_WINS,
        )
        tracker = FinanceTracker(store, coordinator, audit_logger=audit_logger)

        async def scenario():
            gateway.hold_writes()
            transaction, record = tracker.record_income(Decimal("300"))
            assert await tracker.resync() is True
            assert transaction.timestamp not in store.ledger
            assert record.superseded
            assert record.state.is_in_flight

            gateway.release_writes()
            await tracker.drain()
            return transaction, record

        transaction, record = asyncio.run(scenario())
        assert record.state == CommandState.RECONCILED
        assert not record.superseded
        assert transaction.timestamp in store.ledger
        assert len(notifier.warnings) == 1

    def test_initial_load(self, tracker, gateway):
        """Test that a resync on an empty store loads the remote state."""
        gateway.seed(INCOMES, {
            "fecha": "2024-05-01", "monto": "1200", "timestamp": "2024-05-01T10:00:00.000Z",
        })
        gateway.seed(GOALS, {"id": "MT1", "nombre": "Viaje", "monto_objetivo": "500"})

        assert asyncio.run(tracker.resync()) is True
        assert tracker.projector.wallet_balance() == Decimal("1200")
        assert tracker.store.goals.get("MT1").name == "Viaje"
        assert tracker.store.last_synced_at is not None


class DuplicatingNormalizer(SnapshotNormalizer):
    """Produces a corrupt snapshot: every transaction twice."""

    def normalize(self, raw):
        result = super().normalize(raw)
        doubled = result.snapshot.transactions * 2
        return NormalizationResult(
            snapshot=result.snapshot.model_copy(update={"transactions": doubled}),
            issues=result.issues,
        )


class TestCorruptSnapshot:
    """Tests for snapshots the local store refuses to load."""

    def test_rejected_snapshot_keeps_local_state(self, store, gateway, clock, notifier, audit_logger, sync_settings):
        """Test that a snapshot with duplicate identities is reported and not applied."""
        gateway.seed(INCOMES, {"fecha": "2024-05-01", "monto": "10", "timestamp": "2024-05-01T10:00:00.000Z"})
        coordinator = OptimisticSyncCoordinator(
            store,
            gateway,
            normalizer=DuplicatingNormalizer(),
            clock=clock,
            notifier=notifier,
            audit_logger=audit_logger,
            settings=sync_settings,
        )

        assert asyncio.run(coordinator.resync()) is False
        assert len(store.ledger) == 0
        assert notifier.errors[0].startswith("Cloud data could not be loaded")
        event = audit_logger.recent(event_type=AuditEventType.SYSTEM_ERROR)[0]
        assert event.description == "System error: DuplicateKeyError"


class TestHistoryBound:
    """Tests for the size cap on command history."""

    def test_oldest_reconciled_commands_dropped(self, store, gateway, clock, notifier, audit_logger):
        """Test that history keeps unsettled commands and the newest reconciled ones."""
        settings = SyncSettings(resync_delay_seconds=0, history_size=2)
        coordinator = OptimisticSyncCoordinator(
            store,
            gateway,
            clock=clock,
            notifier=notifier,
            audit_logger=audit_logger,
            settings=settings,
        )
        tracker = FinanceTracker(store, coordinator, audit_logger=audit_logger)
        gateway.fail_next_send()

        async def scenario():
            _, failed = tracker.record_income(Decimal("10"))
            await tracker.drain()
            for index in range(3):
                coordinator.execute(f"local_{index}", lambda: None, [])
            return failed

        failed = asyncio.run(scenario())
        assert coordinator.history[0] is failed
        assert [r.name for r in coordinator.history[1:]] == ["local_2"]

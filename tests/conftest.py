"""
Shared fixtures.

No test talks to a real remote store: every gateway is the in-memory one
or a mocked requests session.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from finledger.audit import AuditLogger
from finledger.config import SyncSettings
from finledger.ledger import LedgerStore, TimestampFactory
from finledger.models.ledger import (
    Account,
    AccountType,
    ObligationType,
    PendingObligation,
    Transaction,
    TransactionKind,
)
from finledger.orchestrator import FinanceTracker
from finledger.services.gateway import InMemoryGateway
from finledger.sync import Clock, Notifier, OptimisticSyncCoordinator


TODAY = date(2024, 5, 15)


class ManualClock(Clock):
    """Records every requested delay; hold() makes sleepers wait for advance()."""

    def __init__(self):
        self.sleeps: list[float] = []
        self._gate: Optional[asyncio.Event] = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def advance(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        gate = self._gate
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)


class SteppingNow:
    """A deterministic clock for TimestampFactory: one second per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def make_transaction(
    kind: TransactionKind,
    amount,
    timestamp: str,
    account: str = "Billetera",
    goal_id: Optional[str] = None,
    entry_date: date = TODAY,
    category: str = "",
) -> Transaction:
    return Transaction(
        kind=kind,
        amount=Decimal(str(amount)),
        account=account,
        category=category,
        entry_date=entry_date,
        timestamp=timestamp,
        goal_id=goal_id,
    )


def make_obligation(
    obligation_id: str = "GP1",
    total="1200",
    count: int = 12,
    paid="0",
    card: str = "Visa",
    obligation_type: ObligationType = ObligationType.DEBT,
    due_date: Optional[date] = None,
) -> PendingObligation:
    return PendingObligation(
        id=obligation_id,
        total_amount=Decimal(total),
        installment_count=count,
        amount_paid=Decimal(paid),
        card_account=card,
        description="Laptop",
        obligation_type=obligation_type,
        due_date=due_date,
    )


def credit_card(alias: str = "Visa", limit="2000") -> Account:
    return Account(
        alias=alias,
        account_type=AccountType.CREDIT,
        bank="BCP",
        credit_limit=Decimal(limit),
        closing_day=20,
        payment_day=5,
    )


def debit_card(alias: str = "Ahorros", opening="500") -> Account:
    return Account(
        alias=alias,
        account_type=AccountType.DEBIT,
        bank="BBVA",
        opening_amount=Decimal(opening),
    )


@pytest.fixture
def timestamps():
    return TimestampFactory(now=SteppingNow())


@pytest.fixture
def store(timestamps):
    return LedgerStore(timestamps=timestamps, today=lambda: TODAY)


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.fixture
def sync_settings():
    return SyncSettings(resync_delay_seconds=1.5, reconcile_policy="defer_when_in_flight")


@pytest.fixture
def coordinator(store, gateway, clock, notifier, audit_logger, sync_settings):
    return OptimisticSyncCoordinator(
        store,
        gateway,
        clock=clock,
        notifier=notifier,
        audit_logger=audit_logger,
        settings=sync_settings,
    )


@pytest.fixture
def tracker(store, coordinator, audit_logger):
    return FinanceTracker(store, coordinator, audit_logger=audit_logger)

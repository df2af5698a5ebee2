"""
Main Orchestrator for FinLedger

This module ties together all the components and maps every user action
onto one optimistic command:
1. The local mutation (validated before anything changes)
2. The ordered remote operations that persist it
3. The expectations the next snapshot should satisfy

DESIGN DECISION: The facade is the only place that knows both the local
model and the remote row formats. Ledger components never talk to the
network and the coordinator never interprets payloads.

Methods that create something return (entity, command); the rest return
the command. Every method must be called from inside a running event loop.
"""

import calendar
from datetime import date
from typing import Any, Optional

from finledger.audit import AuditLogger
from finledger.config import get_settings
from finledger.ledger.errors import LedgerValidationError
from finledger.ledger.projector import AccountBalanceProjector
from finledger.ledger.store import LedgerStore
from finledger.models.ledger import (
    Account,
    AccountType,
    Goal,
    ObligationType,
    PaymentKind,
    PendingObligation,
    Transaction,
    TransactionKind,
    UserProfile,
    add_one_month,
    parse_timestamp,
)
from finledger.models.sync import (
    CommandRecord,
    EntityExpectation,
    RemoteAction,
    RemoteOperation,
)
from finledger.services.gateway import (
    AppsScriptGateway,
    GoogleSheetsGateway,
    InMemoryGateway,
    RemoteLedgerGateway,
)
from finledger.services.gateway.interface import CARDS, GOALS, PAYMENTS, PENDING
from finledger.sync import Clock, LogNotifier, Notifier, OptimisticSyncCoordinator
from finledger.validation import SnapshotNormalizer


CARD_PAYMENT_CATEGORY = "Pago de tarjeta"

# Fields an edit may not touch; they are changed by dedicated commands
_FROZEN_TRANSACTION_FIELDS = {"kind", "timestamp", "goal_id"}
_FROZEN_OBLIGATION_FIELDS = {"id", "amount_paid", "timestamp"}

# Transaction.description max_length
_DESCRIPTION_LIMIT = 300


def _insert(collection: str, payload: dict[str, str]) -> RemoteOperation:
    return RemoteOperation(action=RemoteAction.INSERT, collection=collection, payload=payload)


def _update(collection: str, payload: dict[str, str]) -> RemoteOperation:
    return RemoteOperation(action=RemoteAction.UPDATE, collection=collection, payload=payload)


def _delete(collection: str, key: str) -> RemoteOperation:
    return RemoteOperation(action=RemoteAction.DELETE, collection=collection, payload={"id": key})


def _expect(collection: str, key: str, present: bool = True, **fields: Any) -> EntityExpectation:
    return EntityExpectation(collection=collection, key=key, present=present, fields=fields)


def _day_in_month(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def billing_dates(account: Account, purchase_date: date) -> tuple[Optional[date], Optional[date]]:
    """
    Closing and due date of the statement a card purchase lands on.

    The purchase closes on the next closing day on or after it; the due
    date is the first payment day after that closing.
    """
    if account.closing_day is None:
        return None, None

    closing = _day_in_month(purchase_date.year, purchase_date.month, account.closing_day)
    if closing < purchase_date:
        closing = add_one_month(closing)

    if account.payment_day is None:
        return closing, None
    due = _day_in_month(closing.year, closing.month, account.payment_day)
    if due <= closing:
        due = add_one_month(due)
    return closing, due


class FinanceTracker:
    """
    User-facing commands over the local store.

    Each command validates and mutates local state synchronously, then
    hands the remote writes to the coordinator. Reads (projector, store)
    always reflect the latest local command.
    """

    def __init__(
        self,
        store: LedgerStore,
        coordinator: OptimisticSyncCoordinator,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._coordinator = coordinator
        self._audit_logger = audit_logger

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def projector(self) -> AccountBalanceProjector:
        return self._store.projector

    @property
    def coordinator(self) -> OptimisticSyncCoordinator:
        return self._coordinator

    @property
    def audit_logger(self) -> Optional[AuditLogger]:
        return self._audit_logger

    async def resync(self) -> bool:
        """Replace local state with the remote store's (also the initial load)."""
        return await self._coordinator.resync()

    async def drain(self) -> None:
        await self._coordinator.drain()

    def _new_id(self, prefix: str) -> tuple[str, str]:
        """An entity id built from a fresh timestamp, plus that timestamp."""
        timestamp = self._store.timestamps.next()
        millis = int(parse_timestamp(timestamp).timestamp() * 1000)
        return f"{prefix}{millis}", timestamp

    def _wallet_or(self, account: Optional[str]) -> str:
        return account or self._store.accounts.wallet_alias

    # =========================================================================
    # Cash movements
    # =========================================================================

    def _record(
        self,
        name: str,
        kind: TransactionKind,
        amount,
        account: Optional[str],
        category: str,
        description: str,
        entry_date: Optional[date],
        notes: Optional[str],
    ) -> tuple[Transaction, CommandRecord]:
        alias = self._wallet_or(account)
        self.projector.require_cash_account(alias)
        transaction = Transaction(
            kind=kind,
            amount=amount,
            account=alias,
            category=category,
            description=description,
            entry_date=entry_date or self._store.today(),
            notes=notes,
            timestamp=self._store.timestamps.next(),
        )
        command = self._coordinator.execute(
            name,
            lambda: self._store.ledger.append(transaction),
            [_insert(transaction.remote_collection, transaction.to_remote_payload())],
            [_expect("transactions", transaction.timestamp, amount=transaction.amount)],
        )
        return transaction, command

    def record_income(
        self,
        amount,
        account: Optional[str] = None,
        category: str = "",
        description: str = "",
        entry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> tuple[Transaction, CommandRecord]:
        """Money coming into the wallet (default) or a debit account."""
        return self._record(
            "record_income", TransactionKind.INCOME, amount, account,
            category, description, entry_date, notes,
        )

    def record_expense(
        self,
        amount,
        account: Optional[str] = None,
        category: str = "",
        description: str = "",
        entry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> tuple[Transaction, CommandRecord]:
        """
        Money leaving the wallet (default) or a debit account.

        Credit card purchases are not expenses; see register_credit_purchase.
        """
        return self._record(
            "record_expense", TransactionKind.EXPENSE, amount, account,
            category, description, entry_date, notes,
        )

    def edit_transaction(self, timestamp: str, **changes: Any) -> tuple[Transaction, CommandRecord]:
        """
        Replace an income or expense with an edited copy.

        Goal movements are changed only through the goal commands.
        """
        current = self._store.ledger.get(timestamp)
        if current.kind.is_goal_movement:
            raise LedgerValidationError("Goal movements cannot be edited directly")
        frozen = _FROZEN_TRANSACTION_FIELDS & changes.keys()
        if frozen:
            raise LedgerValidationError(f"Cannot edit {', '.join(sorted(frozen))}")

        edited = current.with_changes(**changes)
        self.projector.require_cash_account(edited.account)

        payload = edited.to_remote_payload()
        payload["timestamp_original"] = timestamp
        command = self._coordinator.execute(
            "edit_transaction",
            lambda: self._store.ledger.replace(timestamp, edited),
            [_update(edited.remote_collection, payload)],
            [_expect(
                "transactions", timestamp,
                amount=edited.amount, account=edited.account,
                category=edited.category, entry_date=edited.entry_date,
            )],
        )
        return edited, command

    def delete_transaction(self, timestamp: str) -> CommandRecord:
        transaction = self._store.ledger.get(timestamp)
        if transaction.kind.is_goal_movement:
            raise LedgerValidationError("Goal movements are removed by releasing the goal")
        return self._coordinator.execute(
            "delete_transaction",
            lambda: self._store.ledger.remove(timestamp),
            [_delete(transaction.remote_collection, timestamp)],
            [_expect("transactions", timestamp, present=False)],
        )

    # =========================================================================
    # Accounts
    # =========================================================================

    def add_account(self, account: Account) -> tuple[Account, CommandRecord]:
        if not account.timestamp:
            account = account.with_changes(timestamp=self._store.timestamps.next())
        command = self._coordinator.execute(
            "add_account",
            lambda: self._store.accounts.add(account),
            [_insert(CARDS, account.to_remote_payload())],
            [_expect("accounts", account.alias, account_type=account.account_type)],
        )
        return account, command

    def update_account(self, original_alias: str, account: Account) -> CommandRecord:
        """Edit a card; renaming is allowed."""
        current = self._store.accounts.get(original_alias)
        if not account.timestamp:
            account = account.with_changes(timestamp=current.timestamp)

        payload = account.to_remote_payload()
        payload["originalAlias"] = original_alias
        expectations = [_expect(
            "accounts", account.alias,
            account_type=account.account_type,
            credit_limit=account.credit_limit,
            opening_amount=account.opening_amount,
        )]
        if account.alias != original_alias:
            expectations.append(_expect("accounts", original_alias, present=False))

        return self._coordinator.execute(
            "update_account",
            lambda: self._store.accounts.update(original_alias, account),
            [_update(CARDS, payload)],
            expectations,
        )

    def remove_account(self, alias: str) -> CommandRecord:
        """Remove a card. Cards with unpaid debt must be settled first."""
        if self.projector.remaining_debt(alias) > 0:
            raise LedgerValidationError(f"{alias} still has unpaid debt")
        return self._coordinator.execute(
            "remove_account",
            lambda: self._store.accounts.remove(alias),
            [_delete(CARDS, alias)],
            [_expect("accounts", alias, present=False)],
        )

    # =========================================================================
    # Pending obligations
    # =========================================================================

    def register_credit_purchase(
        self,
        card_account: str,
        total_amount,
        installment_count: int = 1,
        category: str = "",
        description: str = "",
        purchase_date: Optional[date] = None,
        closing_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> tuple[PendingObligation, CommandRecord]:
        """
        A purchase on a credit card, paid back in installments.

        Closing and due dates default to the card's next statement.
        """
        card = self._store.accounts.get(card_account)
        if card.account_type != AccountType.CREDIT:
            raise LedgerValidationError(f"{card_account} is not a credit card")

        purchase_date = purchase_date or self._store.today()
        default_closing, default_due = billing_dates(card, purchase_date)
        obligation_id, timestamp = self._new_id("GP")
        obligation = PendingObligation(
            id=obligation_id,
            total_amount=total_amount,
            installment_count=installment_count,
            card_account=card_account,
            purchase_date=purchase_date,
            category=category,
            description=description,
            closing_date=closing_date or default_closing,
            due_date=due_date or default_due,
            obligation_type=ObligationType.DEBT,
            notes=notes,
            timestamp=timestamp,
        )
        return self._register(obligation, "register_credit_purchase")

    def register_subscription(
        self,
        card_account: str,
        amount,
        description: str = "",
        category: str = "",
        due_date: Optional[date] = None,
        closing_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> tuple[PendingObligation, CommandRecord]:
        """A monthly charge; paying it rolls its dates forward one month."""
        card = self._store.accounts.get(card_account)
        today = self._store.today()
        default_closing, default_due = billing_dates(card, today)
        obligation_id, timestamp = self._new_id("GP")
        obligation = PendingObligation(
            id=obligation_id,
            total_amount=amount,
            installment_count=1,
            card_account=card_account,
            purchase_date=today,
            category=category,
            description=description,
            closing_date=closing_date or default_closing,
            due_date=due_date or default_due,
            obligation_type=ObligationType.SUBSCRIPTION,
            notes=notes,
            timestamp=timestamp,
        )
        return self._register(obligation, "register_subscription")

    def _register(
        self,
        obligation: PendingObligation,
        name: str,
    ) -> tuple[PendingObligation, CommandRecord]:
        command = self._coordinator.execute(
            name,
            lambda: self._store.obligations.create(obligation),
            [_insert(PENDING, obligation.to_remote_payload())],
            [_expect("obligations", obligation.id, total_amount=obligation.total_amount)],
        )
        return obligation, command

    def update_obligation(self, obligation_id: str, **changes: Any) -> tuple[PendingObligation, CommandRecord]:
        """Edit an obligation's terms. Progress only moves through pay_obligation."""
        frozen = _FROZEN_OBLIGATION_FIELDS & changes.keys()
        if frozen:
            raise LedgerValidationError(f"Cannot edit {', '.join(sorted(frozen))}")

        edited = self._store.obligations.get(obligation_id).with_changes(**changes)
        command = self._coordinator.execute(
            "update_obligation",
            lambda: self._store.obligations.update(obligation_id, edited),
            [_update(PENDING, edited.to_remote_payload())],
            [_expect(
                "obligations", obligation_id,
                total_amount=edited.total_amount,
                installment_count=edited.installment_count,
            )],
        )
        return edited, command

    def remove_obligation(self, obligation_id: str) -> CommandRecord:
        self._store.obligations.get(obligation_id)
        return self._coordinator.execute(
            "remove_obligation",
            lambda: self._store.obligations.remove(obligation_id),
            [_delete(PENDING, obligation_id)],
            [_expect("obligations", obligation_id, present=False)],
        )

    def pay_obligation(
        self,
        obligation_id: str,
        amount,
        payment_kind: PaymentKind = PaymentKind.INSTALLMENT,
        from_account: Optional[str] = None,
        paid_on: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> CommandRecord:
        """
        Settle (part of) an obligation.

        With from_account, the money actually paid is also recorded as an
        expense on that cash account, in the same command.
        """
        if from_account is not None:
            self.projector.require_cash_account(from_account)
        obligation = self._store.obligations.get(obligation_id)
        operations: list[RemoteOperation] = []
        expectations: list[EntityExpectation] = []

        def apply() -> None:
            settled, payment = self._store.obligations.prepare_settlement(
                obligation_id, amount, payment_kind, paid_on=paid_on, notes=notes
            )
            expense = None
            if from_account is not None:
                description = f"Pago {obligation.card_account}: {obligation.description}".strip()
                expense = Transaction(
                    kind=TransactionKind.EXPENSE,
                    amount=payment.amount,
                    account=from_account,
                    category=CARD_PAYMENT_CATEGORY,
                    description=description[:_DESCRIPTION_LIMIT],
                    entry_date=payment.paid_on,
                    timestamp=self._store.timestamps.next(),
                )
                self._store.ledger.append(expense)
            self._store.obligations.update(obligation_id, settled)

            operations.append(_insert(PAYMENTS, payment.to_remote_payload()))
            if settled.is_subscription:
                expectations.append(_expect("obligations", obligation_id, due_date=settled.due_date))
            else:
                expectations.append(_expect("obligations", obligation_id, amount_paid=settled.amount_paid))
            if expense is not None:
                operations.append(_insert(expense.remote_collection, expense.to_remote_payload()))
                expectations.append(_expect("transactions", expense.timestamp, amount=expense.amount))

        return self._coordinator.execute("pay_obligation", apply, operations, expectations)

    # =========================================================================
    # Goals
    # =========================================================================

    def create_goal(
        self,
        name: str,
        target_amount,
        deadline: Optional[date] = None,
    ) -> tuple[Goal, CommandRecord]:
        goal_id, timestamp = self._new_id("MT")
        goal = Goal(
            id=goal_id,
            name=name,
            target_amount=target_amount,
            deadline=deadline,
            timestamp=timestamp,
        )
        command = self._coordinator.execute(
            "create_goal",
            lambda: self._store.goals.create(goal),
            [_insert(GOALS, goal.to_remote_payload())],
            [_expect("goals", goal.id, target_amount=goal.target_amount)],
        )
        return goal, command

    def update_goal(
        self,
        goal_id: str,
        name: Optional[str] = None,
        target_amount=None,
        deadline: Optional[date] = None,
    ) -> tuple[Goal, CommandRecord]:
        current = self._store.goals.get(goal_id)
        edited = current.with_changes(
            name=name if name is not None else current.name,
            target_amount=target_amount if target_amount is not None else current.target_amount,
            deadline=deadline if deadline is not None else current.deadline,
        )
        result: dict[str, Goal] = {}
        operations: list[RemoteOperation] = []

        def apply() -> None:
            updated = self._store.goals.update(edited)
            result["goal"] = updated
            operations.append(_update(GOALS, updated.to_remote_payload()))

        command = self._coordinator.execute(
            "update_goal",
            apply,
            operations,
            [_expect("goals", goal_id, name=edited.name, target_amount=edited.target_amount)],
        )
        return result["goal"], command

    def _goal_movement(self, name: str, move, goal_id: str, amount, account: Optional[str]):
        alias = self._wallet_or(account)
        result: dict[str, Transaction] = {}
        operations: list[RemoteOperation] = []
        expectations: list[EntityExpectation] = []

        def apply() -> None:
            transaction = move(goal_id, amount, alias)
            goal = self._store.goals.get(goal_id)
            result["transaction"] = transaction
            operations.append(_insert(transaction.remote_collection, transaction.to_remote_payload()))
            operations.append(_update(GOALS, goal.to_remote_payload()))
            expectations.append(_expect("transactions", transaction.timestamp, amount=transaction.amount))
            expectations.append(_expect("goals", goal_id, saved_amount=goal.saved_amount, state=goal.state))

        command = self._coordinator.execute(name, apply, operations, expectations)
        return result["transaction"], command

    def contribute_to_goal(
        self,
        goal_id: str,
        amount,
        account: Optional[str] = None,
    ) -> tuple[Transaction, CommandRecord]:
        """Set money aside from a cash account (wallet by default)."""
        return self._goal_movement(
            "contribute_to_goal", self._store.goals.contribute, goal_id, amount, account
        )

    def release_from_goal(
        self,
        goal_id: str,
        amount,
        account: Optional[str] = None,
    ) -> tuple[Transaction, CommandRecord]:
        """Break the envelope back into a cash account (wallet by default)."""
        return self._goal_movement(
            "release_from_goal", self._store.goals.release, goal_id, amount, account
        )

    def delete_goal(self, goal_id: str) -> CommandRecord:
        """Delete an empty goal."""
        return self._coordinator.execute(
            "delete_goal",
            lambda: self._store.goals.delete(goal_id),
            [_delete(GOALS, goal_id)],
            [_expect("goals", goal_id, present=False)],
        )

    def delete_goal_with_funds(
        self,
        goal_id: str,
        destination: Optional[str] = None,
    ) -> tuple[Optional[Transaction], CommandRecord]:
        """
        Release everything a goal holds, then delete it.

        One command, two remote operations sent in this order: the release
        row first, then the goal deletion.
        """
        alias = self._wallet_or(destination)
        result: dict[str, Optional[Transaction]] = {}
        operations: list[RemoteOperation] = []
        expectations = [_expect("goals", goal_id, present=False)]

        def apply() -> None:
            release = self._store.goals.release_and_delete(goal_id, alias)
            result["release"] = release
            if release is not None:
                operations.append(_insert(release.remote_collection, release.to_remote_payload()))
                expectations.append(_expect("transactions", release.timestamp, amount=release.amount))
            operations.append(_delete(GOALS, goal_id))

        command = self._coordinator.execute("delete_goal_with_funds", apply, operations, expectations)
        return result["release"], command

    # =========================================================================
    # Profile
    # =========================================================================

    def save_profile(self, name: str, avatar_id: str = "") -> CommandRecord:
        profile = UserProfile(avatar_id=avatar_id, name=name)

        def apply() -> None:
            self._store.profile = profile

        return self._coordinator.execute(
            "save_profile",
            apply,
            [RemoteOperation(action=RemoteAction.SAVE_PROFILE, payload=profile.to_remote_payload())],
        )


def create_gateway(backend: str) -> RemoteLedgerGateway:
    if backend == "apps_script":
        return AppsScriptGateway()
    if backend == "google_sheets":
        return GoogleSheetsGateway()
    if backend == "memory":
        return InMemoryGateway()
    raise ValueError(f"Unknown backend: {backend}")


def create_app_components(
    backend: Optional[str] = None,
    gateway: Optional[RemoteLedgerGateway] = None,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
) -> FinanceTracker:
    """
    Factory function to create all application components.

    Args:
        backend: Overrides AppSettings.backend (apps_script, google_sheets, memory)
        gateway: Use this gateway instead of building one from settings
        clock: Time source for delayed resyncs (real time by default)
        notifier: Where background failures are surfaced (the log by default)

    Returns:
        A FinanceTracker with an empty store; call resync() to load it.
    """
    settings = get_settings()
    app = settings.app

    gateway = gateway or create_gateway(backend or app.backend)
    audit_logger = AuditLogger()
    store = LedgerStore(wallet_alias=app.wallet_alias)
    coordinator = OptimisticSyncCoordinator(
        store,
        gateway,
        normalizer=SnapshotNormalizer(wallet_alias=app.wallet_alias),
        clock=clock,
        notifier=notifier or LogNotifier(),
        audit_logger=audit_logger,
        settings=settings.sync,
    )
    return FinanceTracker(store, coordinator, audit_logger=audit_logger)

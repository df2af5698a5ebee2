"""
Goal Envelope Manager

Savings goals are virtual sub-accounts. Their balance is realized only as
tagged entries in the shared transaction ledger:

    saved_amount(goal) = Σ contributions − Σ releases   (tagged with goal.id)

CRITICAL: Goal.saved_amount is a stored copy of that sum, kept for display.
Every method here that moves money writes the ledger entry AND the stored
copy, and validates everything before touching either.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, Optional

from finledger.ledger.errors import (
    DuplicateKeyError,
    InsufficientFundsError,
    LedgerValidationError,
    NotFoundError,
)
from finledger.ledger.projector import AccountBalanceProjector
from finledger.ledger.transactions import (
    TimestampFactory,
    TransactionLedger,
    replay_goal_balances,
)
from finledger.models.ledger import (
    AMOUNT_TOLERANCE,
    Goal,
    GoalState,
    Transaction,
    TransactionKind,
)


GOAL_CATEGORY = "Ahorro"


def _positive_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"Not a valid amount: {value!r}")
    if amount <= 0:
        raise LedgerValidationError("Amount must be greater than zero")
    return amount


def _state_for(saved: Decimal, target: Decimal) -> GoalState:
    return GoalState.COMPLETED if saved >= target else GoalState.ACTIVE


class GoalEnvelopeManager:
    """
    Goals plus the ledger entries that fund them.

    Args:
        ledger: Shared transaction ledger the envelopes live in
        projector: Used to check free balance before a contribution
        timestamps: Identity source for synthesized entries
        today: Date used when the caller gives no entry date
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        projector: AccountBalanceProjector,
        timestamps: Optional[TimestampFactory] = None,
        today: Optional[Callable[[], date]] = None,
        goals: Optional[Iterable[Goal]] = None,
    ):
        self.ledger = ledger
        self.projector = projector
        self._timestamps = timestamps or TimestampFactory()
        self._today = today or date.today
        self._goals: dict[str, Goal] = {}
        if goals:
            self.load(goals)

    def __len__(self) -> int:
        return len(self._goals)

    def __contains__(self, goal_id: object) -> bool:
        return goal_id in self._goals

    def get(self, goal_id: str) -> Goal:
        try:
            return self._goals[goal_id]
        except KeyError:
            raise NotFoundError(f"Goal not found: {goal_id}")

    def all(self) -> list[Goal]:
        return list(self._goals.values())

    def create(self, goal: Goal) -> Goal:
        """Goals start empty; money only enters through contribute()."""
        if goal.id in self._goals:
            raise DuplicateKeyError(f"Goal already exists: {goal.id}")
        if goal.saved_amount > 0:
            raise LedgerValidationError("A new goal cannot start with saved money")
        goal = goal.with_changes(state=GoalState.ACTIVE)
        self._goals[goal.id] = goal
        return goal

    def update(self, goal: Goal) -> Goal:
        """
        Edit name, target or deadline.

        The saved amount is never edited directly; the stored value is kept
        and the state recomputed against the (possibly new) target.
        """
        current = self.get(goal.id)
        updated = goal.with_changes(
            saved_amount=current.saved_amount,
            state=_state_for(current.saved_amount, goal.target_amount),
        )
        self._goals[goal.id] = updated
        return updated

    def delete(self, goal_id: str) -> Goal:
        """Remove an empty goal. A goal holding money must be released first."""
        goal = self.get(goal_id)
        if goal.saved_amount > AMOUNT_TOLERANCE:
            raise LedgerValidationError(
                f"Goal '{goal.name}' still holds {goal.saved_amount}; release it first"
            )
        return self._goals.pop(goal_id)

    def contribute(
        self,
        goal_id: str,
        amount,
        account_id: str,
        entry_date: Optional[date] = None,
    ) -> Transaction:
        """
        Move money from a cash account into a goal.

        Raises:
            LedgerValidationError: amount <= 0, or the account is not a cash account
            InsufficientFundsError: amount exceeds the account's free balance
            NotFoundError: unknown goal or account
        """
        amount = _positive_amount(amount)
        goal = self.get(goal_id)
        available = self.projector.free_balance(account_id)
        if amount > available:
            raise InsufficientFundsError(account_id, amount, available)

        transaction = self.ledger.append(Transaction(
            kind=TransactionKind.GOAL_CONTRIBUTION,
            amount=amount,
            account=account_id,
            category=GOAL_CATEGORY,
            description=f"Aporte a meta: {goal.name}",
            entry_date=entry_date or self._today(),
            timestamp=self._timestamps.next(),
            goal_id=goal.id,
        ))

        saved = goal.saved_amount + amount
        self._goals[goal.id] = goal.with_changes(
            saved_amount=saved,
            state=_state_for(saved, goal.target_amount),
        )
        return transaction

    def release(
        self,
        goal_id: str,
        amount,
        account_id: str,
        entry_date: Optional[date] = None,
    ) -> Transaction:
        """
        Break the envelope: move money from a goal back to a cash account.

        The goal always returns to Active, whatever is left in it.

        Raises:
            LedgerValidationError: amount <= 0, amount > saved amount, or
                the destination is not a cash account
            NotFoundError: unknown goal or account
        """
        amount = _positive_amount(amount)
        goal = self.get(goal_id)
        if amount > goal.saved_amount:
            raise LedgerValidationError(
                f"Cannot release {amount} from '{goal.name}': only {goal.saved_amount} saved"
            )
        self.projector.require_cash_account(account_id)

        transaction = self.ledger.append(Transaction(
            kind=TransactionKind.GOAL_RELEASE,
            amount=amount,
            account=account_id,
            category=GOAL_CATEGORY,
            description=f"Retiro de meta: {goal.name}",
            entry_date=entry_date or self._today(),
            timestamp=self._timestamps.next(),
            goal_id=goal.id,
        ))

        self._goals[goal.id] = goal.with_changes(
            saved_amount=max(Decimal("0"), goal.saved_amount - amount),
            state=GoalState.ACTIVE,
        )
        return transaction

    def release_and_delete(
        self,
        goal_id: str,
        destination: str,
        entry_date: Optional[date] = None,
    ) -> Optional[Transaction]:
        """
        Return everything a goal holds to destination, then delete it.

        Both steps happen locally, in order; the release is visible before
        the delete runs. Returns the release entry, or None for an empty goal.
        """
        goal = self.get(goal_id)
        transaction = None
        if goal.saved_amount > 0:
            transaction = self.release(goal_id, goal.saved_amount, destination, entry_date)
        self.delete(goal_id)
        return transaction

    # =========================================================================
    # Ledger derivation
    # =========================================================================

    def replay_saved_amount(self, goal_id: str) -> Decimal:
        """
        Rebuild a goal's saved amount from its tagged ledger entries.

        Entries are replayed oldest first with the running total clamped at
        zero, the same floor release() applies.
        """
        return replay_goal_balances(self.ledger.for_goal(goal_id)).get(goal_id, Decimal("0"))

    def drift(self) -> dict[str, Decimal]:
        """Goals whose stored saved amount disagrees with the ledger, id -> replayed."""
        drifted = {}
        for goal in self._goals.values():
            replayed = self.replay_saved_amount(goal.id)
            if abs(replayed - goal.saved_amount) > AMOUNT_TOLERANCE:
                drifted[goal.id] = replayed
        return drifted

    def load(self, goals: Iterable[Goal]) -> None:
        """Replace every goal (used by resync)."""
        self._goals = {goal.id: goal for goal in goals}

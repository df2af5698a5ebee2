"""
Transaction Ledger

The authoritative cash-flow record: an append-only, timestamp-keyed list of
financial events. Every balance the application shows is derived from it.

Edits are modelled as replace-by-timestamp and deletes as
remove-by-timestamp; entries themselves are immutable.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from finledger.ledger.errors import DuplicateKeyError, NotFoundError
from finledger.models.ledger import Transaction, TransactionKind, format_timestamp


class TimestampFactory:
    """
    Issues strictly increasing millisecond timestamps.

    Two commands submitted within the same millisecond get distinct
    identities: the second one is bumped forward by one millisecond.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last: Optional[datetime] = None

    def next(self) -> str:
        moment = self._now().astimezone(timezone.utc)
        moment = moment.replace(microsecond=(moment.microsecond // 1000) * 1000)
        if self._last is not None and moment <= self._last:
            moment = self._last + timedelta(milliseconds=1)
        self._last = moment
        return format_timestamp(moment)


class TransactionLedger:
    """
    Append-only ledger keyed by timestamp.

    Order of insertion never matters to derived totals; all() and
    chronological() sort on the creation instant.
    """

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self._entries: dict[str, Transaction] = {}
        if transactions:
            self.load(transactions)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, timestamp: object) -> bool:
        return timestamp in self._entries

    def append(self, transaction: Transaction) -> Transaction:
        """Add a new entry. Raises DuplicateKeyError on a timestamp collision."""
        if transaction.timestamp in self._entries:
            raise DuplicateKeyError(
                f"A transaction with timestamp {transaction.timestamp} already exists"
            )
        self._entries[transaction.timestamp] = transaction
        return transaction

    def replace(self, timestamp: str, transaction: Transaction) -> Transaction:
        """
        Replace the entry identified by timestamp.

        The replacement keeps the original identity, whatever timestamp
        the caller put on it.
        """
        if timestamp not in self._entries:
            raise NotFoundError(f"Transaction not found: {timestamp}")
        if transaction.timestamp != timestamp:
            transaction = transaction.with_changes(timestamp=timestamp)
        self._entries[timestamp] = transaction
        return transaction

    def remove(self, timestamp: str) -> Transaction:
        """Remove and return the entry identified by timestamp."""
        try:
            return self._entries.pop(timestamp)
        except KeyError:
            raise NotFoundError(f"Transaction not found: {timestamp}")

    def get(self, timestamp: str) -> Transaction:
        try:
            return self._entries[timestamp]
        except KeyError:
            raise NotFoundError(f"Transaction not found: {timestamp}")

    def all(self) -> list[Transaction]:
        """Every entry, newest first (display order)."""
        return sorted(
            self._entries.values(),
            key=lambda t: (t.created_at, t.timestamp),
            reverse=True,
        )

    def chronological(self) -> list[Transaction]:
        """Every entry, oldest first (replay order)."""
        return sorted(
            self._entries.values(),
            key=lambda t: (t.created_at, t.timestamp),
        )

    def for_account(self, account: str) -> list[Transaction]:
        return [t for t in self.all() if t.account == account]

    def for_goal(self, goal_id: str) -> list[Transaction]:
        """Goal movements tagged with goal_id, oldest first."""
        return [t for t in self.chronological() if t.goal_id == goal_id]

    def load(self, transactions: Iterable[Transaction]) -> None:
        """
        Replace the whole ledger (used by resync).

        Duplicate timestamps in the input are rejected so a corrupted
        snapshot cannot silently double-count.
        """
        entries: dict[str, Transaction] = {}
        for transaction in transactions:
            if transaction.timestamp in entries:
                raise DuplicateKeyError(
                    f"Snapshot contains duplicate timestamp {transaction.timestamp}"
                )
            entries[transaction.timestamp] = transaction
        self._entries = entries


def replay_goal_balances(transactions: Iterable[Transaction]) -> dict[str, Decimal]:
    """
    Saved amount per goal id, rebuilt from goal movements.

    Entries are replayed oldest first and the running total is clamped at
    zero, the same floor a release applies.
    """
    saved: dict[str, Decimal] = {}
    ordered = sorted(transactions, key=lambda t: (t.created_at, t.timestamp))
    for t in ordered:
        if not t.kind.is_goal_movement:
            continue
        current = saved.get(t.goal_id, Decimal("0"))
        if t.kind == TransactionKind.GOAL_CONTRIBUTION:
            saved[t.goal_id] = current + t.amount
        else:
            saved[t.goal_id] = max(Decimal("0"), current - t.amount)
    return saved

"""
Read-side Reports

DESIGN DECISION: Reports are DETERMINISTIC functions of local state.
They never call the remote store and never cache: the same ledger gives
the same report.

Goal movements are transfers between the user's own pockets, so they are
excluded from income/expense figures.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from finledger.ledger.obligations import PendingObligationTracker
from finledger.ledger.transactions import TransactionLedger
from finledger.models.ledger import TransactionKind


ZERO = Decimal("0")


class MonthlySavings(BaseModel):
    """Savings for one calendar month."""

    month: int = Field(..., ge=1, le=12)
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    savings: Decimal = ZERO
    cumulative: Decimal = ZERO
    target_percentage: Decimal = Field(
        default=ZERO,
        description="Cumulative savings as a percentage of the annual target"
    )


class CategorySpending(BaseModel):
    category: str
    total: Decimal
    count: int


class DebtSummary(BaseModel):
    """Where the user stands on cards and subscriptions."""

    active_debts: int
    total_remaining: Decimal
    overdue_count: int
    active_subscriptions: int
    monthly_subscription_cost: Decimal


def monthly_savings_progress(
    ledger: TransactionLedger,
    year: int,
    annual_target: Optional[Decimal] = None,
) -> list[MonthlySavings]:
    """
    Income, expenses and real savings per month of one year.

    The cumulative column runs from January; target_percentage is zero
    when no annual target is given.
    """
    months = [MonthlySavings(month=m) for m in range(1, 13)]
    income = {m: ZERO for m in range(1, 13)}
    expenses = {m: ZERO for m in range(1, 13)}

    for t in ledger.all():
        if t.entry_date.year != year:
            continue
        if t.kind == TransactionKind.INCOME:
            income[t.entry_date.month] += t.amount
        elif t.kind == TransactionKind.EXPENSE:
            expenses[t.entry_date.month] += t.amount

    cumulative = ZERO
    for row in months:
        savings = income[row.month] - expenses[row.month]
        cumulative += savings
        row.income = income[row.month]
        row.expenses = expenses[row.month]
        row.savings = savings
        row.cumulative = cumulative
        if annual_target:
            row.target_percentage = (cumulative / Decimal(annual_target) * 100).quantize(Decimal("0.01"))
    return months


def spending_by_category(
    ledger: TransactionLedger,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[CategorySpending]:
    """Expenses grouped by category, largest first. Both bounds inclusive."""
    totals: dict[str, CategorySpending] = {}
    for t in ledger.all():
        if t.kind != TransactionKind.EXPENSE:
            continue
        if date_from and t.entry_date < date_from:
            continue
        if date_to and t.entry_date > date_to:
            continue
        category = t.category or "Sin categoría"
        current = totals.get(category) or CategorySpending(category=category, total=ZERO, count=0)
        totals[category] = CategorySpending(
            category=category,
            total=current.total + t.amount,
            count=current.count + 1,
        )
    return sorted(totals.values(), key=lambda c: (-c.total, c.category))


def debt_summary(
    tracker: PendingObligationTracker,
    today: Optional[date] = None,
) -> DebtSummary:
    debts = tracker.active_debts()
    subscriptions = tracker.active_subscriptions()
    return DebtSummary(
        active_debts=len(debts),
        total_remaining=sum((o.remaining_debt for o in debts), ZERO),
        overdue_count=sum(1 for o in tracker.all() if tracker.is_overdue(o, today)),
        active_subscriptions=len(subscriptions),
        monthly_subscription_cost=sum((o.total_amount for o in subscriptions), ZERO),
    )

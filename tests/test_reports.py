"""Tests for read-side reports."""

from datetime import date
from decimal import Decimal

from conftest import make_obligation, make_transaction
from finledger.models.ledger import ObligationType, TransactionKind
from finledger.queries import debt_summary, monthly_savings_progress, spending_by_category


INCOME = TransactionKind.INCOME
EXPENSE = TransactionKind.EXPENSE


class TestMonthlySavings:
    """Tests for the month-by-month savings table."""

    def test_cumulative_savings_and_target(self, store):
        """Test per-month figures, the running total and target progress."""
        store.ledger.load([
            make_transaction(INCOME, 3000, "2024-01-05T10:00:00.000Z", entry_date=date(2024, 1, 5)),
            make_transaction(EXPENSE, 1000, "2024-01-06T10:00:00.000Z", entry_date=date(2024, 1, 6)),
            make_transaction(INCOME, 3000, "2024-02-05T10:00:00.000Z", entry_date=date(2024, 2, 5)),
            make_transaction(EXPENSE, 2500, "2024-02-06T10:00:00.000Z", entry_date=date(2024, 2, 6)),
            make_transaction(INCOME, 9999, "2023-12-31T10:00:00.000Z", entry_date=date(2023, 12, 31)),
        ])
        rows = monthly_savings_progress(store.ledger, 2024, annual_target=Decimal("12000"))

        assert len(rows) == 12
        assert (rows[0].savings, rows[0].cumulative) == (Decimal("2000"), Decimal("2000"))
        assert (rows[1].savings, rows[1].cumulative) == (Decimal("500"), Decimal("2500"))
        assert rows[1].target_percentage == Decimal("20.83")
        assert rows[11].cumulative == Decimal("2500")

    def test_goal_movements_are_not_savings(self, store):
        """Test that moving money into a goal is not an expense."""
        store.ledger.load([
            make_transaction(INCOME, 1000, "2024-03-01T10:00:00.000Z", entry_date=date(2024, 3, 1)),
            make_transaction(
                TransactionKind.GOAL_CONTRIBUTION, 400, "2024-03-02T10:00:00.000Z",
                goal_id="MT1", entry_date=date(2024, 3, 2),
            ),
        ])
        march = monthly_savings_progress(store.ledger, 2024)[2]
        assert march.expenses == Decimal("0")
        assert march.savings == Decimal("1000")
        assert march.target_percentage == Decimal("0")


class TestSpendingByCategory:
    """Tests for the category breakdown."""

    def test_grouping_and_order(self, store):
        """Test totals, counts, the unnamed bucket and ordering."""
        store.ledger.load([
            make_transaction(EXPENSE, 30, "2024-05-01T10:00:00.000Z", category="Comida"),
            make_transaction(EXPENSE, 20, "2024-05-02T10:00:00.000Z", category="Comida"),
            make_transaction(EXPENSE, 50, "2024-05-03T10:00:00.000Z", category="Cine"),
            make_transaction(EXPENSE, 5, "2024-05-04T10:00:00.000Z"),
            make_transaction(INCOME, 500, "2024-05-05T10:00:00.000Z", category="Sueldo"),
        ])
        result = spending_by_category(store.ledger)
        assert [(c.category, c.total, c.count) for c in result] == [
            ("Cine", Decimal("50"), 1),
            ("Comida", Decimal("50"), 2),
            ("Sin categoría", Decimal("5"), 1),
        ]

    def test_inclusive_date_range(self, store):
        """Test that both bounds are included."""
        store.ledger.load([
            make_transaction(EXPENSE, 1, "2024-05-01T10:00:00.000Z", entry_date=date(2024, 5, 1), category="A"),
            make_transaction(EXPENSE, 2, "2024-05-10T10:00:00.000Z", entry_date=date(2024, 5, 10), category="A"),
            make_transaction(EXPENSE, 4, "2024-05-11T10:00:00.000Z", entry_date=date(2024, 5, 11), category="A"),
        ])
        result = spending_by_category(store.ledger, date(2024, 5, 1), date(2024, 5, 10))
        assert result[0].total == Decimal("3")


class TestDebtSummary:
    def test_summary(self, store):
        """Test debt totals, overdue count and subscription cost."""
        store.obligations.create(make_obligation(total="1200", count=12, paid="300", due_date=date(2024, 5, 1)))
        store.obligations.create(make_obligation(obligation_id="GP2", total="100", count=1, paid="100"))
        store.obligations.create(make_obligation(
            obligation_id="GP3", total="39.90", count=1,
            obligation_type=ObligationType.SUBSCRIPTION, due_date=date(2024, 6, 1),
        ))

        summary = debt_summary(store.obligations)
        assert summary.active_debts == 1
        assert summary.total_remaining == Decimal("900")
        assert summary.overdue_count == 1
        assert summary.active_subscriptions == 1
        assert summary.monthly_subscription_cost == Decimal("39.90")

        assert debt_summary(store.obligations, today=date(2024, 4, 1)).overdue_count == 0

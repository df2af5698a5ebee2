"""Tests for the remote snapshot normalization boundary."""

import pytest
from datetime import date
from decimal import Decimal

from finledger.models.ledger import (
    AccountType,
    GoalState,
    ObligationState,
    ObligationType,
    TransactionKind,
)
from finledger.services.gateway import MalformedResponseError
from finledger.validation import SnapshotNormalizer


def history_row(**overrides):
    row = {
        "fecha": "2024-05-01",
        "categoria": "Comida",
        "descripcion": "Almuerzo",
        "monto": "25,50",
        "notas": "",
        "timestamp": "2024-05-01T12:00:00.000Z",
        "cuenta": "",
        "meta_id": "",
        "tipo": "Gastos",
    }
    row.update(overrides)
    return row


def pending_row(**overrides):
    row = {
        "id": "GP1",
        "fecha_gasto": "2024-04-20",
        "tarjeta": "Visa",
        "categoria": "Tecnología",
        "descripcion": "Laptop",
        "monto": "1200",
        "fecha_cierre": "2024-05-20",
        "fecha_pago": "2024-06-05",
        "estado": "Pendiente",
        "num_cuotas": "12",
        "cuotas_pagadas": "3",
        "monto_pagado_total": "300",
        "tipo_gasto": "deuda",
        "timestamp": "2024-04-20T10:00:00.000Z",
    }
    row.update(overrides)
    return row


@pytest.fixture
def normalizer():
    return SnapshotNormalizer()


class TestHistory:
    """Tests for history rows."""

    def test_plain_rows(self, normalizer):
        """Test expense and income rows; missing account means wallet."""
        result = normalizer.normalize({"history": [
            history_row(),
            history_row(tipo="Ingresos", monto=3000, timestamp="2024-05-02T12:00:00.000Z", cuenta="Ahorros"),
        ]})
        by_ts = {t.timestamp: t for t in result.snapshot.transactions}
        expense = by_ts["2024-05-01T12:00:00.000Z"]
        income = by_ts["2024-05-02T12:00:00.000Z"]
        assert expense.kind == TransactionKind.EXPENSE
        assert expense.amount == Decimal("25.50")
        assert expense.account == "Billetera"
        assert income.kind == TransactionKind.INCOME
        assert income.account == "Ahorros"
        assert result.is_clean

    def test_goal_rows(self, normalizer):
        """Test that meta_id turns history rows into goal movements."""
        result = normalizer.normalize({"history": [
            history_row(meta_id="MT1", monto="500"),
            history_row(tipo="Ingresos", meta_id="MT1", monto="200", timestamp="2024-05-02T12:00:00.000Z"),
            history_row(tipo="Aporte_Meta", meta_id="MT2", monto="10", timestamp="2024-05-03T12:00:00.000Z"),
        ]})
        kinds = sorted(t.kind.value for t in result.snapshot.transactions)
        assert kinds == ["goal_contribution", "goal_contribution", "goal_release"]

    def test_bad_rows_dropped_with_errors(self, normalizer):
        """Test that unusable rows are dropped and reported."""
        result = normalizer.normalize({"history": [
            history_row(timestamp=""),
            history_row(timestamp="garbage"),
            history_row(monto="0", timestamp="2024-05-01T12:00:01.000Z"),
            history_row(monto="", timestamp="2024-05-01T12:00:02.000Z"),
            history_row(tipo="Otro", timestamp="2024-05-01T12:00:03.000Z"),
            history_row(tipo="Aporte_Meta", timestamp="2024-05-01T12:00:04.000Z"),
            history_row(timestamp="2024-05-01T12:00:05.000Z"),
            history_row(timestamp="2024-05-01T12:00:05.000Z"),
        ]})
        assert len(result.snapshot.transactions) == 1
        assert len(result.errors) == 7
        assert {i.issue_type for i in result.errors} >= {"missing", "invalid_format", "invalid_number", "duplicate"}

    def test_missing_date_uses_creation_date(self, normalizer):
        """Test that a row without fecha falls back with a warning."""
        result = normalizer.normalize({"history": [history_row(fecha="")]})
        assert result.snapshot.transactions[0].entry_date == date(2024, 5, 1)
        assert len(result.warnings) == 1


class TestPending:
    """Tests for pending obligation rows."""

    def test_clean_row(self, normalizer):
        """Test a well-formed debt row."""
        result = normalizer.normalize({"pending": [pending_row()]})
        o = result.snapshot.obligations[0]
        assert o.total_amount == Decimal("1200")
        assert o.amount_paid == Decimal("300")
        assert o.installments_paid == 3
        assert o.due_date == date(2024, 6, 5)
        assert result.is_clean

    def test_numeric_defaults(self, normalizer):
        """Test that bad installment numbers default with warnings."""
        result = normalizer.normalize({"pending": [
            pending_row(num_cuotas="", cuotas_pagadas="x", monto_pagado_total="", monto="100"),
        ]})
        o = result.snapshot.obligations[0]
        assert o.installment_count == 1
        assert o.amount_paid == Decimal("0")
        assert {i.field for i in result.warnings} == {"num_cuotas", "cuotas_pagadas"}

    def test_legacy_row_derives_paid_total(self, normalizer):
        """Test that a row with only cuotas_pagadas gets its paid total derived."""
        result = normalizer.normalize({"pending": [pending_row(monto_pagado_total="")]})
        o = result.snapshot.obligations[0]
        assert o.amount_paid == Decimal("300")
        assert result.warnings[0].issue_type == "derived"

    def test_overpaid_row_clamped(self, normalizer):
        """Test that paid above total is clamped and reported."""
        result = normalizer.normalize({"pending": [pending_row(monto_pagado_total="1500", estado="Pagado")]})
        o = result.snapshot.obligations[0]
        assert o.amount_paid == Decimal("1200")
        assert o.state == ObligationState.PAID
        assert [i.issue_type for i in result.warnings] == ["inconsistent"]

    def test_state_label_disagreeing_with_balance(self, normalizer):
        """Test that the balance decides a debt's state."""
        result = normalizer.normalize({"pending": [pending_row(estado="Pagado")]})
        assert result.snapshot.obligations[0].state == ObligationState.PENDING
        assert result.warnings[0].field == "estado"

    def test_subscription_row(self, normalizer):
        """Test that the tipo column identifies subscriptions."""
        row = pending_row(tipo_gasto="suscripcion", monto="39.90", num_cuotas="1",
                          cuotas_pagadas="0", monto_pagado_total="0")
        result = normalizer.normalize({"pending": [row]})
        assert result.snapshot.obligations[0].obligation_type == ObligationType.SUBSCRIPTION

    def test_missing_identity_dropped(self, normalizer):
        """Test rows without id or card."""
        result = normalizer.normalize({"pending": [pending_row(id=""), pending_row(id="GP2", tarjeta="")]})
        assert result.snapshot.obligations == []
        assert len(result.errors) == 2


class TestCards:
    """Tests for card rows."""

    def test_card_types(self, normalizer):
        """Test credit, debit and legacy product-name cards."""
        result = normalizer.normalize({"cards": [
            {"alias": "Visa", "tipo_cuenta": "credito", "limite": "2,000", "dia_cierre": "20", "dia_pago": 5},
            {"alias": "Ahorros", "tipo_tarjeta": "Débito", "limite": "850,00"},
            {"alias": "Vieja", "tipo_tarjeta": "Visa Signature", "limite": "1000"},
            {"alias": "Billetera", "tipo_cuenta": "debito"},
        ]})
        accounts = {a.alias: a for a in result.snapshot.accounts}
        assert accounts["Visa"].account_type == AccountType.CREDIT
        assert accounts["Visa"].credit_limit == Decimal("2000")
        assert accounts["Visa"].closing_day == 20
        assert accounts["Ahorros"].account_type == AccountType.DEBIT
        assert accounts["Ahorros"].opening_amount == Decimal("850.00")
        assert accounts["Vieja"].account_type == AccountType.CREDIT
        assert "Billetera" not in accounts

    def test_card_defaults(self, normalizer):
        """Test that bad numbers default with warnings."""
        result = normalizer.normalize({"cards": [
            {"alias": "Visa", "tipo_cuenta": "credito", "limite": "n/a", "dia_cierre": "40"},
        ]})
        account = result.snapshot.accounts[0]
        assert account.credit_limit == Decimal("0")
        assert account.closing_day is None
        assert len(result.warnings) == 2

    def test_card_failing_model_validation_dropped(self, normalizer):
        """Test that an over-long alias drops the card instead of the snapshot."""
        result = normalizer.normalize({"cards": [
            {"alias": "V" * 101, "tipo_cuenta": "credito", "limite": "100"},
            {"alias": "Visa", "tipo_cuenta": "credito", "limite": "100"},
        ]})
        assert [a.alias for a in result.snapshot.accounts] == ["Visa"]
        assert result.errors[0].collection == "cards"
        assert result.errors[0].message.startswith("Card rejected")


class TestGoalsAndExtras:
    """Tests for goal rows, profile and opaque extras."""

    def test_goal_saved_amount_recomputed(self, normalizer):
        """Test that the stored saved amount is replaced by the replayed one."""
        result = normalizer.normalize({
            "history": [
                history_row(meta_id="MT1", monto="5000"),
            ],
            "goals": [
                {"id": "MT1", "nombre": "Viaje", "monto_objetivo": "5000", "monto_ahorrado": "4000"},
            ],
        })
        goal = result.snapshot.goals[0]
        assert goal.saved_amount == Decimal("5000")
        assert goal.state == GoalState.COMPLETED
        assert result.warnings[0].field == "monto_ahorrado"

    def test_released_goal_stays_active(self, normalizer):
        """Test that a funded goal stored as Active is not flipped to Completed."""
        result = normalizer.normalize({
            "history": [history_row(meta_id="MT1", monto="5000")],
            "goals": [{"id": "MT1", "nombre": "Viaje", "monto_objetivo": "4000",
                       "monto_ahorrado": "5000", "estado": "Activa"}],
        })
        assert result.snapshot.goals[0].state == GoalState.ACTIVE

    def test_goal_below_target_is_active(self, normalizer):
        """Test that a Completed label cannot outlive the balance."""
        result = normalizer.normalize({
            "goals": [{"id": "MT1", "nombre": "Viaje", "monto_objetivo": "4000",
                       "monto_ahorrado": "0", "estado": "Completada"}],
        })
        assert result.snapshot.goals[0].state == GoalState.ACTIVE

    def test_goal_failing_model_validation_dropped(self, normalizer):
        """Test that an over-long goal name drops the row instead of the snapshot."""
        result = normalizer.normalize({"goals": [
            {"id": "MT1", "nombre": "x" * 201, "monto_objetivo": "500"},
            {"id": "MT2", "nombre": "Viaje", "monto_objetivo": "500"},
        ]})
        assert [g.id for g in result.snapshot.goals] == ["MT2"]
        assert result.errors[0].key == "MT1"
        assert result.errors[0].message.startswith("Goal rejected")

    def test_extras_carried_through(self, normalizer):
        """Test that opaque collections are kept unchanged."""
        raw = {
            "profile": {"avatar_id": "3", "nombre": "Ana"},
            "notificationConfig": {"daysBefore": 3},
            "customCategories": {"gastos": ["Mascotas"]},
            "familyConfig": None,
            "gasVersion": "3.2",
            "schemaVersion": "2",
        }
        snapshot = normalizer.normalize(raw).snapshot
        assert snapshot.profile.name == "Ana"
        assert snapshot.notification_config == {"daysBefore": 3}
        assert snapshot.custom_categories == {"gastos": ["Mascotas"]}
        assert snapshot.gas_version == "3.2"

    def test_non_object_payload_rejected(self, normalizer):
        """Test that only JSON objects are accepted."""
        with pytest.raises(MalformedResponseError):
            normalizer.normalize(["not", "an", "object"])

    def test_collection_of_wrong_type(self, normalizer):
        """Test that a non-list collection is reported, not fatal."""
        result = normalizer.normalize({"history": "oops"})
        assert result.snapshot.transactions == []
        assert result.errors[0].issue_type == "invalid_type"

    def test_summary(self, normalizer):
        """Test the human-readable report."""
        clean = normalizer.normalize({})
        assert "No data issues found." in clean.summary()
        dirty = normalizer.normalize({"history": [history_row(monto="-3")]})
        assert "Dropped 1 unusable row(s):" in dirty.summary()

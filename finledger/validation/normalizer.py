"""
Snapshot Normalization Boundary

The remote store returns loosely-typed JSON: numbers arrive as numbers, as
"2.500,00", as "" or not at all. This module is the ONE place that turns
such a payload into the typed entities of finledger.models.

IMPORTANT: Normalization NEVER silently fixes data.
Every row that is dropped or defaulted produces a ValidationIssue:
- error:   the row could not be used and was dropped
- warning: the row was kept with a default or corrected value
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from finledger.ledger.transactions import replay_goal_balances
from finledger.models.ledger import (
    AMOUNT_TOLERANCE,
    Account,
    AccountType,
    Goal,
    GoalState,
    LedgerSnapshot,
    ObligationState,
    ObligationType,
    PendingObligation,
    Transaction,
    TransactionKind,
    UserProfile,
    ValidationIssue,
    parse_amount,
    parse_day,
    parse_timestamp,
)
from finledger.services.gateway.interface import MalformedResponseError


# History "tipo" values -> kind (goal tags are resolved separately)
_HISTORY_KINDS = {
    "Ingresos": TransactionKind.INCOME,
    "Gastos": TransactionKind.EXPENSE,
    "Aporte_Meta": TransactionKind.GOAL_CONTRIBUTION,
    "Ruptura_Meta": TransactionKind.GOAL_RELEASE,
}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _int(value: Any) -> Optional[int]:
    amount = parse_amount(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


class NormalizationResult(BaseModel):
    """A typed snapshot plus everything that had to be dropped or defaulted."""

    snapshot: LedgerSnapshot
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def is_clean(self) -> bool:
        return not self.issues

    def summary(self) -> str:
        """Human-readable report of the issues found."""
        snapshot = self.snapshot
        lines = [
            f"Loaded {len(snapshot.transactions)} transactions, "
            f"{len(snapshot.obligations)} obligations, "
            f"{len(snapshot.goals)} goals, {len(snapshot.accounts)} accounts."
        ]
        if self.is_clean:
            lines.append("No data issues found.")
            return "\n".join(lines)

        if self.errors:
            lines.append(f"Dropped {len(self.errors)} unusable row(s):")
            for issue in self.errors:
                lines.append(f"   • [{issue.collection}] {issue.message}")
        if self.warnings:
            lines.append(f"Corrected {len(self.warnings)} value(s):")
            for issue in self.warnings:
                lines.append(f"   • [{issue.collection}] {issue.message}")
        return "\n".join(lines)


class SnapshotNormalizer:
    """
    Converts one raw GET payload into a LedgerSnapshot.

    Rows are normalized in dependency order: history first, because goal
    balances are recomputed from the tagged history rows.
    """

    def __init__(self, wallet_alias: str = "Billetera"):
        self.wallet_alias = wallet_alias

    def normalize(self, raw: Any) -> NormalizationResult:
        """
        Normalize a raw snapshot.

        Raises:
            MalformedResponseError: If raw is not a JSON object
        """
        if not isinstance(raw, dict):
            raise MalformedResponseError(
                f"Snapshot must be a JSON object, got {type(raw).__name__}"
            )

        issues: list[ValidationIssue] = []
        transactions = self._normalize_history(self._rows(raw, "history", issues), issues)
        obligations = self._normalize_pending(self._rows(raw, "pending", issues), issues)
        accounts = self._normalize_cards(self._rows(raw, "cards", issues), issues)
        goals = self._normalize_goals(self._rows(raw, "goals", issues), transactions, issues)

        snapshot = LedgerSnapshot(
            accounts=accounts,
            obligations=obligations,
            transactions=transactions,
            goals=goals,
            profile=self._normalize_profile(raw.get("profile")),
            notification_config=raw.get("notificationConfig"),
            custom_categories=raw.get("customCategories"),
            family_config=raw.get("familyConfig"),
            gas_version=raw.get("gasVersion"),
            schema_version=raw.get("schemaVersion"),
        )
        return NormalizationResult(snapshot=snapshot, issues=issues)

    def _rows(self, raw: dict, name: str, issues: list[ValidationIssue]) -> list[dict]:
        value = raw.get(name)
        if value is None:
            return []
        if not isinstance(value, list):
            issues.append(ValidationIssue(
                collection=name,
                field=name,
                issue_type="invalid_type",
                message=f"Expected a list of rows, got {type(value).__name__}",
                severity="error",
            ))
            return []
        rows = []
        for row in value:
            if isinstance(row, dict):
                rows.append(row)
            else:
                issues.append(ValidationIssue(
                    collection=name,
                    field="row",
                    issue_type="invalid_type",
                    message=f"Row is not an object: {row!r}",
                    severity="error",
                ))
        return rows

    # =========================================================================
    # History
    # =========================================================================

    def _normalize_history(
        self,
        rows: list[dict],
        issues: list[ValidationIssue],
    ) -> list[Transaction]:
        transactions: dict[str, Transaction] = {}

        for row in rows:
            timestamp = _text(row.get("timestamp"))
            if not timestamp:
                issues.append(ValidationIssue(
                    collection="history",
                    field="timestamp",
                    issue_type="missing",
                    message=f"History row without timestamp dropped ({_text(row.get('descripcion'))!r})",
                    severity="error",
                ))
                continue
            try:
                created_at = parse_timestamp(timestamp)
            except ValueError:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="timestamp",
                    issue_type="invalid_format",
                    message=f"Unreadable timestamp {timestamp!r}; row dropped",
                    severity="error",
                ))
                continue
            if timestamp in transactions:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="timestamp",
                    issue_type="duplicate",
                    message=f"Duplicate timestamp {timestamp}; later row dropped",
                    severity="error",
                ))
                continue

            amount = parse_amount(row.get("monto"))
            if amount is None or amount <= 0:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="monto",
                    issue_type="invalid_number",
                    message=f"Amount {row.get('monto')!r} is not a positive number; row dropped",
                    severity="error",
                ))
                continue

            kind = _HISTORY_KINDS.get(_text(row.get("tipo")))
            if kind is None:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="tipo",
                    issue_type="invalid_value",
                    message=f"Unknown movement type {row.get('tipo')!r}; row dropped",
                    severity="error",
                ))
                continue
            goal_id = _text(row.get("meta_id")) or None
            if goal_id and not kind.is_goal_movement:
                kind = (
                    TransactionKind.GOAL_RELEASE if kind.is_inflow
                    else TransactionKind.GOAL_CONTRIBUTION
                )
            if kind.is_goal_movement and not goal_id:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="meta_id",
                    issue_type="missing",
                    message="Goal movement without goal id; row dropped",
                    severity="error",
                ))
                continue

            entry_date = parse_day(row.get("fecha"))
            if entry_date is None:
                entry_date = created_at.date()
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="fecha",
                    issue_type="missing",
                    message=f"Missing date; using creation date {entry_date}",
                    severity="warning",
                ))

            try:
                transactions[timestamp] = Transaction(
                    kind=kind,
                    amount=amount,
                    account=_text(row.get("cuenta")) or self.wallet_alias,
                    category=_text(row.get("categoria")),
                    description=_text(row.get("descripcion")),
                    entry_date=entry_date,
                    notes=_text(row.get("notas")) or None,
                    timestamp=timestamp,
                    goal_id=goal_id if kind.is_goal_movement else None,
                )
            except ValidationError as e:
                issues.append(ValidationIssue(
                    collection="history",
                    key=timestamp,
                    field="row",
                    issue_type="invalid_value",
                    message=f"Row rejected: {e.errors()[0]['msg']}",
                    severity="error",
                ))

        return list(transactions.values())

    # =========================================================================
    # Pending obligations
    # =========================================================================

    def _normalize_pending(
        self,
        rows: list[dict],
        issues: list[ValidationIssue],
    ) -> list[PendingObligation]:
        obligations: dict[str, PendingObligation] = {}

        def warn(key: str, field: str, message: str, issue_type: str = "defaulted") -> None:
            issues.append(ValidationIssue(
                collection="pending",
                key=key,
                field=field,
                issue_type=issue_type,
                message=message,
                severity="warning",
            ))

        def drop(key: Optional[str], field: str, message: str, issue_type: str) -> None:
            issues.append(ValidationIssue(
                collection="pending",
                key=key,
                field=field,
                issue_type=issue_type,
                message=message,
                severity="error",
            ))

        for row in rows:
            obligation_id = _text(row.get("id"))
            if not obligation_id:
                drop(None, "id", f"Obligation without id dropped ({_text(row.get('descripcion'))!r})", "missing")
                continue
            if obligation_id in obligations:
                drop(obligation_id, "id", f"Duplicate obligation id {obligation_id}; later row dropped", "duplicate")
                continue

            total = parse_amount(row.get("monto"))
            if total is None or total <= 0:
                drop(obligation_id, "monto", f"Amount {row.get('monto')!r} is not a positive number; row dropped", "invalid_number")
                continue
            card = _text(row.get("tarjeta"))
            if not card:
                drop(obligation_id, "tarjeta", "Obligation without card dropped", "missing")
                continue

            type_label = _text(row.get("tipo_gasto") or row.get("tipo")) or ObligationType.DEBT.value
            try:
                obligation_type = ObligationType(type_label)
            except ValueError:
                obligation_type = ObligationType.DEBT
                warn(obligation_id, "tipo", f"Unknown obligation type {type_label!r}; treated as debt")

            count = _int(row.get("num_cuotas"))
            if count is None or count < 1:
                warn(obligation_id, "num_cuotas", f"Installment count {row.get('num_cuotas')!r} invalid; using 1")
                count = 1

            # The store writes fractional installment counts after partial payments
            paid_installments = parse_amount(row.get("cuotas_pagadas"))
            if paid_installments is None or paid_installments < 0:
                if _text(row.get("cuotas_pagadas")):
                    warn(obligation_id, "cuotas_pagadas", f"Paid installments {row.get('cuotas_pagadas')!r} invalid; using 0")
                paid_installments = Decimal("0")

            amount_paid = parse_amount(row.get("monto_pagado_total"))
            if (amount_paid is None or amount_paid == 0) and paid_installments > 0:
                amount_paid = total / count * min(paid_installments, count)
                warn(
                    obligation_id,
                    "monto_pagado_total",
                    f"Paid total missing; derived {amount_paid:.2f} from {paid_installments} paid installment(s)",
                    "derived",
                )
            elif amount_paid is None or amount_paid < 0:
                amount_paid = Decimal("0")
            if amount_paid > total:
                warn(
                    obligation_id,
                    "monto_pagado_total",
                    f"Paid total {amount_paid} exceeds amount {total}; clamped",
                    "inconsistent",
                )
                amount_paid = total

            state_label = _text(row.get("estado")) or ObligationState.PENDING.value
            try:
                stored_state = ObligationState(state_label)
            except ValueError:
                stored_state = ObligationState.PENDING
                warn(obligation_id, "estado", f"Unknown state {state_label!r}; using Pendiente")

            try:
                obligation = PendingObligation(
                    id=obligation_id,
                    total_amount=total,
                    installment_count=count,
                    amount_paid=amount_paid,
                    card_account=card,
                    purchase_date=parse_day(row.get("fecha_gasto")),
                    category=_text(row.get("categoria")),
                    description=_text(row.get("descripcion")),
                    closing_date=parse_day(row.get("fecha_cierre")),
                    due_date=parse_day(row.get("fecha_pago")),
                    obligation_type=obligation_type,
                    subscription_state=stored_state,
                    notes=_text(row.get("notas")) or None,
                    timestamp=_text(row.get("timestamp")),
                )
            except ValidationError as e:
                drop(obligation_id, "row", f"Row rejected: {e.errors()[0]['msg']}", "invalid_value")
                continue

            if not obligation.is_subscription and obligation.state != stored_state:
                warn(
                    obligation_id,
                    "estado",
                    f"Stored state {stored_state.value} disagrees with balance; "
                    f"using {obligation.state.value}",
                    "inconsistent",
                )
            obligations[obligation_id] = obligation

        return list(obligations.values())

    # =========================================================================
    # Cards
    # =========================================================================

    def _account_type(self, row: dict) -> AccountType:
        label = _text(row.get("tipo_cuenta") or row.get("tipo_tarjeta")).lower()
        if label.startswith(("deb", "déb")):
            return AccountType.DEBIT
        # Older cards only carried a product name ("Visa Signature"); they were all credit
        return AccountType.CREDIT

    def _normalize_cards(
        self,
        rows: list[dict],
        issues: list[ValidationIssue],
    ) -> list[Account]:
        accounts: dict[str, Account] = {}

        for row in rows:
            alias = _text(row.get("alias"))
            if not alias:
                issues.append(ValidationIssue(
                    collection="cards",
                    field="alias",
                    issue_type="missing",
                    message=f"Card without alias dropped ({_text(row.get('banco'))!r})",
                    severity="error",
                ))
                continue
            if alias == self.wallet_alias:
                continue
            if alias in accounts:
                issues.append(ValidationIssue(
                    collection="cards",
                    key=alias,
                    field="alias",
                    issue_type="duplicate",
                    message=f"Duplicate card alias {alias}; later row dropped",
                    severity="error",
                ))
                continue

            account_type = self._account_type(row)
            limit = parse_amount(row.get("limite"))
            if limit is None or limit < 0:
                issues.append(ValidationIssue(
                    collection="cards",
                    key=alias,
                    field="limite",
                    issue_type="defaulted",
                    message=f"Limit {row.get('limite')!r} invalid; using 0",
                    severity="warning",
                ))
                limit = Decimal("0")

            days = {}
            for field in ("dia_cierre", "dia_pago"):
                day = _int(row.get(field))
                if day is not None and not 1 <= day <= 31:
                    issues.append(ValidationIssue(
                        collection="cards",
                        key=alias,
                        field=field,
                        issue_type="invalid_value",
                        message=f"Day {row.get(field)!r} out of range; ignored",
                        severity="warning",
                    ))
                    day = None
                days[field] = day

            rate = parse_amount(row.get("tea"))
            if rate is not None and rate < 0:
                rate = None

            try:
                accounts[alias] = Account(
                    alias=alias,
                    account_type=account_type,
                    bank=_text(row.get("banco")),
                    opening_amount=limit if account_type == AccountType.DEBIT else Decimal("0"),
                    credit_limit=limit if account_type == AccountType.CREDIT else Decimal("0"),
                    closing_day=days["dia_cierre"],
                    payment_day=days["dia_pago"],
                    annual_rate=rate,
                    timestamp=_text(row.get("timestamp")),
                )
            except ValidationError as e:
                issues.append(ValidationIssue(
                    collection="cards",
                    key=alias,
                    field="row",
                    issue_type="invalid_value",
                    message=f"Card rejected: {e.errors()[0]['msg']}",
                    severity="error",
                ))

        return list(accounts.values())

    # =========================================================================
    # Goals
    # =========================================================================

    def _normalize_goals(
        self,
        rows: list[dict],
        transactions: list[Transaction],
        issues: list[ValidationIssue],
    ) -> list[Goal]:
        replayed = replay_goal_balances(transactions)
        goals: dict[str, Goal] = {}

        for row in rows:
            goal_id = _text(row.get("id"))
            name = _text(row.get("nombre"))
            target = parse_amount(row.get("monto_objetivo"))
            if not goal_id or not name or target is None or target <= 0:
                issues.append(ValidationIssue(
                    collection="goals",
                    key=goal_id or None,
                    field="row",
                    issue_type="missing",
                    message=f"Goal {goal_id or name!r} lacks id, name or a positive target; dropped",
                    severity="error",
                ))
                continue
            if goal_id in goals:
                issues.append(ValidationIssue(
                    collection="goals",
                    key=goal_id,
                    field="id",
                    issue_type="duplicate",
                    message=f"Duplicate goal id {goal_id}; later row dropped",
                    severity="error",
                ))
                continue

            saved = replayed.get(goal_id, Decimal("0"))
            stored = parse_amount(row.get("monto_ahorrado"))
            if stored is None or abs(stored - saved) > AMOUNT_TOLERANCE:
                issues.append(ValidationIssue(
                    collection="goals",
                    key=goal_id,
                    field="monto_ahorrado",
                    issue_type="inconsistent",
                    message=f"Goal '{name}' stored {row.get('monto_ahorrado')!r} "
                            f"but its movements add up to {saved}; using {saved}",
                    severity="warning",
                ))

            # A goal released after reaching its target stays Active
            state = GoalState.ACTIVE
            if saved >= target and _text(row.get("estado")).lower() != GoalState.ACTIVE.value.lower():
                state = GoalState.COMPLETED

            try:
                goals[goal_id] = Goal(
                    id=goal_id,
                    name=name,
                    target_amount=target,
                    saved_amount=saved,
                    state=state,
                    deadline=parse_day(row.get("fecha_limite")),
                    timestamp=_text(row.get("timestamp")),
                )
            except ValidationError as e:
                issues.append(ValidationIssue(
                    collection="goals",
                    key=goal_id,
                    field="row",
                    issue_type="invalid_value",
                    message=f"Goal rejected: {e.errors()[0]['msg']}",
                    severity="error",
                ))

        return list(goals.values())

    def _normalize_profile(self, value: Any) -> Optional[UserProfile]:
        if not isinstance(value, dict):
            return None
        return UserProfile(
            avatar_id=_text(value.get("avatar_id")),
            name=_text(value.get("nombre")),
        )

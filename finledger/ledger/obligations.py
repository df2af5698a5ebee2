"""
Pending Obligation Tracker

Tracks card debts paid in installments and monthly subscriptions.

AMORTIZATION RULES:
- installment value = total / installment count
- an installment payment applies that value rounded up to the cent
- Installment: one installment value is applied (the remainder, if smaller)
- Full: the whole remaining debt is applied
- Partial: the paid amount is applied, capped at the remaining debt

DESIGN DECISION: A partial payment smaller than one installment is not
lost. It stays in amount_paid and counts toward the next installment.
installments_paid is always floor(amount_paid / installment value), so the
two progress figures cannot drift apart.

Subscriptions never amortize: settling one rolls its dates forward a month.
"""

from datetime import date
from decimal import ROUND_UP, Decimal, InvalidOperation
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from finledger.ledger.errors import DuplicateKeyError, LedgerValidationError, NotFoundError
from finledger.ledger.transactions import TimestampFactory
from finledger.models.ledger import (
    AMOUNT_TOLERANCE,
    ObligationState,
    PaymentKind,
    PaymentRecord,
    PendingObligation,
    add_one_month,
)


CENTS = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"Not a valid amount: {value!r}")


class PendingObligationTracker:
    """In-memory set of pending obligations, keyed by id."""

    def __init__(
        self,
        obligations: Optional[Iterable[PendingObligation]] = None,
        timestamps: Optional[TimestampFactory] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._obligations: dict[str, PendingObligation] = {}
        self._timestamps = timestamps or TimestampFactory()
        self._today = today or date.today
        if obligations:
            self.load(obligations)

    def __len__(self) -> int:
        return len(self._obligations)

    def __contains__(self, obligation_id: object) -> bool:
        return obligation_id in self._obligations

    def create(self, obligation: PendingObligation) -> PendingObligation:
        if obligation.id in self._obligations:
            raise DuplicateKeyError(f"Obligation already exists: {obligation.id}")
        self._obligations[obligation.id] = obligation
        return obligation

    def update(self, obligation_id: str, obligation: PendingObligation) -> PendingObligation:
        """Replace an obligation, keeping its id."""
        if obligation_id not in self._obligations:
            raise NotFoundError(f"Obligation not found: {obligation_id}")
        if obligation.id != obligation_id:
            obligation = obligation.with_changes(id=obligation_id)
        self._obligations[obligation_id] = obligation
        return obligation

    def remove(self, obligation_id: str) -> PendingObligation:
        try:
            return self._obligations.pop(obligation_id)
        except KeyError:
            raise NotFoundError(f"Obligation not found: {obligation_id}")

    def get(self, obligation_id: str) -> PendingObligation:
        try:
            return self._obligations[obligation_id]
        except KeyError:
            raise NotFoundError(f"Obligation not found: {obligation_id}")

    def all(self) -> list[PendingObligation]:
        return list(self._obligations.values())

    def for_card(self, card_alias: str) -> list[PendingObligation]:
        return [o for o in self._obligations.values() if o.card_account == card_alias]

    def active_debts(self) -> list[PendingObligation]:
        """Debts with something left to pay. The balance decides, not the label."""
        return [
            o for o in self._obligations.values()
            if not o.is_subscription and o.remaining_debt > AMOUNT_TOLERANCE
        ]

    def active_subscriptions(self) -> list[PendingObligation]:
        return [
            o for o in self._obligations.values()
            if o.is_subscription and o.state == ObligationState.PENDING
        ]

    def settle(
        self,
        obligation_id: str,
        payment_amount,
        payment_kind: PaymentKind,
        paid_on: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> PaymentRecord:
        """Apply a payment to an obligation; see prepare_settlement."""
        updated, record = self.prepare_settlement(
            obligation_id, payment_amount, payment_kind, paid_on=paid_on, notes=notes
        )
        self._obligations[updated.id] = updated
        return record

    def prepare_settlement(
        self,
        obligation_id: str,
        payment_amount,
        payment_kind: PaymentKind,
        paid_on: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> tuple[PendingObligation, PaymentRecord]:
        """
        Work out a payment without storing it.

        For Installment and Full payments the kind decides how much is
        applied; payment_amount must cover it. Any excess is not credited.

        Returns:
            The settled obligation and the PaymentRecord describing what
            was applied; store the obligation with update()

        Raises:
            LedgerValidationError: non-positive amount, insufficient amount
                for the kind, or the debt is already paid
            NotFoundError: unknown obligation id
        """
        amount = _to_decimal(payment_amount)
        if amount <= 0:
            raise LedgerValidationError("Payment amount must be greater than zero")

        obligation = self.get(obligation_id)
        paid_on = paid_on or self._today()

        if obligation.is_subscription:
            updated, applied, installment_number = self._roll_subscription(obligation, amount)
        else:
            updated, applied, installment_number = self._amortize(
                obligation, amount, payment_kind
            )

        record = PaymentRecord(
            obligation_id=obligation.id,
            card_account=obligation.card_account,
            description=obligation.description,
            amount=applied,
            payment_kind=payment_kind,
            installment_number=installment_number,
            paid_on=paid_on,
            notes=notes,
            timestamp=self._timestamps.next(),
        )
        return updated, record

    def _roll_subscription(
        self,
        obligation: PendingObligation,
        amount: Decimal,
    ) -> tuple[PendingObligation, Decimal, Optional[int]]:
        base = obligation.due_date or self._today()
        updated = obligation.with_changes(
            due_date=add_one_month(base),
            closing_date=add_one_month(obligation.closing_date or base),
            subscription_state=ObligationState.PENDING,
        )
        return updated, amount, None

    def _amortize(
        self,
        obligation: PendingObligation,
        amount: Decimal,
        payment_kind: PaymentKind,
    ) -> tuple[PendingObligation, Decimal, Optional[int]]:
        if obligation.state == ObligationState.PAID:
            raise LedgerValidationError(f"Obligation {obligation.id} is already paid")

        remaining = obligation.remaining_debt
        installment_number = None

        if payment_kind == PaymentKind.INSTALLMENT:
            applied = obligation.installment_value.quantize(CENTS, rounding=ROUND_UP)
            if remaining - applied <= AMOUNT_TOLERANCE:
                applied = remaining
            installment_number = obligation.installments_paid + 1
        elif payment_kind == PaymentKind.FULL:
            applied = remaining
        else:
            applied = min(amount, remaining)

        if payment_kind != PaymentKind.PARTIAL and amount + AMOUNT_TOLERANCE < applied:
            raise LedgerValidationError(
                f"{payment_kind.value} payment needs {applied:.2f}, got {amount:.2f}; "
                "record it as a partial payment instead"
            )

        new_paid = obligation.amount_paid + applied
        if obligation.total_amount - new_paid <= AMOUNT_TOLERANCE:
            new_paid = obligation.total_amount

        return obligation.with_changes(amount_paid=new_paid), applied, installment_number

    def load(self, obligations: Iterable[PendingObligation]) -> None:
        """Replace every obligation (used by resync)."""
        self._obligations = {o.id: o for o in obligations}

    # =========================================================================
    # Due dates
    # =========================================================================

    def days_overdue(self, obligation: PendingObligation, today: Optional[date] = None) -> int:
        """Positive = days late, negative = days left, 0 without a due date."""
        if obligation.due_date is None:
            return 0
        return ((today or self._today()) - obligation.due_date).days

    def is_overdue(self, obligation: PendingObligation, today: Optional[date] = None) -> bool:
        if obligation.state == ObligationState.PAID:
            return False
        return self.days_overdue(obligation, today) > 0


class InstallmentSimulation(BaseModel):
    """What an installment purchase costs under an effective annual rate."""

    monthly_payment: Decimal
    total_to_pay: Decimal
    total_interest: Decimal
    extra_percentage: Decimal


def simulate_installments(
    amount,
    installment_count: int,
    annual_rate,
) -> Optional[InstallmentSimulation]:
    """
    Simulate a fixed-payment (French system) installment plan.

    Informational only: it never changes what an obligation owes.
    The monthly rate is derived from the effective annual rate (TEA) as
    (1 + TEA/100)^(1/12) - 1, never TEA/12.

    Returns None when the rate or the inputs are unusable.
    """
    if annual_rate is None or amount is None or not installment_count:
        return None
    principal = Decimal(str(amount))
    rate = Decimal(str(annual_rate))
    if rate <= 0 or principal <= 0 or installment_count < 1:
        return None

    if installment_count == 1:
        value = principal.quantize(CENTS)
        return InstallmentSimulation(
            monthly_payment=value,
            total_to_pay=value,
            total_interest=Decimal("0.00"),
            extra_percentage=Decimal("0.00"),
        )

    monthly_rate = (1 + rate / 100) ** (Decimal(1) / Decimal(12)) - 1
    payment = principal * monthly_rate / (1 - (1 + monthly_rate) ** -installment_count)
    total = payment * installment_count
    interest = total - principal

    return InstallmentSimulation(
        monthly_payment=payment.quantize(CENTS),
        total_to_pay=total.quantize(CENTS),
        total_interest=interest.quantize(CENTS),
        extra_percentage=(interest / principal * 100).quantize(CENTS),
    )

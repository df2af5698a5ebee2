"""
Core Ledger Models for FinLedger

These models define the strict schemas for every entity the engine tracks.
They are designed to:
1. Enforce the ledger invariants at construction time
2. Be immutable, so an edit is always a replacement
3. Serialize to the remote store's row format
4. Expose derived quantities as views, never as stored counters

DESIGN DECISION: Money is Decimal everywhere. Float drift across dozens of
installments is exactly the kind of silent error a ledger cannot afford.
"""

import calendar
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# Amounts at or below this are treated as settled
AMOUNT_TOLERANCE = Decimal("0.01")


# =============================================================================
# TIMESTAMP HELPERS
# =============================================================================

def parse_timestamp(value: str) -> datetime:
    """
    Parse a ledger timestamp.

    Accepts ISO-8601 with or without the trailing "Z". Naive values are
    taken as UTC so that every timestamp is comparable with every other.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(moment: datetime) -> str:
    """Format a datetime the way the remote store writes timestamps."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def add_one_month(day: date) -> date:
    """Same day next month, clamped to the last day (Jan 31 -> Feb 28)."""
    year = day.year + (1 if day.month == 12 else 0)
    month = 1 if day.month == 12 else day.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


# =============================================================================
# REMOTE VALUE PARSING
# =============================================================================

_NON_NUMERIC = re.compile(r"[^0-9.,-]")
_PLAIN_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a loosely formatted remote number.

    Handles:
    - "2.500,00" (LATAM/EU) -> 2500.00
    - "2,500.00" (US)       -> 2500.00
    - "10,50"               -> 10.50
    - "1,000"               -> 1000
    - "1.000", "149.875"    -> read as plain decimals
    - "S/ 120.50"           -> 120.50

    Returns None for empty or unparseable input; the caller decides whether
    that means "default" or "reject".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    clean = _NON_NUMERIC.sub("", str(value))
    if not clean:
        return None
    if _PLAIN_NUMBER.match(clean):
        return Decimal(clean)

    if "." in clean and "," in clean:
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "").replace(",", ".")
        else:
            clean = clean.replace(",", "")
    elif "," in clean:
        if clean.count(",") > 1:
            clean = clean.replace(",", "")
        elif len(clean.split(",")[1]) == 2:
            clean = clean.replace(",", ".")
        else:
            clean = clean.replace(",", "")
    elif clean.count(".") > 1:
        clean = clean.replace(".", "")

    try:
        return Decimal(clean)
    except InvalidOperation:
        return None


def parse_day(value: Any) -> Optional[date]:
    """Parse "YYYY-MM-DD", an ISO datetime, or "DD/MM/YYYY"."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%d/%m/%Y").date()
    except ValueError:
        return None


def _money(value: Decimal) -> str:
    """Plain decimal text; parse_amount reads it back unchanged."""
    return format(value.normalize() if value == value.to_integral() else value, "f")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """
    The four kinds of ledger event.

    Goal movements are ordinary cash movements from the account's point of
    view; they are kept distinct so envelopes can be rebuilt from the log.
    """
    INCOME = "income"
    EXPENSE = "expense"
    GOAL_CONTRIBUTION = "goal_contribution"
    GOAL_RELEASE = "goal_release"

    @property
    def is_inflow(self) -> bool:
        return self in (TransactionKind.INCOME, TransactionKind.GOAL_RELEASE)

    @property
    def is_goal_movement(self) -> bool:
        return self in (TransactionKind.GOAL_CONTRIBUTION, TransactionKind.GOAL_RELEASE)

    @property
    def remote_collection(self) -> str:
        """Worksheet the remote store keeps this kind of row in."""
        return "Ingresos" if self.is_inflow else "Gastos"


class AccountType(str, Enum):
    """Where money can live."""
    WALLET = "wallet"
    DEBIT = "debit"
    CREDIT = "credit"


class ObligationType(str, Enum):
    """Installment debt or recurring subscription (remote labels)."""
    DEBT = "deuda"
    SUBSCRIPTION = "suscripcion"


class ObligationState(str, Enum):
    """Settlement state (remote labels)."""
    PENDING = "Pendiente"
    PAID = "Pagado"


class PaymentKind(str, Enum):
    """How a settlement is applied (remote labels)."""
    INSTALLMENT = "Cuota"
    FULL = "Total"
    PARTIAL = "Parcial"


class GoalState(str, Enum):
    """Savings goal state (remote labels)."""
    ACTIVE = "Activa"
    COMPLETED = "Completada"


# =============================================================================
# TRANSACTION
# =============================================================================

class Transaction(BaseModel):
    """
    An immutable ledger fact.

    The timestamp is both the ordering key and the identity: edits replace
    the entry with the same timestamp, deletes remove it.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    kind: TransactionKind
    amount: Annotated[Decimal, Field(gt=0, description="Always positive; kind gives the sign")]
    account: str = Field(
        ...,
        min_length=1,
        description="Alias of the wallet or card this moves money on"
    )
    category: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=300)
    entry_date: date = Field(
        ...,
        description="Date the movement happened (user-facing)"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)
    timestamp: str = Field(
        ...,
        min_length=1,
        description="Creation instant; unique within the ledger"
    )
    goal_id: Optional[str] = Field(
        default=None,
        description="Goal this entry funds or drains (goal movements only)"
    )

    @field_validator('timestamp')
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        """The identity must also be an orderable instant."""
        try:
            parse_timestamp(v)
        except ValueError:
            raise ValueError(f"Timestamp is not an ISO-8601 instant: {v!r}")
        return v

    @model_validator(mode='after')
    def validate_goal_tag(self) -> 'Transaction':
        """Goal movements must carry a goal id; nothing else may."""
        if self.kind.is_goal_movement and not self.goal_id:
            raise ValueError(f"{self.kind.value} requires a goal_id")
        if not self.kind.is_goal_movement and self.goal_id:
            raise ValueError(f"{self.kind.value} cannot be tagged with a goal_id")
        return self

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign the owning account sees."""
        return self.amount if self.kind.is_inflow else -self.amount

    @property
    def remote_collection(self) -> str:
        return self.kind.remote_collection

    def with_changes(self, **changes: Any) -> 'Transaction':
        """Validated copy with some fields replaced."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def to_remote_payload(self) -> dict[str, str]:
        """History row as the remote store expects it."""
        return {
            "fecha": self.entry_date.isoformat(),
            "categoria": self.category,
            "descripcion": self.description,
            "monto": _money(self.amount),
            "notas": self.notes or "",
            "cuenta": self.account,
            "meta_id": self.goal_id or "",
            "timestamp": self.timestamp,
        }


# =============================================================================
# PENDING OBLIGATIONS (card debts and subscriptions)
# =============================================================================

class PendingObligation(BaseModel):
    """
    A card debt paid in installments, or a monthly subscription.

    DESIGN DECISION: amount_paid is the ONLY stored progress counter.
    installments_paid, remaining_debt and state are views over it, so the
    two quantities can never disagree.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    total_amount: Annotated[Decimal, Field(gt=0)]
    installment_count: int = Field(default=1, ge=1)
    amount_paid: Annotated[Decimal, Field(ge=0)] = Decimal("0")
    card_account: str = Field(..., min_length=1)
    purchase_date: Optional[date] = None
    category: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=300)
    closing_date: Optional[date] = None
    due_date: Optional[date] = None
    obligation_type: ObligationType = ObligationType.DEBT
    # Only meaningful for subscriptions; debts derive their state
    subscription_state: ObligationState = ObligationState.PENDING
    notes: Optional[str] = Field(default=None, max_length=1000)
    timestamp: str = ""

    @model_validator(mode='after')
    def validate_paid_amount(self) -> 'PendingObligation':
        """Cannot have paid more than was owed."""
        if self.amount_paid > self.total_amount:
            raise ValueError(
                f"Amount paid ({self.amount_paid}) exceeds total ({self.total_amount})"
            )
        return self

    @property
    def is_subscription(self) -> bool:
        return self.obligation_type == ObligationType.SUBSCRIPTION

    @property
    def installment_value(self) -> Decimal:
        return self.total_amount / self.installment_count

    @property
    def remaining_debt(self) -> Decimal:
        return max(Decimal("0"), self.total_amount - self.amount_paid)

    @property
    def installments_paid(self) -> int:
        paid = int((self.amount_paid + AMOUNT_TOLERANCE) / self.installment_value)
        return min(self.installment_count, paid)

    @property
    def state(self) -> ObligationState:
        if self.is_subscription:
            return self.subscription_state
        if self.remaining_debt <= AMOUNT_TOLERANCE:
            return ObligationState.PAID
        return ObligationState.PENDING

    @property
    def payment_progress(self) -> Decimal:
        """Percentage of the total already paid (0-100)."""
        return min(Decimal("100"), self.amount_paid / self.total_amount * 100)

    def with_changes(self, **changes: Any) -> 'PendingObligation':
        """Validated copy with some fields replaced."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def to_remote_payload(self) -> dict[str, str]:
        """Pending row as the remote store expects it."""
        return {
            "id": self.id,
            "fecha_gasto": self.purchase_date.isoformat() if self.purchase_date else "",
            "tarjeta": self.card_account,
            "categoria": self.category,
            "descripcion": self.description,
            "monto": _money(self.total_amount),
            "fecha_cierre": self.closing_date.isoformat() if self.closing_date else "",
            "fecha_pago": self.due_date.isoformat() if self.due_date else "",
            "estado": self.state.value,
            "num_cuotas": str(self.installment_count),
            "cuotas_pagadas": str(self.installments_paid),
            "monto_pagado_total": _money(self.amount_paid),
            "tipo_gasto": self.obligation_type.value,
            "notas": self.notes or "",
            "timestamp": self.timestamp,
        }


class PaymentRecord(BaseModel):
    """One settlement applied to a pending obligation."""
    model_config = ConfigDict(frozen=True)

    obligation_id: str
    card_account: str
    description: str = ""
    amount: Annotated[Decimal, Field(ge=0)]
    payment_kind: PaymentKind
    installment_number: Optional[int] = Field(default=None, ge=1)
    paid_on: date
    notes: Optional[str] = None
    timestamp: str

    def to_remote_payload(self) -> dict[str, str]:
        return {
            "fecha_pago": self.paid_on.isoformat(),
            "id_gasto": self.obligation_id,
            "tarjeta": self.card_account,
            "descripcion_gasto": self.description,
            "monto_pagado": _money(self.amount),
            "tipo_pago": self.payment_kind.value,
            "num_cuota": str(self.installment_number) if self.installment_number else "",
            "notas": self.notes or "",
            "timestamp": self.timestamp,
        }


# =============================================================================
# GOALS (envelopes)
# =============================================================================

class Goal(BaseModel):
    """
    A savings envelope.

    CRITICAL: saved_amount is a redundant, display-oriented copy of the net
    of the goal's tagged ledger entries. Every mutation must update both.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Annotated[Decimal, Field(gt=0)]
    saved_amount: Annotated[Decimal, Field(ge=0)] = Decimal("0")
    state: GoalState = GoalState.ACTIVE
    deadline: Optional[date] = None
    timestamp: str = ""

    @property
    def remaining(self) -> Decimal:
        return max(Decimal("0"), self.target_amount - self.saved_amount)

    @property
    def progress(self) -> Decimal:
        """Percentage of the target already saved (0-100)."""
        return min(Decimal("100"), self.saved_amount / self.target_amount * 100)

    def with_changes(self, **changes: Any) -> 'Goal':
        """Validated copy with some fields replaced."""
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def to_remote_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "nombre": self.name,
            "monto_objetivo": _money(self.target_amount),
            "monto_ahorrado": _money(self.saved_amount),
            "estado": self.state.value,
            "fecha_limite": self.deadline.isoformat() if self.deadline else "",
            "timestamp": self.timestamp,
        }


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(BaseModel):
    """
    An account identity. It owns no balance; balances are projections.

    For debit accounts, opening_amount seeds the projection; it is the only
    place a balance enters outside the ledger.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    alias: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType
    bank: str = ""
    opening_amount: Annotated[Decimal, Field(ge=0)] = Decimal("0")
    credit_limit: Annotated[Decimal, Field(ge=0)] = Decimal("0")
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    annual_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Effective annual rate (TEA) in percent, credit only"
    )
    timestamp: str = ""

    @property
    def is_cash(self) -> bool:
        return self.account_type in (AccountType.WALLET, AccountType.DEBIT)

    def with_changes(self, **changes: Any) -> 'Account':
        return self.__class__.model_validate({**self.model_dump(), **changes})

    def to_remote_payload(self) -> dict[str, str]:
        is_credit = self.account_type == AccountType.CREDIT
        limit = self.credit_limit if is_credit else self.opening_amount
        return {
            "banco": self.bank,
            "tipo_tarjeta": "Credito" if is_credit else "Debito",
            "tipo_cuenta": "credito" if is_credit else "debito",
            "alias": self.alias,
            "url_imagen": "",
            "dia_cierre": str(self.closing_day or ""),
            "dia_pago": str(self.payment_day or ""),
            "limite": _money(limit),
            "tea": _money(self.annual_rate) if self.annual_rate is not None else "",
            "timestamp": self.timestamp,
        }


class UserProfile(BaseModel):
    """Display profile stored alongside the ledger."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    avatar_id: str = ""
    name: str = ""

    def to_remote_payload(self) -> dict[str, str]:
        return {"avatar_id": self.avatar_id, "nombre": self.name}


# =============================================================================
# SNAPSHOT AND VALIDATION
# =============================================================================

class LedgerSnapshot(BaseModel):
    """
    Typed form of one full GET from the remote store.

    Opaque collections (notification config, categories, family config)
    are carried through unchanged; the engine never interprets them.
    """

    accounts: list[Account] = Field(default_factory=list)
    obligations: list[PendingObligation] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)
    profile: Optional[UserProfile] = None
    notification_config: Optional[Any] = None
    custom_categories: Optional[Any] = None
    family_config: Optional[Any] = None
    gas_version: Optional[str] = None
    schema_version: Optional[str] = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ValidationIssue(BaseModel):
    """A single problem found while normalizing remote data."""

    collection: str = Field(
        ...,
        description="Remote collection the row came from"
    )
    key: Optional[str] = Field(
        default=None,
        description="Identity of the offending row, if it had one"
    )
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_number', 'inconsistent')"
    )
    message: str
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="error = row dropped, warning = row kept with a default"
    )

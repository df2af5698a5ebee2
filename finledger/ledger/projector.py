"""
Account Balance Projector

Every balance the application shows is computed here, on every read, from
the ledger, the pending obligations and the account catalog. Nothing is
cached and nothing is stored, so two calls over unchanged state always
return identical figures.
"""

from decimal import Decimal
from typing import Optional

from finledger.ledger.accounts import AccountCatalog
from finledger.ledger.errors import LedgerValidationError
from finledger.ledger.obligations import PendingObligationTracker
from finledger.ledger.transactions import TransactionLedger, replay_goal_balances
from finledger.models.ledger import Account, AccountType


ZERO = Decimal("0")


class AccountBalanceProjector:
    """Pure read-side view over the local state."""

    def __init__(
        self,
        ledger: TransactionLedger,
        obligations: PendingObligationTracker,
        accounts: AccountCatalog,
    ):
        self.ledger = ledger
        self.obligations = obligations
        self.accounts = accounts

    def _net_flow(self, alias: Optional[str] = None) -> Decimal:
        return sum(
            (t.signed_amount for t in self.ledger.all() if alias is None or t.account == alias),
            ZERO,
        )

    def _require_type(self, alias: str, account_type: AccountType) -> Account:
        account = self.accounts.get(alias)
        if account.account_type != account_type:
            raise LedgerValidationError(
                f"{alias} is a {account.account_type.value} account, not {account_type.value}"
            )
        return account

    def require_cash_account(self, alias: str) -> Account:
        """The account must exist and hold cash (wallet or debit)."""
        account = self.accounts.get(alias)
        if not account.is_cash:
            raise LedgerValidationError(f"{alias} is a credit account and holds no cash")
        return account

    # =========================================================================
    # Cash accounts
    # =========================================================================

    def wallet_balance(self) -> Decimal:
        return self._net_flow(self.accounts.wallet_alias)

    def debit_account_balance(self, alias: str) -> Decimal:
        account = self._require_type(alias, AccountType.DEBIT)
        return account.opening_amount + self._net_flow(alias)

    def free_balance(self, alias: str) -> Decimal:
        """Money available to spend or set aside from a cash account."""
        account = self.require_cash_account(alias)
        if account.account_type == AccountType.WALLET:
            return self.wallet_balance()
        return self.debit_account_balance(alias)

    def account_balances(self) -> dict[str, Decimal]:
        return {a.alias: self.free_balance(a.alias) for a in self.accounts.cash_accounts()}

    def total_balance(self) -> Decimal:
        openings = sum((a.opening_amount for a in self.accounts.debit_accounts()), ZERO)
        return self._net_flow() + openings

    # =========================================================================
    # Credit
    # =========================================================================

    def remaining_debt(self, alias: Optional[str] = None) -> Decimal:
        """Unpaid debt, for one card or all of them. Subscriptions are not debt."""
        return sum(
            (
                o.remaining_debt for o in self.obligations.all()
                if not o.is_subscription and (alias is None or o.card_account == alias)
            ),
            ZERO,
        )

    def credit_available(self, alias: str) -> Decimal:
        """Limit minus remaining debt, never below zero."""
        account = self._require_type(alias, AccountType.CREDIT)
        return max(ZERO, account.credit_limit - self.remaining_debt(alias))

    def total_credit_limit(self) -> Decimal:
        return sum((a.credit_limit for a in self.accounts.credit_accounts()), ZERO)

    def credit_utilization(self) -> Decimal:
        """Remaining debt as a percentage of the total credit limit."""
        limit = self.total_credit_limit()
        if limit == 0:
            return ZERO
        return self.remaining_debt() / limit * 100

    # =========================================================================
    # Goals
    # =========================================================================

    def goal_savings_total(self) -> Decimal:
        """Money set aside in goals, replayed from the tagged ledger entries."""
        return sum(replay_goal_balances(self.ledger.all()).values(), ZERO)

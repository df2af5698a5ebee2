"""
Account Catalog

Identities only: the wallet, debit cards and credit cards. Nothing here
stores a balance; see AccountBalanceProjector.
"""

from typing import Iterable, Optional

from finledger.ledger.errors import DuplicateKeyError, LedgerValidationError, NotFoundError
from finledger.models.ledger import Account, AccountType


class AccountCatalog:
    """
    Known accounts, keyed by alias.

    The wallet always exists and cannot be removed.
    """

    def __init__(
        self,
        wallet_alias: str = "Billetera",
        accounts: Optional[Iterable[Account]] = None,
    ):
        self.wallet_alias = wallet_alias
        self._accounts: dict[str, Account] = {}
        self.load(accounts or [])

    def __contains__(self, alias: object) -> bool:
        return alias in self._accounts

    @property
    def wallet(self) -> Account:
        return self._accounts[self.wallet_alias]

    def get(self, alias: str) -> Account:
        try:
            return self._accounts[alias]
        except KeyError:
            raise NotFoundError(f"Account not found: {alias}")

    def add(self, account: Account) -> Account:
        if account.account_type == AccountType.WALLET:
            raise LedgerValidationError("The wallet account is implicit and cannot be added")
        if account.alias in self._accounts:
            raise DuplicateKeyError(f"Account alias already in use: {account.alias}")
        self._accounts[account.alias] = account
        return account

    def update(self, original_alias: str, account: Account) -> Account:
        """Replace an account; the alias may change."""
        if original_alias == self.wallet_alias:
            raise LedgerValidationError("The wallet account cannot be edited")
        if original_alias not in self._accounts:
            raise NotFoundError(f"Account not found: {original_alias}")
        if account.alias != original_alias and account.alias in self._accounts:
            raise DuplicateKeyError(f"Account alias already in use: {account.alias}")
        del self._accounts[original_alias]
        self._accounts[account.alias] = account
        return account

    def remove(self, alias: str) -> Account:
        if alias == self.wallet_alias:
            raise LedgerValidationError("The wallet account cannot be removed")
        try:
            return self._accounts.pop(alias)
        except KeyError:
            raise NotFoundError(f"Account not found: {alias}")

    def all(self) -> list[Account]:
        return list(self._accounts.values())

    def cash_accounts(self) -> list[Account]:
        return [a for a in self._accounts.values() if a.is_cash]

    def debit_accounts(self) -> list[Account]:
        return [a for a in self._accounts.values() if a.account_type == AccountType.DEBIT]

    def credit_accounts(self) -> list[Account]:
        return [a for a in self._accounts.values() if a.account_type == AccountType.CREDIT]

    def load(self, accounts: Iterable[Account]) -> None:
        """Replace every non-wallet account (used by resync)."""
        wallet = Account(alias=self.wallet_alias, account_type=AccountType.WALLET)
        self._accounts = {wallet.alias: wallet}
        for account in accounts:
            if account.alias == self.wallet_alias or account.account_type == AccountType.WALLET:
                continue
            self._accounts[account.alias] = account

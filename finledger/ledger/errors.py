"""Domain errors raised by the ledger components before any mutation."""


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerValidationError(LedgerError):
    """A command was rejected by a local validation rule."""
    pass


class InsufficientFundsError(LedgerValidationError):
    """The source account cannot cover the amount."""

    def __init__(self, account: str, requested, available):
        self.account = account
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient free balance in {account}: "
            f"requested {requested}, available {available}"
        )


class NotFoundError(LedgerError):
    """Entity not found in the local state."""
    pass


class DuplicateKeyError(LedgerError):
    """Attempted to insert an entity whose identity already exists."""
    pass

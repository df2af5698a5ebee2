"""
Ledger Store

The single, explicit container of local state. Components read and mutate
it through the objects it holds; nothing else keeps a copy of derived
totals.
"""

from datetime import date, datetime
from typing import Any, Callable, Optional

from finledger.ledger.accounts import AccountCatalog
from finledger.ledger.errors import NotFoundError
from finledger.ledger.goals import GoalEnvelopeManager
from finledger.ledger.obligations import PendingObligationTracker
from finledger.ledger.projector import AccountBalanceProjector
from finledger.ledger.transactions import TimestampFactory, TransactionLedger
from finledger.models.ledger import LedgerSnapshot, UserProfile


class LedgerStore:
    """
    Ledger, obligations, goals and accounts, plus the projector over them.

    One TimestampFactory is shared by every component so that identities
    issued anywhere in the store never collide.
    """

    def __init__(
        self,
        wallet_alias: str = "Billetera",
        timestamps: Optional[TimestampFactory] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.timestamps = timestamps or TimestampFactory()
        self.today = today or date.today
        self.ledger = TransactionLedger()
        self.obligations = PendingObligationTracker(timestamps=self.timestamps, today=self.today)
        self.accounts = AccountCatalog(wallet_alias=wallet_alias)
        self.projector = AccountBalanceProjector(self.ledger, self.obligations, self.accounts)
        self.goals = GoalEnvelopeManager(
            self.ledger,
            self.projector,
            timestamps=self.timestamps,
            today=self.today,
        )

        self.profile: Optional[UserProfile] = None
        self.notification_config: Optional[Any] = None
        self.custom_categories: Optional[Any] = None
        self.family_config: Optional[Any] = None
        self.gas_version: Optional[str] = None
        self.schema_version: Optional[str] = None
        self.last_synced_at: Optional[datetime] = None

    def replace_from_snapshot(self, snapshot: LedgerSnapshot) -> None:
        """
        Rebuild every local collection from one remote snapshot.

        The ledger is loaded first: it is the only step that can reject its
        input, and it does so before anything else is replaced.
        """
        self.ledger.load(snapshot.transactions)
        self.obligations.load(snapshot.obligations)
        self.accounts.load(snapshot.accounts)
        self.goals.load(snapshot.goals)

        self.profile = snapshot.profile
        self.notification_config = snapshot.notification_config
        self.custom_categories = snapshot.custom_categories
        self.family_config = snapshot.family_config
        self.gas_version = snapshot.gas_version
        self.schema_version = snapshot.schema_version
        self.last_synced_at = snapshot.fetched_at

    def lookup(self, collection: str, key: str) -> Optional[Any]:
        """
        Find an entity by collection name and identity, or None.

        Collections: transactions (timestamp), obligations (id),
        goals (id), accounts (alias).
        """
        getters = {
            "transactions": self.ledger.get,
            "obligations": self.obligations.get,
            "goals": self.goals.get,
            "accounts": self.accounts.get,
        }
        if collection not in getters:
            raise ValueError(f"Unknown collection: {collection}")
        try:
            return getters[collection](key)
        except NotFoundError:
            return None

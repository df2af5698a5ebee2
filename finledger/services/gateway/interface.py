"""
Remote Ledger Gateway Interface

DESIGN DECISION: The remote store is reached only through this interface.
This allows us to:
1. Talk to the Apps Script web app in production
2. Talk to the spreadsheet directly with a service account
3. Use an in-memory store for tests and offline runs

The contract is deliberately thin: one full read, one write per call.
Callers must never assume two writes are atomic, must treat a successful
write as "eventually visible", and must be able to rebuild everything from
a single fetch_snapshot().
"""

from abc import ABC, abstractmethod
from typing import Any

from finledger.models.sync import RemoteOperation


# Collection names used in the remote contract ("tipo")
CARDS = "Tarjetas"
PENDING = "Gastos_Pendientes"
EXPENSES = "Gastos"
INCOMES = "Ingresos"
PAYMENTS = "Pagos"
GOALS = "Metas"

INVALID_PIN_MESSAGE = "PIN inválido"


class RemoteLedgerGateway(ABC):
    """
    Abstract interface to the remote ledger.

    Any backend (Apps Script, direct spreadsheet, in-memory)
    must implement these methods.
    """

    @abstractmethod
    async def fetch_snapshot(self) -> dict[str, Any]:
        """
        Fetch the whole remote state.

        Returns:
            Raw snapshot: {cards, pending, history, goals, profile?,
            notificationConfig?, customCategories?, familyConfig?,
            gasVersion?, schemaVersion?}

        Raises:
            GatewayError: If the snapshot cannot be obtained
        """
        pass

    @abstractmethod
    async def send(self, operation: RemoteOperation) -> dict[str, Any]:
        """
        Perform one write.

        Args:
            operation: Insert, update, delete or saveProfile request

        Returns:
            The store's response body

        Raises:
            GatewayError: If the write was not accepted
        """
        pass


def raise_for_error_body(body: Any) -> None:
    """Turn an {"error": ...} response into the matching exception."""
    if not isinstance(body, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(body).__name__}")
    error = body.get("error")
    if error:
        if error == INVALID_PIN_MESSAGE:
            raise AuthenticationError(error)
        raise RemoteRejectedError(str(error))


class GatewayError(Exception):
    """Base exception for remote gateway operations."""
    pass


class GatewayConnectionError(GatewayError):
    """Could not reach the remote store."""
    pass


class AuthenticationError(GatewayError):
    """The remote store rejected the PIN."""
    pass


class RemoteRejectedError(GatewayError):
    """The remote store answered with an error body."""
    pass


class MalformedResponseError(GatewayError):
    """The response was not the JSON shape the contract promises."""
    pass

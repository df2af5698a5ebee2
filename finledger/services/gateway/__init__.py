"""
Remote Ledger Gateways

The abstract contract to the remote store and its implementations:
the Apps Script web app, direct Google Sheets access, and an in-memory
store for tests and offline runs.
"""

from finledger.services.gateway.interface import (
    AuthenticationError,
    GatewayConnectionError,
    GatewayError,
    MalformedResponseError,
    RemoteLedgerGateway,
    RemoteRejectedError,
)
from finledger.services.gateway.apps_script import AppsScriptGateway
from finledger.services.gateway.google_sheets import GoogleSheetsClient, GoogleSheetsGateway
from finledger.services.gateway.memory import InMemoryGateway

__all__ = [
    # Interface
    "RemoteLedgerGateway",
    # Exceptions
    "AuthenticationError",
    "GatewayConnectionError",
    "GatewayError",
    "MalformedResponseError",
    "RemoteRejectedError",
    # Implementations
    "AppsScriptGateway",
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
]

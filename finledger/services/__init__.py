"""Services package."""

from finledger.services.gateway import (
    AppsScriptGateway,
    AuthenticationError,
    GatewayConnectionError,
    GatewayError,
    GoogleSheetsClient,
    GoogleSheetsGateway,
    InMemoryGateway,
    MalformedResponseError,
    RemoteLedgerGateway,
    RemoteRejectedError,
)

__all__ = [
    "AppsScriptGateway",
    "AuthenticationError",
    "GatewayConnectionError",
    "GatewayError",
    "GoogleSheetsClient",
    "GoogleSheetsGateway",
    "InMemoryGateway",
    "MalformedResponseError",
    "RemoteLedgerGateway",
    "RemoteRejectedError",
]

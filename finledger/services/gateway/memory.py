"""
In-Memory Remote Ledger

A dict-backed stand-in for the remote store with the same write semantics.
Used by the tests and for offline runs (APP backend "memory").

Failure injection:
- fail_next_send() / fail_next_fetch() queue exceptions for upcoming calls
- hold_writes() makes every send wait until release_writes() is called,
  which keeps commands in flight for as long as a test needs
"""

import asyncio
import copy
from collections import deque
from typing import Any, Optional

from finledger.models.sync import RemoteOperation
from finledger.services.gateway.interface import GatewayConnectionError
from finledger.services.gateway.rows import COLUMNS, RowBackedGateway, row_from_payload


class InMemoryGateway(RowBackedGateway):
    """Worksheets kept as lists of string rows."""

    def __init__(self, extras: Optional[dict[str, Any]] = None):
        self.sheets: dict[str, list[list[str]]] = {name: [] for name in COLUMNS}
        self.profile: Optional[dict[str, str]] = None
        self.extras: dict[str, Any] = dict(extras or {})
        self.sent: list[RemoteOperation] = []
        self.fetch_count = 0
        self._send_failures: deque[Exception] = deque()
        self._fetch_failures: deque[Exception] = deque()
        self._gate: Optional[asyncio.Event] = None

    # =========================================================================
    # Test helpers
    # =========================================================================

    def seed(self, collection: str, payload: dict[str, str]) -> None:
        """Put a row straight into a worksheet, bypassing write semantics."""
        self.sheets[collection].append(row_from_payload(collection, payload))

    def fail_next_send(self, error: Optional[Exception] = None, times: int = 1) -> None:
        for _ in range(times):
            self._send_failures.append(error or GatewayConnectionError("Network unreachable"))

    def fail_next_fetch(self, error: Optional[Exception] = None, times: int = 1) -> None:
        for _ in range(times):
            self._fetch_failures.append(error or GatewayConnectionError("Network unreachable"))

    def hold_writes(self) -> None:
        self._gate = asyncio.Event()

    def release_writes(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    # =========================================================================
    # Gateway
    # =========================================================================

    async def fetch_snapshot(self) -> dict[str, Any]:
        self.fetch_count += 1
        if self._fetch_failures:
            raise self._fetch_failures.popleft()
        return copy.deepcopy(self._build_snapshot())

    async def send(self, operation: RemoteOperation) -> dict[str, Any]:
        self.sent.append(operation)
        if self._gate is not None:
            await self._gate.wait()
        if self._send_failures:
            raise self._send_failures.popleft()
        return self._apply(operation)

    # =========================================================================
    # Row storage
    # =========================================================================

    def _read_rows(self, collection: str) -> list[list[str]]:
        return self.sheets[collection]

    def _append_row(self, collection: str, row: list[str]) -> None:
        self.sheets[collection].append(row)

    def _replace_row(self, collection: str, position: int, row: list[str]) -> None:
        self.sheets[collection][position] = row

    def _delete_row(self, collection: str, position: int) -> None:
        del self.sheets[collection][position]

    def _read_profile(self) -> Optional[dict[str, str]]:
        return self.profile

    def _write_profile(self, profile: dict[str, str]) -> None:
        self.profile = profile

    def _extras(self) -> dict[str, Any]:
        return self.extras

"""
Google Sheets Gateway

Direct spreadsheet access with a Google service account, for setups that
do not deploy the Apps Script web app.

DESIGN DECISION: The worksheets keep exactly the web app's layouts and the
writes follow the same semantics (see rows.py), so the same spreadsheet can
be used through either gateway interchangeably.

TRADEOFFS:
- Every read fetches whole worksheets (fine for personal volumes)
- No transactions: a payment row and its pending-row update are two calls
"""

import asyncio
from typing import Any, Optional

import gspread
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from finledger.config import get_settings
from finledger.config.settings import GoogleSheetsSettings
from finledger.models.sync import RemoteOperation
from finledger.services.gateway.interface import (
    CARDS,
    EXPENSES,
    GOALS,
    INCOMES,
    PAYMENTS,
    PENDING,
    GatewayConnectionError,
)
from finledger.services.gateway.rows import COLUMNS, PROFILE_COLUMNS, RowBackedGateway

# Raised by gspread, its HTTP session or token refresh when Google is unreachable
_TRANSPORT_ERRORS = (gspread.exceptions.APIError, requests.RequestException, GoogleAuthError)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._worksheets: dict[str, gspread.Worksheet] = {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise GatewayConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise GatewayConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise GatewayConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def sheet_name(self, collection: str) -> str:
        names = {
            CARDS: self._settings.cards_sheet_name,
            PENDING: self._settings.pending_sheet_name,
            EXPENSES: self._settings.expenses_sheet_name,
            INCOMES: self._settings.incomes_sheet_name,
            PAYMENTS: self._settings.payments_sheet_name,
            GOALS: self._settings.goals_sheet_name,
        }
        return names.get(collection, self._settings.profile_sheet_name)

    def worksheet(self, collection: str, headers: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet, creating its header row if needed."""
        if collection not in self._worksheets:
            spreadsheet = self.get_spreadsheet()
            title = self.sheet_name(collection)
            try:
                sheet = spreadsheet.worksheet(title)
            except gspread.WorksheetNotFound:
                sheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers))
                sheet.append_row(headers)
            self._worksheets[collection] = sheet
        return self._worksheets[collection]


class GoogleSheetsGateway(RowBackedGateway):
    """
    Remote ledger stored directly in a spreadsheet.

    Row positions handed around by RowBackedGateway exclude the header, so
    the sheet row number is position + 2.
    """

    PROFILE = "profile"

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self, collection: str) -> gspread.Worksheet:
        headers = PROFILE_COLUMNS if collection == self.PROFILE else COLUMNS[collection]
        return self._client.worksheet(collection, headers)

    def _read_rows(self, collection: str) -> list[list[str]]:
        return self._sheet(collection).get_all_values()[1:]

    def _append_row(self, collection: str, row: list[str]) -> None:
        self._sheet(collection).append_row(row, value_input_option="RAW")

    def _replace_row(self, collection: str, position: int, row: list[str]) -> None:
        sheet = self._sheet(collection)
        for col_idx, value in enumerate(row, start=1):
            sheet.update_cell(position + 2, col_idx, value)

    def _delete_row(self, collection: str, position: int) -> None:
        self._sheet(collection).delete_rows(position + 2)

    def _read_profile(self) -> Optional[dict[str, str]]:
        rows = self._read_rows(self.PROFILE)
        if not rows or not any(rows[0]):
            return None
        padded = list(rows[0]) + [""] * len(PROFILE_COLUMNS)
        return dict(zip(PROFILE_COLUMNS, padded))

    def _write_profile(self, profile: dict[str, str]) -> None:
        row = [profile.get(column, "") for column in PROFILE_COLUMNS]
        if self._read_rows(self.PROFILE):
            self._replace_row(self.PROFILE, 0, row)
        else:
            self._append_row(self.PROFILE, row)

    def _fetch(self) -> dict[str, Any]:
        try:
            return self._build_snapshot()
        except _TRANSPORT_ERRORS as e:
            raise GatewayConnectionError(f"Google Sheets read failed: {e}")

    def _send(self, operation: RemoteOperation) -> dict[str, Any]:
        try:
            return self._apply(operation)
        except _TRANSPORT_ERRORS as e:
            raise GatewayConnectionError(f"Google Sheets write failed: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch_snapshot(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._fetch)

    async def send(self, operation: RemoteOperation) -> dict[str, Any]:
        return await asyncio.to_thread(self._send, operation)

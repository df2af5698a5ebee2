"""
Apps Script Web App Gateway

Talks to the spreadsheet through its deployed Apps Script web app:
- GET  ?pin=<pin>&t=<ms>  -> full JSON snapshot
- POST form-encoded       -> one insert/update/delete/saveProfile

The PIN travels in plaintext with every request; that is the store's only
trust boundary and nothing here can strengthen it.

Reads are retried with exponential backoff. Writes are NOT retried: an
insert that timed out may still have landed, and repeating it would append
the row twice.
"""

import asyncio
import time
from typing import Any, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from finledger.config import get_settings
from finledger.config.settings import RemoteSettings
from finledger.models.sync import RemoteAction, RemoteOperation
from finledger.services.gateway.interface import (
    GatewayConnectionError,
    MalformedResponseError,
    RemoteLedgerGateway,
    raise_for_error_body,
)


class AppsScriptGateway(RemoteLedgerGateway):
    """
    requests-based client for the web app.

    Blocking HTTP calls run in a worker thread so the event loop (and the
    user's next command) is never held up by the network.
    """

    def __init__(
        self,
        settings: Optional[RemoteSettings] = None,
        session: Optional[requests.Session] = None,
        wait: Optional[wait_base] = None,
    ):
        self._settings = settings or get_settings().remote
        self._session = session or requests.Session()
        self._wait = wait or wait_exponential(multiplier=1, min=2, max=10)

    def _parse(self, response: requests.Response) -> dict[str, Any]:
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise GatewayConnectionError(f"Remote store answered HTTP {response.status_code}: {e}")
        try:
            body = response.json()
        except ValueError:
            raise MalformedResponseError(
                f"Remote store did not return JSON: {response.text[:200]!r}"
            )
        raise_for_error_body(body)
        return body

    def _get_once(self) -> dict[str, Any]:
        params = {"pin": self._settings.pin, "t": str(int(time.time() * 1000))}
        try:
            response = self._session.get(
                self._settings.script_url,
                params=params,
                timeout=self._settings.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise GatewayConnectionError(f"Could not reach remote store: {e}")
        return self._parse(response)

    def _fetch_with_retry(self) -> dict[str, Any]:
        # Only network-level failures are worth another attempt
        for attempt in Retrying(
            stop=stop_after_attempt(self._settings.max_fetch_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(GatewayConnectionError),
            reraise=True,
        ):
            with attempt:
                return self._get_once()

    def _post(self, operation: RemoteOperation) -> dict[str, Any]:
        form = dict(operation.payload)
        form["pin"] = self._settings.pin
        if operation.collection:
            form["tipo"] = operation.collection
        if operation.action != RemoteAction.INSERT:
            form["action"] = operation.action.value

        try:
            response = self._session.post(
                self._settings.script_url,
                data=form,
                timeout=self._settings.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise GatewayConnectionError(f"Could not reach remote store: {e}")
        return self._parse(response)

    async def fetch_snapshot(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._fetch_with_retry)

    async def send(self, operation: RemoteOperation) -> dict[str, Any]:
        return await asyncio.to_thread(self._post, operation)

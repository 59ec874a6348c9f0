"""
sheets_client.py - Async client for the Google Sheets v4 values API.

Authenticates as a service account (google-auth) and talks to the REST
endpoints through httpx. The token refresh is a blocking call, so it runs
in a worker thread.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Optional
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from config import Settings
from errors import SheetsError
from logging_config import get_logger
from models import SheetTab

logger = get_logger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_URI = "https://oauth2.googleapis.com/token"

SHEET_URL_ID = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")


def parse_sheet_id(url_or_id: str) -> str:
    """Spreadsheet id from a full Google Sheets URL, or the input itself."""
    text = (url_or_id or "").strip()
    match = SHEET_URL_ID.search(text)
    return match.group(1) if match else text


def a1_range(tab: str, cells: str) -> str:
    """`'Tab Name'!A1:B2` with quotes doubled inside the tab name."""
    escaped = tab.replace("'", "''")
    return f"'{escaped}'!{cells}"


class SheetsClient:
    """Minimal Sheets API surface: list tabs, read values, append a row."""

    def __init__(
        self,
        credentials: Any,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._credentials = credentials
        self._token_lock = asyncio.Lock()
        self._client = httpx.AsyncClient(base_url=SHEETS_API, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SheetsClient":
        settings.require_sheets()
        credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": settings.google_sa_email,
                "private_key": settings.google_sa_private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=[SHEETS_SCOPE],
        )
        return cls(credentials, timeout=settings.http_timeout_seconds, transport=transport)

    async def __aenter__(self) -> "SheetsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _token(self) -> str:
        async with self._token_lock:
            if not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except GoogleAuthError as exc:
                    logger.error("sheets_token_error | error_type=%s | error=%s", type(exc).__name__, exc)
                    raise SheetsError(f"Google token refresh failed: {exc}") from exc
            return self._credentials.token

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {await self._token()}"}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(
                "sheets_request_error | path=%s | error_type=%s | error=%s",
                path,
                type(exc).__name__,
                exc,
            )
            raise SheetsError(f"Sheets request failed: {exc}") from exc

        if response.is_error:
            logger.error("sheets_http_error | path=%s | status=%s", path, response.status_code)
            raise SheetsError(
                f"Sheets API error: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise SheetsError(f"Sheets returned invalid JSON: {exc}") from exc

    async def list_tabs(self, sheet_id: str) -> list[SheetTab]:
        """Tabs in spreadsheet order."""
        payload = await self._request(
            "GET",
            f"/{quote(sheet_id, safe='')}",
            params={"fields": "sheets(properties(title,sheetId,index))"},
        )
        tabs = []
        for sheet in payload.get("sheets") or []:
            props = sheet.get("properties") or {}
            title = props.get("title")
            if not title:
                continue
            tabs.append(
                SheetTab(
                    title=str(title),
                    gid=str(props.get("sheetId", "")),
                    index=int(props.get("index", 0) or 0),
                )
            )
        tabs.sort(key=lambda tab: tab.index)
        return tabs

    async def get_values(self, sheet_id: str, tab: str, cells: str) -> list[list[str]]:
        """Cell values of `tab!cells` as rows of strings. Trailing empty cells are omitted by the API."""
        target = quote(a1_range(tab, cells), safe="")
        payload = await self._request("GET", f"/{quote(sheet_id, safe='')}/values/{target}")
        rows = payload.get("values") or []
        return [["" if cell is None else str(cell) for cell in row] for row in rows]

    async def append_row(self, sheet_id: str, tab: str, row: list[str]) -> dict[str, Any]:
        target = quote(a1_range(tab, "A1"), safe="")
        payload = await self._request(
            "POST",
            f"/{quote(sheet_id, safe='')}/values/{target}:append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [row]},
        )
        return payload.get("updates") or {}

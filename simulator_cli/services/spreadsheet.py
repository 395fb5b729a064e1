"""Google Sheets API client used by the timeline sink."""

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import google.auth.exceptions
import httpx
import structlog
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from .errors import AuthenticationError, TimelineError
from .http_client import HttpClientService

log = structlog.stdlib.get_logger()


SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


@dataclass(frozen=True)
class Worksheet:
    """Properties of a worksheet (tab) in a spreadsheet."""
    sheet_id: int
    title: str
    row_count: int
    column_count: int


class SpreadsheetClient:
    """Minimal Sheets v4 client authenticated with a service account.

    ``authenticate`` and ``load_worksheet`` must succeed before any of the
    worksheet operations are used.
    """

    def __init__(
        self,
        spreadsheet_key: str,
        credentials_info: dict[str, Any],
        http_client: HttpClientService,
        api_url: str = SHEETS_API_URL,
    ) -> None:
        self.spreadsheet_key = spreadsheet_key
        self._credentials_info = credentials_info
        self._http_client = http_client
        self._url = f"{api_url}/{spreadsheet_key}"
        self._credentials: service_account.Credentials | None = None
        self.worksheet: Worksheet | None = None

    async def authenticate(self) -> None:
        """Obtain an access token for the service account.

        Raises:
            AuthenticationError: If the credentials are invalid or rejected
        """
        try:
            credentials = service_account.Credentials.from_service_account_info(
                self._credentials_info, scopes=SHEETS_SCOPES
            )
            # google-auth refreshes synchronously through requests
            await asyncio.to_thread(credentials.refresh, Request())
        except (ValueError, google.auth.exceptions.GoogleAuthError) as e:
            raise AuthenticationError(
                "Google service account authentication failed",
                provider="google",
                original_error=e,
            ) from e

        self._credentials = credentials
        log.info("Spreadsheet client authenticated", account=credentials.service_account_email)

    async def _headers(self) -> dict[str, str]:
        if self._credentials is None:
            raise AuthenticationError("Spreadsheet client is not authenticated", provider="google")
        if not self._credentials.valid:
            await asyncio.to_thread(self._credentials.refresh, Request())
        return {"Authorization": f"Bearer {self._credentials.token}"}

    def _range_url(self, cell_range: str, suffix: str = "") -> str:
        if self.worksheet is None:
            raise TimelineError("No worksheet selected", stage="lookup")
        a1 = f"'{self.worksheet.title}'!{cell_range}"
        return f"{self._url}/values/{quote(a1, safe='')}{suffix}"

    async def load_worksheet(self) -> Worksheet:
        """Fetch spreadsheet metadata and select its first worksheet.

        Raises:
            TimelineError: If the spreadsheet cannot be read or has no worksheets
        """
        try:
            response = await self._http_client.request(
                "GET",
                self._url,
                params={"fields": "properties.title,sheets.properties"},
                headers=await self._headers(),
            )
            metadata = response.json()
        except (httpx.HTTPError, ValueError, google.auth.exceptions.GoogleAuthError) as e:
            raise TimelineError("Spreadsheet metadata lookup failed", stage="lookup", original_error=e) from e

        sheets = metadata.get("sheets") or []
        if not sheets:
            raise TimelineError("The spreadsheet has no worksheets", stage="lookup")

        properties = sheets[0].get("properties", {})
        grid = properties.get("gridProperties", {})
        self.worksheet = Worksheet(
            sheet_id=int(properties.get("sheetId", 0)),
            title=str(properties.get("title", "Sheet1")),
            row_count=int(grid.get("rowCount", 0)),
            column_count=int(grid.get("columnCount", 0)),
        )
        log.info(
            "Worksheet selected",
            spreadsheet=metadata.get("properties", {}).get("title"),
            worksheet=self.worksheet.title,
        )
        return self.worksheet

    async def clear(self) -> None:
        """Remove all cell values from the worksheet."""
        await self._http_client.request(
            "POST",
            self._range_url("A:ZZZ", ":clear"),
            json={},
            headers=await self._headers(),
        )

    async def resize(self, rows: int, columns: int) -> None:
        """Resize the worksheet grid."""
        if self.worksheet is None:
            raise TimelineError("No worksheet selected", stage="resize")
        await self._http_client.request(
            "POST",
            f"{self._url}:batchUpdate",
            json={
                "requests": [{
                    "updateSheetProperties": {
                        "properties": {
                            "sheetId": self.worksheet.sheet_id,
                            "gridProperties": {"rowCount": rows, "columnCount": columns},
                        },
                        "fields": "gridProperties(rowCount,columnCount)",
                    }
                }]
            },
            headers=await self._headers(),
        )

    async def set_header(self, header: list[str]) -> None:
        """Write ``header`` into the first row."""
        await self._http_client.request(
            "PUT",
            self._range_url("A1"),
            params={"valueInputOption": "RAW"},
            json={"values": [header]},
            headers=await self._headers(),
        )

    async def add_rows(self, rows: list[list[str]]) -> None:
        """Append ``rows`` below the existing content, growing the grid as needed."""
        await self._http_client.request(
            "POST",
            self._range_url("A1", ":append"),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": rows},
            headers=await self._headers(),
        )

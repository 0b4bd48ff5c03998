"""
PostgREST record store

Async HTTP client for a Supabase/PostgREST backend implementing RecordStore.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import REMOTE_TIMEOUT_SECONDS
from core.exceptions import NetworkError, RemoteError, classify_remote_error
from utils.record_store import Filters, RecordStore, Row

logger = logging.getLogger(__name__)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quoted(value: Any) -> str:
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return _literal(value)


def build_query_params(filters: Optional[Filters]) -> Dict[str, str]:
    """Translate a filter dict into PostgREST query parameters."""
    params = {"select": "*"}
    for column, expected in (filters or {}).items():
        if isinstance(expected, (list, tuple, set)):
            params[column] = "in.(" + ",".join(_quoted(v) for v in expected) + ")"
        elif expected is None:
            params[column] = "is.null"
        else:
            params[column] = f"eq.{_literal(expected)}"
    return params


class PostgrestRecordStore(RecordStore):
    """HTTP client for a PostgREST endpoint (e.g. Supabase `/rest/v1`)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize PostgREST client.

        Args:
            base_url: Project URL, e.g. https://<project>.supabase.co
            api_key: Anonymous API key sent with every request
            access_token: Signed-in user's JWT; the API key is used when absent
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.rest_url = base_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                transport=self.transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        client = await self._get_client()
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await client.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, table, e)
            raise NetworkError(f"Network error - {e}", table=table) from e

        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("message") or response.text
            except ValueError:
                message = response.text
            logger.error("%s %s returned %s: %s", method, table, response.status_code, message)
            raise classify_remote_error(message, table=table)

        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as e:
            logger.error("%s %s returned a non-JSON body: %s", method, table, response.text[:200])
            raise RemoteError(f"Unexpected response from {table}", table=table) from e

    async def fetch_rows(self, table: str, filters: Optional[Filters] = None) -> List[Row]:
        data = await self._request("GET", table, params=build_query_params(filters))
        return list(data or [])

    async def insert_rows(self, table: str, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        data = await self._request("POST", table, json=rows, prefer="return=representation")
        return list(data or [])

    async def delete_rows(self, table: str, filters: Filters) -> int:
        if not filters:
            raise RemoteError("Refusing to delete without a filter", table=table)
        params = build_query_params(filters)
        params.pop("select")
        data = await self._request("DELETE", table, params=params, prefer="return=representation")
        return len(data or [])

    async def upsert_row(self, table: str, row: Row, on_conflict: Sequence[str]) -> Row:
        data = await self._request(
            "POST",
            table,
            params={"on_conflict": ",".join(on_conflict)},
            json=[row],
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not data:
            raise RemoteError("Upsert returned no row", table=table)
        return data[0]

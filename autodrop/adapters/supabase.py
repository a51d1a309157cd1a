"""
Supabase PostgREST transport.
Thin async wrapper used by the agent directory and chat log when SUPABASE_URL
and SUPABASE_KEY are configured. Transient HTTP failures are retried.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from autodrop.config.settings import settings

logger = structlog.get_logger()

_retry_policy = dict(
    stop=stop_after_attempt(settings.max_retry_attempts),
    wait=wait_exponential(
        multiplier=1,
        min=settings.retry_initial_wait_seconds,
        max=settings.retry_max_wait_seconds,
    ),
    retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
    reraise=True,
)


class SupabaseError(Exception):
    """Raised when Supabase rejects a request"""


class SupabaseClient:
    """Minimal PostgREST client for the agents and chat_messages tables"""

    def __init__(
        self,
        url: str = None,
        key: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url or settings.supabase_url or "").rstrip("/")
        self.key = key or settings.supabase_key
        self.timeout = timeout or settings.supabase_timeout_seconds
        self.transport = transport

        if not self.is_configured():
            logger.warning("supabase_not_configured", message="SUPABASE_URL/SUPABASE_KEY not set")

    def is_configured(self) -> bool:
        """Check if Supabase is properly configured"""
        return bool(self.url and self.key and self.url.startswith("http"))

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _eq_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {column: f"eq.{value}" for column, value in (filters or {}).items()}

    def _check(self, response: httpx.Response, table: str, operation: str):
        if response.is_error:
            logger.error(
                "supabase_request_failed",
                table=table,
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise SupabaseError(f"Failed to {operation} {table}: HTTP {response.status_code}")

    @retry(**_retry_policy)
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows from a table.

        Args:
            table: Table name
            filters: Column equality filters
            order: PostgREST order clause, e.g. "created_at.desc"
            limit: Maximum number of rows

        Returns:
            List of row dicts
        """
        params = {"select": "*", **self._eq_filters(filters)}
        if order:
            params["order"] = order
        if limit:
            params["limit"] = str(limit)

        async with self._client() as client:
            response = await client.get(f"{self.url}/rest/v1/{table}", headers=self._headers(), params=params)

        self._check(response, table, "fetch")
        return response.json()

    @retry(**_retry_policy)
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return its stored representation"""
        async with self._client() as client:
            response = await client.post(
                f"{self.url}/rest/v1/{table}",
                headers=self._headers(prefer="return=representation"),
                json=row,
            )

        self._check(response, table, "insert into")
        rows = response.json()
        return rows[0] if rows else {}

    @retry(**_retry_policy)
    async def update(self, table: str, filters: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Update matching rows and return their stored representation"""
        async with self._client() as client:
            response = await client.patch(
                f"{self.url}/rest/v1/{table}",
                headers=self._headers(prefer="return=representation"),
                params=self._eq_filters(filters),
                json=values,
            )

        self._check(response, table, "update")
        return response.json()

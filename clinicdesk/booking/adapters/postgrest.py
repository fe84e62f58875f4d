import datetime as dt
from enum import Enum
from typing import Any

import httpx
from loguru import logger

from clinicdesk.booking.adapters.parsing_helpers import (
    CHECK_VIOLATION,
    UNIQUE_VIOLATION,
    extract_constraint,
    is_overlap_error,
    parse_error_payload,
)
from clinicdesk.booking.ports import Row, Table
from clinicdesk.domain.exceptions import (
    CheckViolationError,
    PersistenceError,
    SlotConflictError,
    UniqueViolationError,
)


def _literal(value: Any) -> str:
    """Render a filter value the way PostgREST expects it after ``eq.``."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    return str(value)


class PostgRESTClinicStore:
    """Clinic store over Supabase's PostgREST API (``/rest/v1/<table>``)."""

    def __init__(
        self,
        base_url: str,
        *,
        service_key: str = "",
        schema_name: str = "public",
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._schema_name = schema_name
        self._client = httpx.AsyncClient(timeout=timeout)

    def _headers(self, *, write: bool) -> dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept-Profile": self._schema_name,
            "Content-Type": "application/json",
        }
        if write:
            headers["Content-Profile"] = self._schema_name
            headers["Prefer"] = "return=representation"
        return headers

    async def _request(
        self,
        method: str,
        table: Table,
        *,
        params: dict[str, str] | None = None,
        json: Row | None = None,
        write: bool = False,
    ) -> list[Row]:
        """Execute a PostgREST call and return the affected/selected rows."""
        if not self._base_url or not self._service_key:
            raise PersistenceError("No Supabase URL/service key configured")

        try:
            resp = await self._client.request(
                method,
                f"{self._base_url}/rest/v1/{table.value}",
                params=params,
                json=json,
                headers=self._headers(write=write),
            )
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Supabase request failed: {exc}") from exc

        if resp.is_error:
            self._raise_for_error(table, resp)

        if not resp.content:
            return []
        try:
            data: Any = resp.json()
        except ValueError as exc:
            raise PersistenceError(f"Supabase returned non-JSON body for {table.value}") from exc
        return data if isinstance(data, list) else [data]

    def _raise_for_error(self, table: Table, resp: httpx.Response) -> None:
        try:
            payload: Any = resp.json()
        except ValueError:
            payload = resp.text

        code, message = parse_error_payload(payload)
        if code == UNIQUE_VIOLATION:
            raise UniqueViolationError(table.value, extract_constraint(message))
        if code == CHECK_VIOLATION:
            raise CheckViolationError(table.value, extract_constraint(message))
        if is_overlap_error(code, message):
            raise SlotConflictError(table.value, message)
        raise PersistenceError(
            f"Supabase error {resp.status_code} on {table.value}: {message or resp.reason_phrase}"
        )

    async def find_one_by_field(self, table: Table, field: str, value: Any) -> Row | None:
        rows = await self._request(
            "GET", table, params={"select": "*", field: f"eq.{_literal(value)}", "limit": "1"}
        )
        return rows[0] if rows else None

    async def find_many(
        self, table: Table, filters: dict[str, Any], order_by: str | None = None
    ) -> list[Row]:
        params = {"select": "*"}
        params.update({field: f"eq.{_literal(value)}" for field, value in filters.items()})
        if order_by:
            params["order"] = f"{order_by}.asc"
        return await self._request("GET", table, params=params)

    async def insert(self, table: Table, row: Row) -> str:
        rows = await self._request("POST", table, json=row, write=True)
        if not rows or "id" not in rows[0]:
            raise PersistenceError(f"Supabase insert into {table.value} returned no row")
        return str(rows[0]["id"])

    async def update_where(
        self, table: Table, row_id: str, expected_status: str | None, patch: Row
    ) -> int:
        params = {"id": f"eq.{row_id}"}
        if expected_status is not None:
            params["status"] = f"eq.{expected_status}"
        rows = await self._request("PATCH", table, params=params, json=patch, write=True)
        return len(rows)

    async def delete(self, table: Table, row_id: str) -> int:
        rows = await self._request("DELETE", table, params={"id": f"eq.{row_id}"}, write=True)
        return len(rows)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", Table.PATIENTS, params={"select": "id", "limit": "1"})
            return True
        except Exception as exc:
            logger.warning("Supabase health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Supabase PostgREST client closed")

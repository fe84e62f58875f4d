import asyncio
import datetime as dt
import uuid
from typing import Any

from clinicdesk.booking.adapters.datetime_helpers import slots_overlap
from clinicdesk.booking.ports import Row, Table
from clinicdesk.domain.exceptions import (
    CheckViolationError,
    SlotConflictError,
    UniqueViolationError,
)

_UNIQUE_PHONE = {
    Table.PATIENTS: "unique_adult_phone",
    Table.GUARDIANS: "guardians_phone_key",
}

_SLOT_FIELDS = ("appointment_date", "start_time", "end_time")


def _slot(row: Row) -> tuple[Any, dt.time, dt.time] | None:
    if any(row.get(field) is None for field in _SLOT_FIELDS):
        return None
    return (
        row["appointment_date"],
        dt.time.fromisoformat(str(row["start_time"])),
        dt.time.fromisoformat(str(row["end_time"])),
    )


class InMemoryClinicStore:
    """In-memory ClinicStoreProtocol that enforces the production constraints.

    Phone numbers are unique in ``patients`` and ``guardians``, a child
    patient row without ``guardian_id`` is rejected with the
    ``child_requires_guardian`` check, and an appointment may not overlap
    another on the same day, as in the hosted schema.

    Every call yields to the event loop once before touching the tables, so
    concurrent callers interleave the way real round-trips do.

    Set ``find_error``, ``insert_error``, etc. to make the corresponding
    method raise. Inspect ``tables`` afterwards to verify what was written.
    """

    def __init__(self) -> None:
        self.tables: dict[Table, dict[str, Row]] = {table: {} for table in Table}
        self.closed: bool = False

        self.find_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.update_error: Exception | None = None
        self.delete_error: Exception | None = None

    def rows(self, table: Table) -> list[Row]:
        return [dict(row) for row in self.tables[table].values()]

    async def find_one_by_field(self, table: Table, field: str, value: Any) -> Row | None:
        await asyncio.sleep(0)
        if self.find_error:
            raise self.find_error
        for row in self.tables[table].values():
            if row.get(field) == value:
                return dict(row)
        return None

    async def find_many(
        self, table: Table, filters: dict[str, Any], order_by: str | None = None
    ) -> list[Row]:
        await asyncio.sleep(0)
        if self.find_error:
            raise self.find_error
        matches = [
            dict(row)
            for row in self.tables[table].values()
            if all(row.get(field) == value for field, value in filters.items())
        ]
        if order_by:
            matches.sort(key=lambda row: str(row.get(order_by) or ""))
        return matches

    async def insert(self, table: Table, row: Row) -> str:
        await asyncio.sleep(0)
        if self.insert_error:
            raise self.insert_error
        self._check_constraints(table, row)

        row_id = str(row.get("id") or uuid.uuid4())
        self.tables[table][row_id] = {**row, "id": row_id}
        return row_id

    async def update_where(
        self, table: Table, row_id: str, expected_status: str | None, patch: Row
    ) -> int:
        await asyncio.sleep(0)
        if self.update_error:
            raise self.update_error
        row = self.tables[table].get(row_id)
        if row is None:
            return 0
        if expected_status is not None and row.get("status") != expected_status:
            return 0
        if table == Table.APPOINTMENTS:
            self._check_overlap({**row, **patch}, exclude_id=row_id)
        row.update(patch)
        return 1

    async def delete(self, table: Table, row_id: str) -> int:
        await asyncio.sleep(0)
        if self.delete_error:
            raise self.delete_error
        return 1 if self.tables[table].pop(row_id, None) is not None else 0

    async def health_check(self) -> bool:
        return not self.closed

    async def close(self) -> None:
        self.closed = True

    def _check_constraints(self, table: Table, row: Row) -> None:
        constraint = _UNIQUE_PHONE.get(table)
        phone = row.get("phone")
        if constraint and phone is not None:
            if any(existing.get("phone") == phone for existing in self.tables[table].values()):
                raise UniqueViolationError(table.value, constraint)

        if (
            table == Table.PATIENTS
            and row.get("patient_type") == "child"
            and not row.get("guardian_id")
        ):
            raise CheckViolationError(table.value, "child_requires_guardian")

        if table == Table.APPOINTMENTS:
            self._check_overlap(row, exclude_id=row.get("id"))

    def _check_overlap(self, row: Row, exclude_id: str | None) -> None:
        slot = _slot(row)
        if slot is None:
            return
        date, start, end = slot
        for existing_id, existing in self.tables[Table.APPOINTMENTS].items():
            other = _slot(existing)
            if existing_id == exclude_id or other is None or other[0] != date:
                continue
            if slots_overlap(start, end, other[1], other[2]):
                raise SlotConflictError(Table.APPOINTMENTS.value, f"overlaps {existing_id}")

import pytest

from clinicdesk.booking.adapters.memory import InMemoryClinicStore
from clinicdesk.booking.ports import Table
from clinicdesk.domain.exceptions import (
    CheckViolationError,
    SlotConflictError,
    UniqueViolationError,
)

# Fixture (store) provided by tests/conftest.py


class TestConstraints:
    @pytest.mark.asyncio
    async def test_duplicate_phone_is_rejected(self, store: InMemoryClinicStore) -> None:
        await store.insert(Table.GUARDIANS, {"full_name": "A", "phone": "+1"})

        with pytest.raises(UniqueViolationError) as exc_info:
            await store.insert(Table.GUARDIANS, {"full_name": "B", "phone": "+1"})

        assert exc_info.value.constraint == "guardians_phone_key"

    @pytest.mark.asyncio
    async def test_child_without_guardian_is_rejected(self, store: InMemoryClinicStore) -> None:
        with pytest.raises(CheckViolationError, match="child_requires_guardian"):
            await store.insert(Table.PATIENTS, {"patient_type": "child", "guardian_id": None})

        assert store.rows(Table.PATIENTS) == []


def _appointment(start: str, end: str, date: str = "2026-06-10") -> dict[str, str]:
    return {"appointment_date": date, "start_time": start, "end_time": end, "status": "pending"}


class TestAppointmentOverlap:
    @pytest.mark.asyncio
    async def test_overlapping_insert_is_rejected(self, store: InMemoryClinicStore) -> None:
        await store.insert(Table.APPOINTMENTS, _appointment("10:00:00", "10:30:00"))

        with pytest.raises(SlotConflictError):
            await store.insert(Table.APPOINTMENTS, _appointment("10:15:00", "10:45:00"))

        assert len(store.rows(Table.APPOINTMENTS)) == 1

    @pytest.mark.asyncio
    async def test_adjacent_and_other_day_slots_are_accepted(
        self, store: InMemoryClinicStore
    ) -> None:
        await store.insert(Table.APPOINTMENTS, _appointment("10:00:00", "10:30:00"))
        await store.insert(Table.APPOINTMENTS, _appointment("10:30:00", "11:00:00"))
        await store.insert(
            Table.APPOINTMENTS, _appointment("10:00:00", "10:30:00", date="2026-06-11")
        )

        assert len(store.rows(Table.APPOINTMENTS)) == 3

    @pytest.mark.asyncio
    async def test_update_into_taken_slot_is_rejected(self, store: InMemoryClinicStore) -> None:
        await store.insert(Table.APPOINTMENTS, _appointment("10:00:00", "10:30:00"))
        later = await store.insert(Table.APPOINTMENTS, _appointment("11:00:00", "11:30:00"))

        with pytest.raises(SlotConflictError):
            await store.update_where(
                Table.APPOINTMENTS,
                later,
                "pending",
                {"start_time": "10:20:00", "end_time": "10:50:00"},
            )

        assert store.tables[Table.APPOINTMENTS][later]["start_time"] == "11:00:00"

    @pytest.mark.asyncio
    async def test_status_update_does_not_clash_with_itself(
        self, store: InMemoryClinicStore
    ) -> None:
        row_id = await store.insert(Table.APPOINTMENTS, _appointment("10:00:00", "10:30:00"))

        affected = await store.update_where(
            Table.APPOINTMENTS, row_id, "pending", {"status": "confirmed"}
        )

        assert affected == 1


class TestUpdateWhere:
    @pytest.mark.asyncio
    async def test_applies_patch_when_status_matches(self, store: InMemoryClinicStore) -> None:
        row_id = await store.insert(Table.APPOINTMENTS, {"status": "confirmed"})

        affected = await store.update_where(
            Table.APPOINTMENTS, row_id, "confirmed", {"status": "completed"}
        )

        assert affected == 1
        assert store.rows(Table.APPOINTMENTS)[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_skips_when_status_differs(self, store: InMemoryClinicStore) -> None:
        row_id = await store.insert(Table.APPOINTMENTS, {"status": "completed"})

        affected = await store.update_where(
            Table.APPOINTMENTS, row_id, "confirmed", {"status": "no_show"}
        )

        assert affected == 0
        assert store.rows(Table.APPOINTMENTS)[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_row(self, store: InMemoryClinicStore) -> None:
        assert await store.update_where(Table.PATIENTS, "missing", None, {"notes": "x"}) == 0


class TestFindMany:
    @pytest.mark.asyncio
    async def test_filters_and_orders(self, store: InMemoryClinicStore) -> None:
        await store.insert(Table.APPOINTMENTS, {"id": "b", "day": "1", "start_time": "10:00:00"})
        await store.insert(Table.APPOINTMENTS, {"id": "a", "day": "1", "start_time": "08:00:00"})
        await store.insert(Table.APPOINTMENTS, {"id": "c", "day": "2", "start_time": "07:00:00"})

        rows = await store.find_many(Table.APPOINTMENTS, {"day": "1"}, order_by="start_time")

        assert [r["id"] for r in rows] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_returned_rows_are_copies(self, store: InMemoryClinicStore) -> None:
        row_id = await store.insert(Table.PATIENTS, {"phone": "+1", "notes": "x"})

        row = await store.find_one_by_field(Table.PATIENTS, "id", row_id)
        assert row is not None
        row["notes"] = "mutated"

        assert store.rows(Table.PATIENTS)[0]["notes"] == "x"

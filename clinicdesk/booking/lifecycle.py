import asyncio
import datetime as dt
from collections.abc import Callable, Iterable

from loguru import logger

from clinicdesk.booking.adapters.datetime_helpers import (
    calculate_end_time,
    clinic_today,
    resolve_timezone,
    slots_overlap,
    time_to_12h,
    utc_now,
)
from clinicdesk.booking.ports import AbstractLifecycleEngine, ClinicStoreProtocol, Row, Table
from clinicdesk.domain.exceptions import (
    InvalidTransition,
    PersistenceError,
    RecordNotFoundError,
    SlotConflictError,
    store_errors,
)
from clinicdesk.domain.models import (
    Actor,
    Appointment,
    AppointmentDraft,
    AppointmentSlot,
    BookingRequest,
    BookingRequestDraft,
    DayAgenda,
    Period,
    Status,
)
from clinicdesk.domain.transitions import (
    ACTIVE_APPOINTMENT_STATUSES,
    APPOINTMENT,
    BOOKING_REQUEST,
    FINAL_APPOINTMENT_STATUSES,
    ensure_transition,
)


def split_day_agenda(date: dt.date, appointments: Iterable[Appointment]) -> DayAgenda:
    """Partition a day's appointments into active and finalized, each by start time."""
    ordered = sorted(appointments, key=lambda a: a.start_time)
    return DayAgenda(
        date=date,
        active=[a for a in ordered if a.status in ACTIVE_APPOINTMENT_STATUSES],
        finalized=[a for a in ordered if a.status in FINAL_APPOINTMENT_STATUSES],
    )


class LifecycleEngine(AbstractLifecycleEngine):
    """Booking request and appointment state machines on top of a ClinicStoreProtocol.

    Every status write is a compare-and-swap on the status the engine last
    observed, so two staff members acting on the same row cannot both succeed.
    """

    def __init__(
        self,
        store: ClinicStoreProtocol,
        *,
        clinic_timezone: str = "UTC",
        clock: Callable[[], dt.datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clinic_tz = resolve_timezone(clinic_timezone)
        self._clock = clock

    # -- booking requests -------------------------------------------------

    async def create_booking_request(self, draft: BookingRequestDraft) -> BookingRequest:
        row: Row = {**draft.model_dump(mode="json"), "status": Status.PENDING.value}
        with store_errors("Booking request insert"):
            request_id = await self._store.insert(Table.BOOKING_REQUESTS, row)

        logger.info(
            "Booking request created: id={}, patient_id={}, date={}, period={}",
            request_id,
            draft.patient_id,
            draft.requested_date,
            draft.requested_period.value,
        )
        return BookingRequest.model_validate({**row, "id": request_id})

    async def get_booking_request(self, request_id: str) -> BookingRequest:
        with store_errors("Booking request lookup"):
            row = await self._store.find_one_by_field(Table.BOOKING_REQUESTS, "id", request_id)
            if row is None:
                raise RecordNotFoundError(BOOKING_REQUEST, request_id)
            return BookingRequest.model_validate(row)

    async def postpone_booking_request(
        self,
        request_id: str,
        *,
        suggested_date: dt.date | None = None,
        suggested_period: Period | None = None,
        staff_notes: str | None = None,
    ) -> BookingRequest:
        request = await self.get_booking_request(request_id)
        ensure_transition(BOOKING_REQUEST, request_id, request.status, Status.POSTPONED)

        if not (suggested_date or suggested_period or staff_notes):
            logger.warning("Booking request {} postponed without any suggestion", request_id)

        # A new postponement replaces the previous suggestion entirely.
        patch: Row = {
            "status": Status.POSTPONED.value,
            "suggested_date": suggested_date.isoformat() if suggested_date else None,
            "suggested_period": suggested_period.value if suggested_period else None,
            "staff_notes": staff_notes or None,
        }
        updated = await self._swap_booking_request(request, Status.POSTPONED, patch)
        logger.info(
            "Booking request postponed: id={}, suggested_date={}, suggested_period={}",
            request_id,
            updated.suggested_date,
            updated.suggested_period.value if updated.suggested_period else None,
        )
        return updated

    async def cancel_booking_request(
        self, request_id: str, *, staff_notes: str | None = None, actor: Actor = Actor.STAFF
    ) -> BookingRequest:
        request = await self.get_booking_request(request_id)
        ensure_transition(BOOKING_REQUEST, request_id, request.status, Status.CANCELLED)

        patch: Row = {"status": Status.CANCELLED.value}
        if staff_notes:
            patch["staff_notes"] = staff_notes
        updated = await self._swap_booking_request(request, Status.CANCELLED, patch)
        logger.info("Booking request cancelled: id={}, by={}", request_id, actor.value)
        return updated

    async def confirm_booking_request(
        self, request_id: str, slot: AppointmentSlot
    ) -> Appointment:
        request = await self.get_booking_request(request_id)
        if request.status == Status.CONFIRMED and request.confirmed_appointment_id:
            logger.info(
                "Booking request {} already confirmed; returning appointment {}",
                request_id,
                request.confirmed_appointment_id,
            )
            return await self.get_appointment(request.confirmed_appointment_id)
        ensure_transition(BOOKING_REQUEST, request_id, request.status, Status.CONFIRMED)

        draft = AppointmentDraft(
            patient_id=request.patient_id,
            service_id=slot.service_id,
            appointment_date=slot.appointment_date or self._agreed_date(request),
            start_time=slot.start_time,
            duration=slot.duration,
            period_name=slot.period_name or self._agreed_period(request).value,
            notes=slot.notes,
        )
        try:
            appointment = await self._insert_appointment(draft, Status.CONFIRMED)
        except PersistenceError as exc:
            # A concurrent confirm of the same request may already hold the slot.
            current = await self.get_booking_request(request_id)
            if current.status == request.status:
                raise
            logger.warning(
                "Lost confirm race on booking request {} (now {})",
                request_id,
                current.status.value,
            )
            raise InvalidTransition(
                BOOKING_REQUEST,
                request_id,
                current.status.value,
                Status.CONFIRMED.value,
                reason="request changed while confirming",
            ) from exc

        patch: Row = {
            "status": Status.CONFIRMED.value,
            "confirmed_appointment_id": appointment.id,
        }
        linked = False
        try:
            with store_errors("Booking request confirm"):
                affected = await self._store.update_where(
                    Table.BOOKING_REQUESTS, request_id, request.status.value, patch
                )
            linked = affected > 0
        finally:
            # Also runs when the caller is cancelled or times out mid-swap.
            if not linked:
                await asyncio.shield(self._release_appointment(request_id, appointment.id))

        if not linked:
            current = await self.get_booking_request(request_id)
            logger.warning(
                "Lost confirm race on booking request {} (now {})",
                request_id,
                current.status.value,
            )
            raise InvalidTransition(
                BOOKING_REQUEST,
                request_id,
                current.status.value,
                Status.CONFIRMED.value,
                reason="request changed while confirming",
            )

        logger.info(
            "Booking request confirmed: id={}, appointment_id={}, {} at {}",
            request_id,
            appointment.id,
            appointment.appointment_date,
            time_to_12h(appointment.start_time),
        )
        return appointment

    # -- appointments -----------------------------------------------------

    async def book_appointment(self, draft: AppointmentDraft) -> Appointment:
        appointment = await self._insert_appointment(draft, Status.PENDING)
        logger.info(
            "Appointment booked: id={}, {} at {}",
            appointment.id,
            appointment.appointment_date,
            time_to_12h(appointment.start_time),
        )
        return appointment

    async def get_appointment(self, appointment_id: str) -> Appointment:
        with store_errors("Appointment lookup"):
            row = await self._store.find_one_by_field(Table.APPOINTMENTS, "id", appointment_id)
            if row is None:
                raise RecordNotFoundError(APPOINTMENT, appointment_id)
            return Appointment.model_validate(row)

    async def update_appointment_details(
        self,
        appointment_id: str,
        *,
        appointment_date: dt.date | None = None,
        start_time: dt.time | None = None,
        duration: int | None = None,
        period_name: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        if appointment.status in FINAL_APPOINTMENT_STATUSES:
            raise InvalidTransition(
                APPOINTMENT,
                appointment_id,
                appointment.status.value,
                appointment.status.value,
                reason="finalized appointments cannot be changed",
            )
        if duration is not None and duration <= 0:
            raise ValueError(f"duration must be a positive number of minutes, got {duration}")

        patch: Row = {}
        if appointment_date is not None:
            patch["appointment_date"] = appointment_date.isoformat()
        if start_time is not None:
            patch["start_time"] = start_time.isoformat()
        if duration is not None:
            patch["duration"] = duration
        if period_name is not None:
            patch["period_name"] = period_name
        if notes is not None:
            patch["notes"] = notes
        if not patch:
            return appointment

        date = appointment_date if appointment_date is not None else appointment.appointment_date
        start = start_time if start_time is not None else appointment.start_time
        end = appointment.end_time
        if start_time is not None or duration is not None:
            minutes = duration if duration is not None else appointment.duration
            end = calculate_end_time(start, minutes)
            patch["end_time"] = end.isoformat()
        if appointment_date is not None or "end_time" in patch:
            await self._ensure_slot_free(date, start, end, exclude_id=appointment_id)

        updated = await self._swap_appointment(appointment, appointment.status, patch)
        logger.info(
            "Appointment details updated: id={}, fields={}, {} at {}",
            appointment_id,
            sorted(patch),
            updated.appointment_date,
            time_to_12h(updated.start_time),
        )
        return updated

    async def confirm_appointment(self, appointment_id: str) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        ensure_transition(APPOINTMENT, appointment_id, appointment.status, Status.CONFIRMED)
        updated = await self._swap_appointment(appointment, Status.CONFIRMED)
        logger.info("Appointment confirmed: id={}", appointment_id)
        return updated

    async def mark_completed(self, appointment_id: str) -> Appointment:
        return await self._dispose(appointment_id, Status.COMPLETED)

    async def mark_no_show(self, appointment_id: str) -> Appointment:
        return await self._dispose(appointment_id, Status.NO_SHOW)

    async def day_agenda(self, date: dt.date) -> DayAgenda:
        with store_errors("Appointment listing"):
            rows = await self._store.find_many(
                Table.APPOINTMENTS, {"appointment_date": date.isoformat()}, order_by="start_time"
            )
            agenda = split_day_agenda(date, [Appointment.model_validate(r) for r in rows])
        logger.info(
            "Agenda for {}: {} active, {} finalized",
            date,
            len(agenda.active),
            len(agenda.finalized),
        )
        return agenda

    # -- internals --------------------------------------------------------

    async def _dispose(self, appointment_id: str, target: Status) -> Appointment:
        appointment = await self.get_appointment(appointment_id)
        ensure_transition(APPOINTMENT, appointment_id, appointment.status, target)

        today = clinic_today(self._clock, self._clinic_tz)
        if appointment.appointment_date > today:
            raise InvalidTransition(
                APPOINTMENT,
                appointment_id,
                appointment.status.value,
                target.value,
                reason=f"scheduled for {appointment.appointment_date}, today is {today}",
            )

        updated = await self._swap_appointment(appointment, target)
        logger.info("Appointment {} marked {}", appointment_id, target.value)
        return updated

    async def _insert_appointment(self, draft: AppointmentDraft, status: Status) -> Appointment:
        end_time = calculate_end_time(draft.start_time, draft.duration)
        await self._ensure_slot_free(draft.appointment_date, draft.start_time, end_time)

        row: Row = {
            **draft.model_dump(mode="json"),
            "end_time": end_time.isoformat(),
            "status": status.value,
        }
        with store_errors("Appointment insert"):
            appointment_id = await self._store.insert(Table.APPOINTMENTS, row)
        return Appointment.model_validate({**row, "id": appointment_id})

    async def _ensure_slot_free(
        self, date: dt.date, start: dt.time, end: dt.time, exclude_id: str | None = None
    ) -> None:
        """Raise ``SlotConflictError`` if ``start``-``end`` on ``date`` is already taken.

        The store enforces the same rule on write; checking first avoids a
        doomed insert and names the appointment in the way.
        """
        with store_errors("Appointment listing"):
            rows = await self._store.find_many(
                Table.APPOINTMENTS, {"appointment_date": date.isoformat()}
            )
            for row in rows:
                if row["id"] == exclude_id:
                    continue
                taken_start = dt.time.fromisoformat(str(row["start_time"]))
                taken_end = dt.time.fromisoformat(str(row["end_time"]))
                if slots_overlap(start, end, taken_start, taken_end):
                    raise SlotConflictError(
                        Table.APPOINTMENTS.value,
                        f"{date} {time_to_12h(start)} overlaps appointment {row['id']}",
                    )

    async def _release_appointment(self, request_id: str, appointment_id: str) -> None:
        """Delete an appointment whose booking request was not confirmed with it.

        The request is re-read first: if the swap reached the store but its
        response was lost, the request already links the appointment and it stays.
        """
        try:
            row = await self._store.find_one_by_field(Table.BOOKING_REQUESTS, "id", request_id)
        except Exception as exc:
            logger.warning(
                "Could not re-read booking request {} before rollback: {}", request_id, exc
            )
            row = None
        if row is not None and row.get("confirmed_appointment_id") == appointment_id:
            logger.warning(
                "Booking request {} already links appointment {}; keeping it",
                request_id,
                appointment_id,
            )
            return

        try:
            await self._store.delete(Table.APPOINTMENTS, appointment_id)
        except Exception as exc:
            logger.error(
                "Failed to roll back appointment {} for booking request {}: {}",
                appointment_id,
                request_id,
                exc,
            )
        else:
            logger.info(
                "Rolled back appointment {} for booking request {}", appointment_id, request_id
            )

    async def _swap_booking_request(
        self, request: BookingRequest, target: Status, patch: Row
    ) -> BookingRequest:
        with store_errors("Booking request update"):
            affected = await self._store.update_where(
                Table.BOOKING_REQUESTS, request.id, request.status.value, patch
            )
        if affected == 0:
            current = await self.get_booking_request(request.id)
            raise InvalidTransition(
                BOOKING_REQUEST,
                request.id,
                current.status.value,
                target.value,
                reason="request changed concurrently",
            )
        return BookingRequest.model_validate({**request.model_dump(mode="json"), **patch})

    async def _swap_appointment(
        self, appointment: Appointment, target: Status, changes: Row | None = None
    ) -> Appointment:
        patch: Row = {"status": target.value, **(changes or {})}
        with store_errors("Appointment update"):
            affected = await self._store.update_where(
                Table.APPOINTMENTS, appointment.id, appointment.status.value, patch
            )
        if affected == 0:
            current = await self.get_appointment(appointment.id)
            raise InvalidTransition(
                APPOINTMENT,
                appointment.id,
                current.status.value,
                target.value,
                reason="appointment changed concurrently",
            )
        return Appointment.model_validate({**appointment.model_dump(mode="json"), **patch})

    @staticmethod
    def _agreed_date(request: BookingRequest) -> dt.date:
        if request.status == Status.POSTPONED and request.suggested_date:
            return request.suggested_date
        return request.requested_date

    @staticmethod
    def _agreed_period(request: BookingRequest) -> Period:
        if request.status == Status.POSTPONED and request.suggested_period:
            return request.suggested_period
        return request.requested_period

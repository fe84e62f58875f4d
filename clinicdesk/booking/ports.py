import datetime as dt
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Protocol

from clinicdesk.domain.models import (
    Actor,
    Appointment,
    AppointmentDraft,
    AppointmentSlot,
    BookingRequest,
    BookingRequestDraft,
    DayAgenda,
    GuardianDetails,
    Patient,
    PatientResolution,
    PatientType,
    Period,
)

Row = dict[str, Any]


class Table(str, Enum):
    PATIENTS = "patients"
    GUARDIANS = "guardians"
    BOOKING_REQUESTS = "booking_requests"
    APPOINTMENTS = "appointments"


class AbstractIdentityResolver(ABC):
    """Maps phone numbers to stable patient and guardian identifiers."""

    @abstractmethod
    async def resolve_guardian(self, full_name: str, phone: str, email: str | None = None) -> str:
        """Return the id of the guardian with ``phone``, creating one if absent.

        An existing guardian is returned unchanged; the supplied name and
        email are only used for a new row.

        Raises:
            PersistenceError: If the lookup or insert cannot complete.
        """

    @abstractmethod
    async def resolve_patient(
        self,
        phone: str,
        full_name: str,
        date_of_birth: dt.date | None = None,
        patient_type: PatientType = PatientType.ADULT,
        guardian_id: str | None = None,
        guardian_details: GuardianDetails | None = None,
        notes: str | None = None,
        email: str | None = None,
    ) -> PatientResolution:
        """Return the patient registered under ``phone``, creating one if absent.

        Raises:
            MissingGuardianError: If a new child has no resolvable guardian.
            GuardianConstraintViolation: If the store rejects a guardian-less child.
            PersistenceError: If the store fails.
        """

    @abstractmethod
    async def get_patient(self, patient_id: str) -> Patient:
        """Fetch a patient by id.

        Raises:
            RecordNotFoundError: If no such patient exists.
        """

    @abstractmethod
    async def update_patient_details(
        self,
        patient_id: str,
        *,
        full_name: str | None = None,
        email: str | None = None,
        notes: str | None = None,
    ) -> Patient:
        """Update a patient's contact and notes fields. ``None`` leaves a field as is."""


class AbstractLifecycleEngine(ABC):
    """Enforces the booking request and appointment state machines."""

    @abstractmethod
    async def create_booking_request(self, draft: BookingRequestDraft) -> BookingRequest:
        """Open a booking request in ``pending``."""

    @abstractmethod
    async def get_booking_request(self, request_id: str) -> BookingRequest:
        """Fetch a booking request by id."""

    @abstractmethod
    async def postpone_booking_request(
        self,
        request_id: str,
        *,
        suggested_date: dt.date | None = None,
        suggested_period: Period | None = None,
        staff_notes: str | None = None,
    ) -> BookingRequest:
        """Move a request to ``postponed``, replacing any previous suggestion.

        Raises:
            InvalidTransition: If the request is not pending or postponed.
        """

    @abstractmethod
    async def cancel_booking_request(
        self, request_id: str, *, staff_notes: str | None = None, actor: Actor = Actor.STAFF
    ) -> BookingRequest:
        """Cancel a pending or postponed request."""

    @abstractmethod
    async def confirm_booking_request(
        self, request_id: str, slot: AppointmentSlot
    ) -> Appointment:
        """Confirm a request and create its appointment as one idempotent step.

        Confirming an already-confirmed request returns its existing appointment.

        Raises:
            InvalidTransition: If the request is cancelled or another confirm won the race.
            SlotConflictError: If the agreed time overlaps another appointment.
        """

    @abstractmethod
    async def book_appointment(self, draft: AppointmentDraft) -> Appointment:
        """Create an appointment awaiting staff confirmation.

        Raises:
            SlotConflictError: If the time overlaps another appointment that day.
        """

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> Appointment:
        """Fetch an appointment by id."""

    @abstractmethod
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
        """Reschedule or annotate an active appointment. ``None`` leaves a field as is.

        ``end_time`` is recomputed whenever the start time or duration changes.

        Raises:
            SlotConflictError: If the new time overlaps another appointment.
            InvalidTransition: If the appointment is finalized or changed concurrently.
        """

    @abstractmethod
    async def confirm_appointment(self, appointment_id: str) -> Appointment:
        """Move a pending appointment to ``confirmed``."""

    @abstractmethod
    async def mark_completed(self, appointment_id: str) -> Appointment:
        """Record that the patient attended."""

    @abstractmethod
    async def mark_no_show(self, appointment_id: str) -> Appointment:
        """Record that the patient did not attend."""

    @abstractmethod
    async def day_agenda(self, date: dt.date) -> DayAgenda:
        """List a day's appointments, actionable ones first."""


class ClinicStoreProtocol(Protocol):
    """Low-level data access to the clinic tables."""

    async def find_one_by_field(self, table: Table, field: str, value: Any) -> Row | None:
        """Return the first row whose ``field`` equals ``value``."""
        ...

    async def find_many(
        self, table: Table, filters: dict[str, Any], order_by: str | None = None
    ) -> list[Row]:
        """Return every row matching all ``filters``."""
        ...

    async def insert(self, table: Table, row: Row) -> str:
        """Insert a row and return its id."""
        ...

    async def update_where(
        self, table: Table, row_id: str, expected_status: str | None, patch: Row
    ) -> int:
        """Patch a row if its status still equals ``expected_status``; return rows affected."""
        ...

    async def delete(self, table: Table, row_id: str) -> int:
        """Delete a row by id; return rows affected."""
        ...

    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...

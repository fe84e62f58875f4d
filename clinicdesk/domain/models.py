import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Status(str, Enum):
    """Status vocabulary shared by booking requests and appointments."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PatientType(str, Enum):
    ADULT = "adult"
    CHILD = "child"


class PatientStatus(str, Enum):
    ACTIVE = "active"
    FOLLOW_UP = "follow_up"
    ARCHIVED = "archived"


class Period(str, Enum):
    """Coarse day-part used for requested and suggested slots."""

    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    NIGHT = "Night"


class ContactType(str, Enum):
    PHONE = "phone"
    EMAIL = "email"


class Actor(str, Enum):
    STAFF = "staff"
    PATIENT = "patient"


class Guardian(BaseModel):
    """A guardian record, shared by any number of child patients."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    phone: str
    email: str | None = None


class Patient(BaseModel):
    """A patient record keyed by phone number."""

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    phone: str | None = None
    email: str | None = None
    date_of_birth: dt.date | None = None
    patient_type: PatientType = PatientType.ADULT
    status: PatientStatus = PatientStatus.ACTIVE
    notes: str | None = None
    guardian_id: str | None = None


class BookingRequest(BaseModel):
    """A patient's request for a visit, awaiting staff action."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    patient_name: str
    contact_info: str
    contact_type: ContactType = ContactType.PHONE
    service_id: str | None = None
    service_name: str
    requested_date: dt.date
    requested_period: Period
    status: Status = Status.PENDING
    notes: str | None = None
    staff_notes: str | None = None
    suggested_date: dt.date | None = None
    suggested_period: Period | None = None
    confirmed_appointment_id: str | None = None


class Appointment(BaseModel):
    """A scheduled visit."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    service_id: str
    appointment_date: dt.date
    start_time: dt.time
    end_time: dt.time
    duration: int
    period_name: str
    status: Status = Status.PENDING
    notes: str | None = None


class GuardianDetails(BaseModel):
    """Guardian fields supplied alongside a child's booking."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    phone: str
    email: str | None = None


class PatientResolution(BaseModel):
    """Outcome of resolving a phone number to a patient."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    is_new: bool


class BookingRequestDraft(BaseModel):
    """Fields needed to open a booking request for a resolved patient."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    patient_name: str
    contact_info: str
    contact_type: ContactType = ContactType.PHONE
    service_id: str | None = None
    service_name: str
    requested_date: dt.date
    requested_period: Period
    notes: str | None = None


class BookingSubmission(BaseModel):
    """A booking as submitted from the public form, before identity resolution."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    phone: str
    email: str | None = None
    date_of_birth: dt.date | None = None
    patient_type: PatientType = PatientType.ADULT
    guardian: GuardianDetails | None = None
    service_id: str | None = None
    service_name: str
    requested_date: dt.date
    requested_period: Period
    notes: str | None = None


class AppointmentSlot(BaseModel):
    """The agreed date and time used when a booking request becomes an appointment.

    ``appointment_date`` and ``period_name`` may be left empty; the engine then
    takes them from the staff suggestion or the original request.
    """

    model_config = ConfigDict(frozen=True)

    service_id: str
    start_time: dt.time
    duration: int = Field(gt=0)
    appointment_date: dt.date | None = None
    period_name: str | None = None
    notes: str | None = None


class AppointmentDraft(BaseModel):
    """Fields for an appointment booked directly by staff."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    service_id: str
    appointment_date: dt.date
    start_time: dt.time
    duration: int = Field(gt=0)
    period_name: str
    notes: str | None = None


class DayAgenda(BaseModel):
    """A day's appointments split into still-actionable and finalized visits."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    active: list[Appointment] = Field(default_factory=list)
    finalized: list[Appointment] = Field(default_factory=list)

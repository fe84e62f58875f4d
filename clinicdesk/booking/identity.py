import datetime as dt

from loguru import logger

from clinicdesk.booking.ports import AbstractIdentityResolver, ClinicStoreProtocol, Row, Table
from clinicdesk.domain.exceptions import (
    CheckViolationError,
    GuardianConstraintViolation,
    MissingGuardianError,
    PersistenceError,
    RecordNotFoundError,
    UniqueViolationError,
    store_errors,
)
from clinicdesk.domain.models import (
    GuardianDetails,
    Patient,
    PatientResolution,
    PatientStatus,
    PatientType,
)

CHILD_REQUIRES_GUARDIAN = "child_requires_guardian"


class IdentityResolver(AbstractIdentityResolver):
    """Phone-keyed patient and guardian resolution on top of a ClinicStoreProtocol.

    The lookup before each insert only saves a round-trip. The store's
    unique phone constraint decides who wins a concurrent first booking; the
    loser re-reads and returns the winner's id.
    """

    def __init__(self, store: ClinicStoreProtocol) -> None:
        self._store = store

    async def resolve_guardian(self, full_name: str, phone: str, email: str | None = None) -> str:
        existing = await self._find_by_phone(Table.GUARDIANS, phone)
        if existing:
            logger.info("Reusing guardian id={}", existing["id"])
            return str(existing["id"])

        try:
            with store_errors("Guardian insert"):
                guardian_id = await self._store.insert(
                    Table.GUARDIANS,
                    {"full_name": full_name, "phone": phone, "email": email or None},
                )
        except UniqueViolationError:
            logger.warning("Guardian phone claimed concurrently; re-reading existing row")
            return str((await self._refetch_after_conflict(Table.GUARDIANS, phone))["id"])

        logger.info("Guardian created: id={}", guardian_id)
        return guardian_id

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
        existing = await self._find_by_phone(Table.PATIENTS, phone)
        if existing:
            logger.info("Patient already registered: id={}", existing["id"])
            return PatientResolution(patient_id=str(existing["id"]), is_new=False)

        final_guardian_id = guardian_id
        if patient_type == PatientType.CHILD:
            if not final_guardian_id and guardian_details:
                final_guardian_id = await self.resolve_guardian(
                    guardian_details.full_name, guardian_details.phone, guardian_details.email
                )
            if not final_guardian_id:
                raise MissingGuardianError(full_name)
        else:
            final_guardian_id = None

        row: Row = {
            "full_name": full_name,
            "phone": phone,
            "email": email or None,
            "date_of_birth": date_of_birth.isoformat() if date_of_birth else None,
            "patient_type": patient_type.value,
            "guardian_id": final_guardian_id,
            "notes": notes or None,
            "status": PatientStatus.ACTIVE.value,
        }

        try:
            with store_errors("Patient insert"):
                patient_id = await self._store.insert(Table.PATIENTS, row)
        except UniqueViolationError:
            logger.warning("Patient phone claimed concurrently; re-reading existing row")
            winner = await self._refetch_after_conflict(Table.PATIENTS, phone)
            return PatientResolution(patient_id=str(winner["id"]), is_new=False)
        except CheckViolationError as exc:
            if exc.constraint == CHILD_REQUIRES_GUARDIAN:
                raise GuardianConstraintViolation(full_name) from exc
            raise

        logger.info("Patient created: id={}, type={}", patient_id, patient_type.value)
        return PatientResolution(patient_id=patient_id, is_new=True)

    async def get_patient(self, patient_id: str) -> Patient:
        with store_errors("Patient lookup"):
            row = await self._store.find_one_by_field(Table.PATIENTS, "id", patient_id)
            if row is None:
                raise RecordNotFoundError("patient", patient_id)
            return Patient.model_validate(row)

    async def update_patient_details(
        self,
        patient_id: str,
        *,
        full_name: str | None = None,
        email: str | None = None,
        notes: str | None = None,
    ) -> Patient:
        current = await self.get_patient(patient_id)
        patch: Row = {
            key: value
            for key, value in (("full_name", full_name), ("email", email), ("notes", notes))
            if value is not None
        }
        if not patch:
            return current

        with store_errors("Patient update"):
            affected = await self._store.update_where(Table.PATIENTS, patient_id, None, patch)
        if affected == 0:
            raise RecordNotFoundError("patient", patient_id)

        logger.info("Patient details updated: id={}, fields={}", patient_id, sorted(patch))
        return current.model_copy(update=patch)

    async def _find_by_phone(self, table: Table, phone: str) -> Row | None:
        with store_errors(f"Lookup in {table.value}"):
            return await self._store.find_one_by_field(table, "phone", phone)

    async def _refetch_after_conflict(self, table: Table, phone: str) -> Row:
        row = await self._find_by_phone(table, phone)
        if row is None:
            raise PersistenceError(
                f"Unique conflict on {table.value}.phone but no row found on re-lookup"
            )
        return row

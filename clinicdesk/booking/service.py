from loguru import logger

from clinicdesk.booking.ports import (
    AbstractIdentityResolver,
    AbstractLifecycleEngine,
    ClinicStoreProtocol,
)
from clinicdesk.domain.models import (
    BookingRequest,
    BookingRequestDraft,
    BookingSubmission,
    ContactType,
)


class BookingService:
    """Entry point for the booking flow: identity first, then the request.

    All writes go through ``identity`` or ``lifecycle``; nothing else here
    touches the store except health and shutdown.
    """

    def __init__(
        self,
        store: ClinicStoreProtocol,
        identity: AbstractIdentityResolver,
        lifecycle: AbstractLifecycleEngine,
    ) -> None:
        self._store = store
        self.identity = identity
        self.lifecycle = lifecycle

    async def submit_booking(self, submission: BookingSubmission) -> BookingRequest:
        """Resolve the submitting patient and open a pending booking request."""
        logger.info(
            "Booking submission received: type={}, date={}, period={}",
            submission.patient_type.value,
            submission.requested_date,
            submission.requested_period.value,
        )

        resolution = await self.identity.resolve_patient(
            phone=submission.phone,
            full_name=submission.full_name,
            date_of_birth=submission.date_of_birth,
            patient_type=submission.patient_type,
            guardian_details=submission.guardian,
            email=submission.email,
        )

        return await self.lifecycle.create_booking_request(
            BookingRequestDraft(
                patient_id=resolution.patient_id,
                patient_name=submission.full_name,
                contact_info=submission.phone,
                contact_type=ContactType.PHONE,
                service_id=submission.service_id,
                service_name=submission.service_name,
                requested_date=submission.requested_date,
                requested_period=submission.requested_period,
                notes=submission.notes,
            )
        )

    async def health_check(self) -> bool:
        return await self._store.health_check()

    async def close(self) -> None:
        await self._store.close()

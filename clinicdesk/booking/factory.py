from typing import Callable

from loguru import logger

from clinicdesk.booking.adapters.memory import InMemoryClinicStore
from clinicdesk.booking.adapters.postgrest import PostgRESTClinicStore
from clinicdesk.booking.identity import IdentityResolver
from clinicdesk.booking.lifecycle import LifecycleEngine
from clinicdesk.booking.ports import ClinicStoreProtocol
from clinicdesk.booking.service import BookingService
from clinicdesk.config import AppConfig, StoreAdapter


def _build_postgrest(config: AppConfig) -> ClinicStoreProtocol:
    return PostgRESTClinicStore(
        config.supabase.url,
        service_key=config.supabase.service_key,
        schema_name=config.supabase.schema_name,
        timeout=config.supabase.timeout,
    )


def _build_memory(config: AppConfig) -> ClinicStoreProtocol:
    return InMemoryClinicStore()


_BUILDERS: dict[StoreAdapter, Callable[[AppConfig], ClinicStoreProtocol]] = {
    StoreAdapter.POSTGREST: _build_postgrest,
    StoreAdapter.MEMORY: _build_memory,
}


def build_booking_service(config: AppConfig) -> BookingService:
    """Build the booking service on the store adapter selected in config."""
    adapter = config.supabase.adapter
    logger.info("Building booking service with store adapter: {}", adapter.value)
    store = _BUILDERS[adapter](config)
    return BookingService(
        store,
        identity=IdentityResolver(store),
        lifecycle=LifecycleEngine(store, clinic_timezone=config.clinic_timezone),
    )

from clinicdesk.domain.exceptions import InvalidTransition
from clinicdesk.domain.models import Status

BOOKING_REQUEST = "booking request"
APPOINTMENT = "appointment"

BOOKING_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.PENDING: frozenset({Status.CONFIRMED, Status.POSTPONED, Status.CANCELLED}),
    Status.POSTPONED: frozenset({Status.CONFIRMED, Status.POSTPONED, Status.CANCELLED}),
    Status.CONFIRMED: frozenset(),
    Status.CANCELLED: frozenset(),
}

APPOINTMENT_TRANSITIONS: dict[Status, frozenset[Status]] = {
    Status.PENDING: frozenset({Status.CONFIRMED}),
    Status.CONFIRMED: frozenset({Status.COMPLETED, Status.NO_SHOW}),
    Status.COMPLETED: frozenset(),
    Status.NO_SHOW: frozenset(),
}

ACTIVE_APPOINTMENT_STATUSES = frozenset({Status.PENDING, Status.CONFIRMED})
FINAL_APPOINTMENT_STATUSES = frozenset({Status.COMPLETED, Status.NO_SHOW})

_TABLES = {
    BOOKING_REQUEST: BOOKING_TRANSITIONS,
    APPOINTMENT: APPOINTMENT_TRANSITIONS,
}


def allowed_targets(entity: str, source: Status) -> frozenset[Status]:
    """Statuses reachable from ``source``; unknown sources reach nothing."""
    return _TABLES[entity].get(source, frozenset())


def is_terminal(entity: str, status: Status) -> bool:
    return not allowed_targets(entity, status)


def ensure_transition(entity: str, entity_id: str, source: Status, target: Status) -> None:
    """Raise ``InvalidTransition`` unless ``source -> target`` is an allowed edge."""
    if target not in allowed_targets(entity, source):
        raise InvalidTransition(entity, entity_id, Status(source).value, Status(target).value)

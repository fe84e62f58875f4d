from collections.abc import Iterator
from contextlib import contextmanager


class ClinicError(Exception):
    """Base exception for all clinic core errors."""


class PersistenceError(ClinicError):
    """Raised when the store is unreachable or fails unrecoverably."""


class UniqueViolationError(PersistenceError):
    """Raised by a store when an insert collides with a unique constraint."""

    def __init__(self, table: str, constraint: str | None = None) -> None:
        self.table = table
        self.constraint = constraint
        super().__init__(f"Duplicate key in {table} (constraint={constraint})")


class CheckViolationError(PersistenceError):
    """Raised by a store when a row fails a check constraint."""

    def __init__(self, table: str, constraint: str | None = None) -> None:
        self.table = table
        self.constraint = constraint
        super().__init__(f"Check constraint {constraint} violated in {table}")


class SlotConflictError(PersistenceError):
    """Raised when an appointment's time range overlaps another on the same day."""

    def __init__(self, table: str, detail: str | None = None) -> None:
        self.table = table
        self.detail = detail
        message = f"Appointment time overlaps with an existing appointment in {table}"
        super().__init__(f"{message} ({detail})" if detail else message)


class MissingGuardianError(ClinicError):
    """Raised when a child patient cannot be linked to any guardian."""

    def __init__(self, full_name: str) -> None:
        self.full_name = full_name
        super().__init__(
            f"Guardian information is required for child patients (patient: {full_name})"
        )


class GuardianConstraintViolation(ClinicError):
    """Raised when the store rejects a child patient row without a guardian."""

    def __init__(self, full_name: str) -> None:
        self.full_name = full_name
        super().__init__(
            f"Patient creation failed: children must be linked to a guardian ({full_name})"
        )


class InvalidTransition(ClinicError):
    """Raised when a status change is not allowed from the entity's current state."""

    def __init__(
        self, entity: str, entity_id: str, source: str, target: str, reason: str | None = None
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.source = source
        self.target = target
        self.reason = reason
        message = f"Cannot move {entity} {entity_id} from {source} to {target}"
        super().__init__(f"{message}: {reason}" if reason else message)


class RecordNotFoundError(ClinicError):
    """Raised when a referenced row does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Re-raise clinic errors as-is and wrap anything else as ``PersistenceError``."""
    try:
        yield
    except ClinicError:
        raise
    except Exception as exc:
        raise PersistenceError(f"{action} failed: {exc}") from exc

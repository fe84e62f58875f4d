import re
from typing import Any

UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"
RAISE_EXCEPTION = "P0001"


def extract_constraint(message: str) -> str | None:
    """Extract the constraint name from a Postgres error message.

    ``'new row for relation "patients" violates check constraint "child_requires_guardian"'``
    → ``child_requires_guardian``.
    """
    match = re.search(r'violates (?:unique|check|foreign key) constraint "([^"]+)"', message)
    return match.group(1) if match else None


def is_overlap_error(code: str | None, message: str) -> bool:
    """Whether an error comes from the appointments overlap trigger.

    The trigger raises ``'Appointment time overlaps with existing appointment'``
    with the generic ``P0001`` code, so the message is what identifies it.
    """
    return code == RAISE_EXCEPTION and "overlaps" in message


def parse_error_payload(payload: Any) -> tuple[str | None, str]:
    """Return ``(code, message)`` from a PostgREST error body.

    PostgREST errors look like ``{"code": "23505", "message": "...", "details": ...}``.
    Anything else yields ``(None, str(payload))``.
    """
    if not isinstance(payload, dict):
        return None, str(payload)
    code = payload.get("code")
    message = payload.get("message") or payload.get("details") or ""
    return (str(code) if code is not None else None), str(message)

import pytest

from clinicdesk.domain.exceptions import InvalidTransition
from clinicdesk.domain.models import Status
from clinicdesk.domain.transitions import (
    APPOINTMENT,
    BOOKING_REQUEST,
    ensure_transition,
    is_terminal,
)


class TestBookingRequestMachine:
    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (Status.PENDING, Status.CONFIRMED),
            (Status.PENDING, Status.POSTPONED),
            (Status.PENDING, Status.CANCELLED),
            (Status.POSTPONED, Status.POSTPONED),
            (Status.POSTPONED, Status.CONFIRMED),
            (Status.POSTPONED, Status.CANCELLED),
        ],
    )
    def test_allowed_edges(self, source: Status, target: Status) -> None:
        ensure_transition(BOOKING_REQUEST, "r-1", source, target)

    @pytest.mark.parametrize(
        ("source", "target"),
        [
            (Status.CANCELLED, Status.PENDING),
            (Status.CANCELLED, Status.CONFIRMED),
            (Status.CONFIRMED, Status.POSTPONED),
            (Status.CONFIRMED, Status.CANCELLED),
            (Status.PENDING, Status.COMPLETED),
            (Status.COMPLETED, Status.CONFIRMED),
            (Status.NO_SHOW, Status.CANCELLED),
        ],
    )
    def test_rejected_edges(self, source: Status, target: Status) -> None:
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition(BOOKING_REQUEST, "r-1", source, target)

        assert exc_info.value.source == source.value
        assert exc_info.value.target == target.value
        assert "booking request r-1" in str(exc_info.value)

    @pytest.mark.parametrize(
        "status", [Status.CONFIRMED, Status.CANCELLED, Status.COMPLETED, Status.NO_SHOW]
    )
    def test_terminal_states(self, status: Status) -> None:
        assert is_terminal(BOOKING_REQUEST, status)


class TestAppointmentMachine:
    def test_pending_only_moves_to_confirmed(self) -> None:
        ensure_transition(APPOINTMENT, "a-1", Status.PENDING, Status.CONFIRMED)

        with pytest.raises(InvalidTransition):
            ensure_transition(APPOINTMENT, "a-1", Status.PENDING, Status.NO_SHOW)

    @pytest.mark.parametrize("target", [Status.COMPLETED, Status.NO_SHOW])
    def test_confirmed_moves_to_disposition(self, target: Status) -> None:
        ensure_transition(APPOINTMENT, "a-1", Status.CONFIRMED, target)

    def test_dispositions_are_mutually_exclusive(self) -> None:
        with pytest.raises(InvalidTransition, match="from completed to no_show"):
            ensure_transition(APPOINTMENT, "a-1", Status.COMPLETED, Status.NO_SHOW)

    @pytest.mark.parametrize("status", [Status.COMPLETED, Status.NO_SHOW, Status.CANCELLED])
    def test_terminal_states(self, status: Status) -> None:
        assert is_terminal(APPOINTMENT, status)

    def test_reason_is_appended_to_message(self) -> None:
        error = InvalidTransition(APPOINTMENT, "a-1", "confirmed", "completed", reason="future")

        assert str(error) == "Cannot move appointment a-1 from confirmed to completed: future"

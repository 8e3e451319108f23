"""Job lifecycle transition rules."""

from nebula.errors import InvalidStateTransition
from nebula.schemas.job import JobStatus

_TERMINAL_STATES: set[JobStatus] = {
    JobStatus.CANCELLED,
}

_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    # completed -> retrying is manual regeneration.
    JobStatus.COMPLETED: {JobStatus.RETRYING},
    JobStatus.FAILED: {JobStatus.RETRYING},
    JobStatus.RETRYING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.CANCELLED: set(),
}

CANCELLABLE_STATES: frozenset[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})
IN_FLIGHT_STATES: frozenset[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.RETRYING})


def allowed_next_statuses(status: JobStatus) -> list[JobStatus]:
    """Return deterministically ordered allowed successors for a status."""
    return sorted(_ALLOWED_TRANSITIONS.get(status, set()), key=lambda s: s.value)


def ensure_transition(old_status: JobStatus, new_status: JobStatus) -> None:
    """Validate transition according to lifecycle rules."""
    if old_status in _TERMINAL_STATES:
        raise InvalidStateTransition(
            code="FSM_TERMINAL_IMMUTABLE",
            message="Terminal state cannot be mutated",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": [],
            },
        )

    if new_status not in _ALLOWED_TRANSITIONS.get(old_status, set()):
        raise InvalidStateTransition(
            code="FSM_TRANSITION_INVALID",
            message="Invalid status transition",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": allowed_next_statuses(old_status),
            },
        )

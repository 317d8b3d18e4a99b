from __future__ import annotations

from gateway.domain.errors import DomainInvariantError
from gateway.domain.models import ExpireReason, MessageStatus


INITIAL_STATES: frozenset[MessageStatus] = frozenset(
    {
        MessageStatus.PENDING,
        MessageStatus.CANCELED_BY_USER,
    }
)

ALLOWED_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset(
        {
            MessageStatus.PROCESSING,
            MessageStatus.EXPIRED,
            MessageStatus.CANCELED_BY_USER,
        }
    ),
    MessageStatus.PROCESSING: frozenset(
        {
            MessageStatus.COMPLETED,
            MessageStatus.FAILED,
            MessageStatus.PENDING,
            MessageStatus.EXPIRED,
            MessageStatus.CANCELED_BY_USER,
        }
    ),
    MessageStatus.COMPLETED: frozenset(),
    MessageStatus.FAILED: frozenset(),
    MessageStatus.EXPIRED: frozenset(),
    MessageStatus.CANCELED_BY_USER: frozenset(),
}

TERMINAL_STATES: frozenset[MessageStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# States the background sweeps and the cancellation cascade may still act on.
IN_FLIGHT_STATES: tuple[MessageStatus, ...] = (MessageStatus.PENDING, MessageStatus.PROCESSING)

WORKER_OUTCOMES: frozenset[MessageStatus] = frozenset({MessageStatus.COMPLETED, MessageStatus.FAILED})


def is_allowed_transition(from_state: MessageStatus, to_state: MessageStatus) -> bool:
    return to_state in ALLOWED_TRANSITIONS.get(from_state, frozenset())


def ensure_transition(from_state: MessageStatus, to_state: MessageStatus) -> None:
    if not is_allowed_transition(from_state, to_state):
        raise DomainInvariantError(f"invalid transition: {from_state} -> {to_state}")


def ensure_initial_state(status: MessageStatus) -> None:
    if status not in INITIAL_STATES:
        raise DomainInvariantError(f"invalid initial status: {status}")


def expire_reason_for(*, status: MessageStatus, previous_reason: str | None) -> ExpireReason:
    """Pick the diagnostic reason written when an in-flight message expires.

    A pending message that already went through a requeue is reported as
    ``expired_after_pending`` so stuck workers can be told apart from an idle
    queue.
    """
    ensure_transition(status, MessageStatus.EXPIRED)
    if status == MessageStatus.PROCESSING:
        return ExpireReason.PROCESSING_TIMEOUT
    if previous_reason and "requeue" in previous_reason:
        return ExpireReason.AFTER_PENDING
    return ExpireReason.PENDING_TIMEOUT

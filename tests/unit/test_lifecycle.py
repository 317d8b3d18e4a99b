from __future__ import annotations

import pytest

from gateway.domain.errors import DomainInvariantError
from gateway.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    INITIAL_STATES,
    TERMINAL_STATES,
    ensure_initial_state,
    ensure_transition,
    expire_reason_for,
    is_allowed_transition,
)
from gateway.domain.models import REQUEUE_REASON, ExpireReason, MessageStatus


@pytest.mark.unit
def test_every_status_has_a_transition_entry() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(MessageStatus)


@pytest.mark.unit
def test_terminal_states_have_no_outgoing_edges() -> None:
    assert TERMINAL_STATES == {
        MessageStatus.COMPLETED,
        MessageStatus.FAILED,
        MessageStatus.EXPIRED,
        MessageStatus.CANCELED_BY_USER,
    }
    for terminal in TERMINAL_STATES:
        for target in MessageStatus:
            assert is_allowed_transition(terminal, target) is False


@pytest.mark.unit
@pytest.mark.parametrize(
    ("from_state", "to_state"),
    [
        (MessageStatus.PENDING, MessageStatus.PROCESSING),
        (MessageStatus.PENDING, MessageStatus.EXPIRED),
        (MessageStatus.PENDING, MessageStatus.CANCELED_BY_USER),
        (MessageStatus.PROCESSING, MessageStatus.COMPLETED),
        (MessageStatus.PROCESSING, MessageStatus.FAILED),
        (MessageStatus.PROCESSING, MessageStatus.PENDING),
        (MessageStatus.PROCESSING, MessageStatus.EXPIRED),
        (MessageStatus.PROCESSING, MessageStatus.CANCELED_BY_USER),
    ],
)
def test_allowed_edges(from_state: MessageStatus, to_state: MessageStatus) -> None:
    ensure_transition(from_state, to_state)


@pytest.mark.unit
def test_pending_cannot_complete_without_a_claim() -> None:
    with pytest.raises(DomainInvariantError, match="invalid transition: pending -> completed"):
        ensure_transition(MessageStatus.PENDING, MessageStatus.COMPLETED)


@pytest.mark.unit
def test_only_pending_and_canceled_are_initial() -> None:
    assert INITIAL_STATES == {MessageStatus.PENDING, MessageStatus.CANCELED_BY_USER}
    with pytest.raises(DomainInvariantError):
        ensure_initial_state(MessageStatus.PROCESSING)


@pytest.mark.unit
def test_expire_reason_depends_on_state_and_history() -> None:
    assert expire_reason_for(status=MessageStatus.PENDING, previous_reason=None) == ExpireReason.PENDING_TIMEOUT
    assert (
        expire_reason_for(status=MessageStatus.PENDING, previous_reason=REQUEUE_REASON)
        == ExpireReason.AFTER_PENDING
    )
    assert (
        expire_reason_for(status=MessageStatus.PROCESSING, previous_reason=REQUEUE_REASON)
        == ExpireReason.PROCESSING_TIMEOUT
    )


@pytest.mark.unit
def test_expire_reason_rejects_terminal_state() -> None:
    with pytest.raises(DomainInvariantError):
        expire_reason_for(status=MessageStatus.COMPLETED, previous_reason=None)

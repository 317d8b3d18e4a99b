from __future__ import annotations

import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import MessageRepository
from gateway.domain.errors import DomainValidationError, MessageNotFoundError, StaleClaimError
from gateway.domain.lifecycle import WORKER_OUTCOMES, ensure_transition
from gateway.domain.models import MessageSnapshot, MessageStatus, OutcomeFields

COMPONENT_ID = "domain.message.report_outcome"
logger = logging.getLogger("gateway.claim")


def parse_outcome(value: str) -> MessageStatus:
    try:
        outcome = MessageStatus(value)
    except ValueError as exc:
        raise DomainValidationError(f"unknown outcome: {value}") from exc
    if outcome not in WORKER_OUTCOMES:
        raise DomainValidationError(f"unknown outcome: {value}")
    return outcome


async def report_outcome(
    *,
    repository: MessageRepository,
    message_id: int,
    outcome: str,
    fields: OutcomeFields,
    lease_id: str | None = None,
    now: datetime | None = None,
) -> MessageSnapshot:
    """Record the worker's terminal result for a claimed message.

    The write only lands while the message is still ``processing`` (and, when
    ``lease_id`` is given, still held under that lease). A late report for a
    message that was requeued, expired or canceled meanwhile leaves the newer
    state untouched and raises ``StaleClaimError``.
    """
    if message_id <= 0:
        raise DomainValidationError("message_id must be a positive integer")
    target = parse_outcome(outcome)
    ensure_transition(MessageStatus.PROCESSING, target)

    updated = await repository.complete_claim(
        message_id=message_id,
        outcome=target,
        fields=fields,
        lease_id=lease_id,
        now=now or utc_now(),
    )
    if updated is not None:
        logger.info(
            "outcome recorded",
            extra={"message_id": message_id, "status": updated.status.value},
        )
        return updated

    current = await repository.get_message(message_id=message_id)
    if current is None:
        raise MessageNotFoundError(message_id)

    logger.warning(
        "late outcome ignored",
        extra={"message_id": message_id, "outcome": target.value, "current_status": current.status.value},
    )
    raise StaleClaimError(message_id=message_id, current_status=current.status.value)

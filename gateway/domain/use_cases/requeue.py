from __future__ import annotations

import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import MessageRepository
from gateway.domain.dto import RequeueSweepResult
from gateway.domain.lifecycle import ensure_transition
from gateway.domain.models import REQUEUE_REASON, MessageStatus
from gateway.settings import QueueSettings

COMPONENT_ID = "domain.sweep.requeue"
logger = logging.getLogger("gateway.requeue")


async def requeue_stuck_messages(
    *,
    repository: MessageRepository,
    settings: QueueSettings,
    now: datetime | None = None,
) -> RequeueSweepResult:
    """Return messages whose lease ran out to ``pending`` in one bulk write."""
    ensure_transition(MessageStatus.PROCESSING, MessageStatus.PENDING)
    now = now or utc_now()
    cutoff = now - settings.lease_timeout

    result = await repository.requeue_stuck(updated_before=cutoff, reason=REQUEUE_REASON, now=now)

    if result.modified > 0:
        logger.warning(
            "requeued stuck processing messages",
            extra={"count": result.modified, "matched": result.matched, "cutoff": cutoff.isoformat()},
        )
    else:
        logger.info("no stuck processing messages this cycle", extra={"cutoff": cutoff.isoformat()})

    return RequeueSweepResult(cutoff=cutoff, matched=result.matched, requeued=result.modified)

from __future__ import annotations

from collections import Counter
import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import MessageRepository
from gateway.domain.dto import ExpirySweepResult
from gateway.domain.lifecycle import expire_reason_for
from gateway.settings import QueueSettings

COMPONENT_ID = "domain.sweep.expiry"
EXPIRY_MAX_BATCHES = 100
EXPIRY_SAMPLE_SIZE = 10
logger = logging.getLogger("gateway.expiry")


async def expire_stale_messages(
    *,
    repository: MessageRepository,
    settings: QueueSettings,
    now: datetime | None = None,
) -> ExpirySweepResult:
    """Retire pending/processing messages whose ``message_date`` is past the expiry window.

    The reason depends on each message's own state, so candidates are read in
    batches and expired one by one with a write conditioned on the status and
    ``updated_at`` that were read. A message that changed in between is read
    again by the next batch, even when the current batch was short.
    """
    now = now or utc_now()
    cutoff = now - settings.expiry_after

    logger.info(
        "starting expiry check",
        extra={"expiry_minutes": settings.expiry_minutes, "cutoff": cutoff.isoformat()},
    )

    matched = await repository.count_expiry_candidates(message_date_before=cutoff)
    if matched > 0:
        sample = await repository.find_expiry_candidates(message_date_before=cutoff, limit=EXPIRY_SAMPLE_SIZE)
        logger.info(
            "found messages to expire",
            extra={
                "count": matched,
                "cutoff": cutoff.isoformat(),
                "sample": [
                    {
                        "message_id": item.message_id,
                        "message_date": item.message_date.isoformat(),
                        "status": item.status.value,
                        "previous_reason": item.reason,
                        "age_minutes": round((now - item.message_date).total_seconds() / 60),
                    }
                    for item in sample
                ],
            },
        )

    reasons: Counter[str] = Counter()
    expired = 0
    lost_races = 0
    for _ in range(EXPIRY_MAX_BATCHES):
        batch = await repository.find_expiry_candidates(
            message_date_before=cutoff,
            limit=settings.expiry_batch_size,
        )
        if not batch:
            break

        batch_expired = 0
        batch_lost = 0
        for item in batch:
            reason = expire_reason_for(status=item.status, previous_reason=item.reason)
            written = await repository.expire_message(
                id=item.id,
                expected_status=item.status,
                expected_updated_at=item.updated_at,
                reason=reason.value,
                now=now,
            )
            if not written:
                batch_lost += 1
                continue
            reasons[reason.value] += 1
            batch_expired += 1

        expired += batch_expired
        lost_races += batch_lost
        if batch_expired > 0:
            logger.info(
                "batch expired",
                extra={
                    "batch_expired": batch_expired,
                    "total_expired": expired,
                    "batch_size": settings.expiry_batch_size,
                },
            )
        # A lost write means the message changed under us; read it again.
        if len(batch) < settings.expiry_batch_size and batch_lost == 0:
            break

    if expired > 0:
        logger.info(
            "expiry completed",
            extra={"total_expired": expired, "cutoff": cutoff.isoformat(), "reasons": dict(reasons)},
        )
    else:
        logger.info("no messages to expire", extra={"cutoff": cutoff.isoformat()})

    return ExpirySweepResult(
        cutoff=cutoff,
        matched=matched,
        expired=expired,
        lost_races=lost_races,
        reasons=dict(reasons),
    )

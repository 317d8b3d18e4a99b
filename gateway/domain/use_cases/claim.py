from __future__ import annotations

import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import MessageRepository
from gateway.domain.dto import ClaimResult
from gateway.domain.errors import DomainValidationError
from gateway.domain.ids import new_lease_id
from gateway.domain.lifecycle import ensure_transition
from gateway.domain.models import MessageSnapshot, MessageStatus
from gateway.settings import QueueSettings

COMPONENT_ID = "domain.message.claim"
CLAIM_MAX_ROUNDS = 5
logger = logging.getLogger("gateway.claim")


async def claim_messages(
    *,
    repository: MessageRepository,
    settings: QueueSettings,
    max_count: int,
    now: datetime | None = None,
) -> ClaimResult:
    """Hand up to ``max_count`` pending messages to the caller, oldest first.

    Every candidate is claimed with its own conditional write (status still
    pending and ``updated_at`` unchanged since it was read), so concurrent
    callers can never both win the same message. Losing a write just moves
    on to the next candidate; fewer than ``max_count`` claims is normal.
    """
    if max_count < 1 or max_count > settings.claim_hard_cap:
        raise DomainValidationError(f"max_count must be between 1 and {settings.claim_hard_cap}")
    ensure_transition(MessageStatus.PENDING, MessageStatus.PROCESSING)

    now = now or utc_now()
    # Stale pending messages belong to the expiry sweep.
    not_before = now - settings.expiry_after if settings.expiry_enabled else None

    claimed: list[MessageSnapshot] = []
    attempted: set[int] = set()
    lost_races = 0

    for _ in range(CLAIM_MAX_ROUNDS):
        needed = max_count - len(claimed)
        if needed <= 0:
            break
        candidates = await repository.find_claim_candidates(
            not_before=not_before,
            limit=needed,
            exclude_ids=frozenset(attempted),
        )
        if not candidates:
            break

        for candidate in candidates:
            attempted.add(candidate.id)
            won = await repository.try_claim(
                id=candidate.id,
                expected_updated_at=candidate.updated_at,
                lease_id=new_lease_id(),
                now=now,
            )
            if won is None:
                lost_races += 1
                continue
            claimed.append(won)

        if len(candidates) < needed:
            break

    claimed.sort(key=lambda item: (item.message_date, item.id))
    logger.info(
        "claimed pending messages",
        extra={
            "requested": max_count,
            "claimed": len(claimed),
            "candidates_seen": len(attempted),
            "lost_races": lost_races,
            "not_before": not_before.isoformat() if not_before is not None else None,
            "message_ids": [item.message_id for item in claimed[:10]],
        },
    )
    return ClaimResult(messages=claimed, candidates_seen=len(attempted), lost_races=lost_races)

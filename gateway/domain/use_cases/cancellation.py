from __future__ import annotations

import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import AnalyticsRecorder, CancellationRepository, GatewayRepository
from gateway.domain.dto import CancelResult
from gateway.domain.errors import CancellationNotFoundError, CascadePartialError, DomainValidationError
from gateway.domain.lifecycle import IN_FLIGHT_STATES, ensure_transition
from gateway.domain.models import CancellationPage, CancellationSnapshot, MessageStatus, SenderIdentity
from gateway.domain.use_cases.queries import MAX_PAGE_SIZE

COMPONENT_ID = "domain.cancellation.cascade"
logger = logging.getLogger("gateway.cancellation")


def _require_identity(identity: SenderIdentity) -> None:
    if identity.is_empty():
        raise DomainValidationError("Either user_id or username is required")


async def cancel_user(
    *,
    repository: GatewayRepository,
    analytics: AnalyticsRecorder,
    identity: SenderIdentity,
    reason: str | None = None,
    by: str = "admin",
    now: datetime | None = None,
) -> CancelResult:
    """Mark a sender as canceled and unwind their in-flight work.

    Messages still pending or processing become ``canceled_by_user`` and the
    sender's listings are deactivated. The two bulk writes are independent;
    running the cascade again only matches what is still in flight.
    """
    _require_identity(identity)
    for status in IN_FLIGHT_STATES:
        ensure_transition(status, MessageStatus.CANCELED_BY_USER)
    now = now or utc_now()

    upserted = await repository.upsert_cancellation(identity=identity, reason=reason, now=now)
    if upserted.created:
        logger.info(
            "created canceled user entry",
            extra={"user_id": identity.user_id, "username": identity.username},
        )

    messages = await repository.cancel_sender_messages(identity=identity, now=now)
    try:
        listings = await repository.deactivate_sender_listings(identity=identity, now=now)
    except Exception as exc:
        logger.exception(
            "cancellation cascade partially applied",
            extra={
                "user_id": identity.user_id,
                "username": identity.username,
                "messages_matched": messages.matched,
                "messages_modified": messages.modified,
            },
        )
        raise CascadePartialError(
            messages_matched=messages.matched,
            messages_modified=messages.modified,
            cause=exc,
        ) from exc

    if upserted.created:
        try:
            await analytics.record_cancel(
                user_id=identity.user_id,
                username=identity.username,
                by=by,
                reason=reason or "Manual cancellation",
            )
        except Exception:
            logger.exception("analytics record failed", extra={"user_id": identity.user_id})

    logger.info(
        "applied cancellation cascade",
        extra={
            "user_id": identity.user_id,
            "username": identity.username,
            "messages_canceled": messages.modified,
            "listings_deactivated": listings.modified,
        },
    )
    return CancelResult(
        record=upserted.record,
        record_created=upserted.created,
        messages=messages,
        listings=listings,
    )


async def is_canceled(
    *,
    repository: CancellationRepository,
    identity: SenderIdentity,
) -> CancellationSnapshot | None:
    """Exact lookup: when both fields are given, one record must carry both."""
    _require_identity(identity)
    return await repository.find_cancellation(identity=identity, match_all=True)


async def list_canceled_users(
    *,
    repository: CancellationRepository,
    page: int = 1,
    limit: int = 100,
    username: str | None = None,
) -> CancellationPage:
    if page < 1:
        raise DomainValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise DomainValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    logger.info("fetching canceled users", extra={"page": page, "limit": limit, "username": username})
    return await repository.list_cancellations(username=username, limit=limit, offset=(page - 1) * limit)


async def remove_cancellation(*, repository: CancellationRepository, user_id: str) -> CancellationSnapshot:
    """Drop the cancellation record; messages already canceled stay canceled."""
    if not user_id:
        raise DomainValidationError("user_id is required")
    removed = await repository.delete_cancellation(user_id=user_id)
    if removed is None:
        raise CancellationNotFoundError(f"canceled user {user_id} is not found")
    logger.info("deleted canceled user", extra={"user_id": user_id, "username": removed.username})
    return removed

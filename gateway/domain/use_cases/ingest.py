from __future__ import annotations

import logging
from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import AnalyticsRecorder, GatewayRepository, MessageRepository
from gateway.domain.dto import IngestResult
from gateway.domain.errors import DomainValidationError, DuplicateMessageError
from gateway.domain.models import MessageSnapshot, MessageStatus, NewMessage, SenderIdentity
from gateway.settings import QueueSettings

COMPONENT_ID = "domain.message.ingest"
logger = logging.getLogger("gateway.ingest")


async def check_duplicate(
    *,
    repository: MessageRepository,
    settings: QueueSettings,
    message: NewMessage,
    now: datetime | None = None,
) -> MessageSnapshot | None:
    """Return an earlier copy of ``message`` posted inside the spam window, if any.

    This is a point check, not a uniqueness constraint: two identical
    submissions racing each other may both pass.
    """
    sender_id = message.sender.id
    group_id = message.group.group_id
    if not sender_id or not group_id or not message.content:
        return None
    if settings.spam_window_minutes <= 0:
        return None

    window_start = (now or utc_now()) - settings.spam_window
    return await repository.find_recent_duplicate(
        sender_id=sender_id,
        group_id=group_id,
        content=message.content,
        since=window_start,
    )


async def ingest_message(
    *,
    repository: GatewayRepository,
    analytics: AnalyticsRecorder,
    settings: QueueSettings,
    message: NewMessage,
    now: datetime | None = None,
) -> IngestResult:
    if message.message_id <= 0:
        raise DomainValidationError("message_id must be a positive integer")

    now = now or utc_now()
    logger.info(
        "creating message",
        extra={
            "message_id": message.message_id,
            "sender_id": message.sender.id,
            "group_id": message.group.group_id,
            "message_length": len(message.content or ""),
        },
    )

    existing = await check_duplicate(repository=repository, settings=settings, message=message, now=now)
    if existing is not None:
        logger.warning(
            "duplicate message detected",
            extra={
                "sender_id": message.sender.id,
                "group_id": message.group.group_id,
                "existing_message_id": existing.message_id,
                "existing_message_date": existing.message_date.isoformat(),
                "spam_window_minutes": settings.spam_window_minutes,
            },
        )
        raise DuplicateMessageError(
            existing_message_id=existing.message_id,
            existing_message_date=existing.message_date,
            window_minutes=settings.spam_window_minutes,
        )

    status = MessageStatus.PENDING
    identity = SenderIdentity(user_id=message.sender.id, username=message.sender.username)
    if not identity.is_empty():
        cancellation = await repository.find_cancellation(identity=identity)
        if cancellation is not None:
            logger.info(
                "message belongs to canceled user, overriding status",
                extra={"message_id": message.message_id, "sender_id": message.sender.id},
            )
            status = MessageStatus.CANCELED_BY_USER

    created = await repository.create_message(message=message, status=status, now=now)

    if message.sender.id:
        try:
            await analytics.record_user_message(
                user_id=message.sender.id,
                username=message.sender.username,
                message_date=created.message_date,
            )
        except Exception:
            # The message is already stored; analytics lag is tolerated.
            logger.exception("analytics record failed", extra={"message_id": created.message_id})

    logger.info(
        "message created",
        extra={
            "message_id": created.message_id,
            "status": created.status.value,
            "message_date": created.message_date.isoformat(),
        },
    )
    return IngestResult(message=created, canceled_sender=status == MessageStatus.CANCELED_BY_USER)

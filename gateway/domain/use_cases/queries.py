from __future__ import annotations

from datetime import UTC, datetime

from gateway.domain.contracts import MessageRepository
from gateway.domain.errors import DomainValidationError, MessageNotFoundError
from gateway.domain.models import MessageListQuery, MessagePage, MessageSnapshot, MessageStatus

COMPONENT_ID = "domain.message.query"
MAX_PAGE_SIZE = 1000


def build_list_query(
    *,
    page: int = 1,
    limit: int = 100,
    group_username: str | None = None,
    sender_username: str | None = None,
    is_valid: bool | None = None,
    is_lfg: bool | None = None,
    status: MessageStatus | None = None,
) -> MessageListQuery:
    if page < 1:
        raise DomainValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise DomainValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return MessageListQuery(
        group_username=group_username,
        sender_username=sender_username,
        is_valid=is_valid,
        is_lfg=is_lfg,
        status=status,
        limit=limit,
        offset=(page - 1) * limit,
    )


async def list_messages(*, repository: MessageRepository, query: MessageListQuery) -> MessagePage:
    return await repository.list_messages(query=query)


async def get_message(*, repository: MessageRepository, message_id: int) -> MessageSnapshot:
    if message_id <= 0:
        raise DomainValidationError("Invalid message ID")
    message = await repository.get_message(message_id=message_id)
    if message is None:
        raise MessageNotFoundError(message_id)
    return message


async def list_valid_since(*, repository: MessageRepository, since: datetime) -> list[MessageSnapshot]:
    """Messages classified valid with ``message_date`` at or after ``since``, newest first."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    return await repository.list_valid_since(since=since)

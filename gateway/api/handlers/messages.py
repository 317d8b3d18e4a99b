from __future__ import annotations

import math
from datetime import datetime

from gateway.api.handlers.deps import ApiDeps
from gateway.api.schemas import (
    CreateMessageRequest,
    GroupPayload,
    MessageListResponse,
    MessageResponse,
    Pagination,
    PendingMessagesResponse,
    ReportOutcomeRequest,
    SenderPayload,
    ValidSinceResponse,
)
from gateway.domain.models import Group, MessageSnapshot, MessageStatus, NewMessage, OutcomeFields, Sender
from gateway.domain.use_cases.claim import claim_messages
from gateway.domain.use_cases.ingest import ingest_message
from gateway.domain.use_cases.outcome import report_outcome
from gateway.domain.use_cases.queries import build_list_query, get_message, list_messages, list_valid_since

COMPONENT_ID = "api.messages"
DEFAULT_CLAIM_LIMIT = 50


def message_response(snapshot: MessageSnapshot) -> MessageResponse:
    return MessageResponse(
        message_id=snapshot.message_id,
        message_date=snapshot.message_date,
        sender=SenderPayload(id=snapshot.sender.id, username=snapshot.sender.username, name=snapshot.sender.name),
        group=GroupPayload(
            group_id=snapshot.group.group_id,
            group_title=snapshot.group.group_title,
            group_username=snapshot.group.group_username,
        ),
        message=snapshot.content,
        is_valid=snapshot.is_valid,
        is_lfg=snapshot.is_lfg,
        reason=snapshot.reason,
        status=snapshot.status,
        lease_id=snapshot.lease_id,
        claimed_at=snapshot.claimed_at,
        expired_at=snapshot.expired_at,
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
    )


async def create_message_handler(*, request: CreateMessageRequest, api_deps: ApiDeps) -> MessageResponse:
    result = await ingest_message(
        repository=api_deps.repository,
        analytics=api_deps.analytics,
        settings=api_deps.settings,
        message=NewMessage(
            message_id=request.message_id,
            message_date=request.message_date,
            sender=Sender(id=request.sender.id, username=request.sender.username, name=request.sender.name),
            group=Group(
                group_id=request.group.group_id,
                group_title=request.group.group_title,
                group_username=request.group.group_username,
            ),
            content=request.message,
            is_valid=request.is_valid,
            is_lfg=request.is_lfg,
            reason=request.reason,
        ),
    )
    return message_response(result.message)


async def list_messages_handler(
    *,
    page: int,
    limit: int,
    group_username: str | None,
    sender_username: str | None,
    is_valid: bool | None,
    is_lfg: bool | None,
    status: MessageStatus | None,
    api_deps: ApiDeps,
) -> MessageListResponse:
    query = build_list_query(
        page=page,
        limit=limit,
        group_username=group_username,
        sender_username=sender_username,
        is_valid=is_valid,
        is_lfg=is_lfg,
        status=status,
    )
    result = await list_messages(repository=api_deps.repository, query=query)
    return MessageListResponse(
        data=[message_response(item) for item in result.items],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=result.total,
            pages=math.ceil(result.total / limit),
        ),
    )


async def claim_pending_handler(*, limit: int | None, api_deps: ApiDeps) -> PendingMessagesResponse:
    # Oversized requests are clamped to the hard cap rather than rejected.
    requested = DEFAULT_CLAIM_LIMIT if limit is None else limit
    max_count = min(requested, api_deps.settings.claim_hard_cap)
    result = await claim_messages(
        repository=api_deps.repository,
        settings=api_deps.settings,
        max_count=max_count,
    )
    return PendingMessagesResponse(
        data=[message_response(item) for item in result.messages],
        count=len(result.messages),
    )


async def valid_since_handler(*, since: datetime, api_deps: ApiDeps) -> ValidSinceResponse:
    items = await list_valid_since(repository=api_deps.repository, since=since)
    return ValidSinceResponse(data=[message_response(item) for item in items])


async def get_message_handler(*, message_id: int, api_deps: ApiDeps) -> MessageResponse:
    snapshot = await get_message(repository=api_deps.repository, message_id=message_id)
    return message_response(snapshot)


async def report_outcome_handler(
    *,
    message_id: int,
    request: ReportOutcomeRequest,
    api_deps: ApiDeps,
) -> MessageResponse:
    updated = await report_outcome(
        repository=api_deps.repository,
        message_id=message_id,
        outcome=request.outcome,
        fields=OutcomeFields(is_valid=request.is_valid, is_lfg=request.is_lfg, reason=request.reason),
        lease_id=request.lease_id,
    )
    return message_response(updated)

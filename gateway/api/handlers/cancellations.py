from __future__ import annotations

import math

from gateway.api.handlers.deps import ApiDeps
from gateway.api.schemas import (
    CanceledUserListResponse,
    CanceledUserResponse,
    CancelUserRequest,
    CancelUserResponse,
    CascadeUpdates,
    IsCanceledResponse,
    Pagination,
)
from gateway.domain.models import CancellationSnapshot, SenderIdentity
from gateway.domain.use_cases.cancellation import (
    cancel_user,
    is_canceled,
    list_canceled_users,
    remove_cancellation,
)

COMPONENT_ID = "api.canceled_users"


def canceled_user_response(record: CancellationSnapshot) -> CanceledUserResponse:
    return CanceledUserResponse(
        cancellation_id=record.cancellation_id,
        user_id=record.user_id,
        username=record.username,
        reason=record.reason,
        created_at=record.created_at,
    )


async def cancel_user_handler(*, request: CancelUserRequest, api_deps: ApiDeps) -> CancelUserResponse:
    result = await cancel_user(
        repository=api_deps.repository,
        analytics=api_deps.analytics,
        identity=SenderIdentity(user_id=request.user_id, username=request.username),
        reason=request.reason,
    )
    record = canceled_user_response(result.record)
    return CancelUserResponse(
        **record.model_dump(),
        created=result.record_created,
        updates=CascadeUpdates(
            messages_matched=result.messages.matched,
            messages_canceled=result.messages.modified,
            listings_matched=result.listings.matched,
            listings_deactivated=result.listings.modified,
        ),
    )


async def is_canceled_handler(
    *,
    user_id: str | None,
    username: str | None,
    api_deps: ApiDeps,
) -> IsCanceledResponse:
    record = await is_canceled(
        repository=api_deps.repository,
        identity=SenderIdentity(user_id=user_id, username=username),
    )
    return IsCanceledResponse(
        is_canceled=record is not None,
        user=canceled_user_response(record) if record is not None else None,
    )


async def remove_cancellation_handler(*, user_id: str, api_deps: ApiDeps) -> CanceledUserResponse:
    removed = await remove_cancellation(repository=api_deps.repository, user_id=user_id)
    return canceled_user_response(removed)


async def list_canceled_users_handler(
    *,
    page: int,
    limit: int,
    username: str | None,
    api_deps: ApiDeps,
) -> CanceledUserListResponse:
    result = await list_canceled_users(repository=api_deps.repository, page=page, limit=limit, username=username)
    return CanceledUserListResponse(
        data=[canceled_user_response(record) for record in result.items],
        pagination=Pagination(page=page, limit=limit, total=result.total, pages=math.ceil(result.total / limit)),
    )

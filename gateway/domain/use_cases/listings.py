from __future__ import annotations

from datetime import datetime

from gateway.domain.clock import utc_now
from gateway.domain.contracts import ListingRepository
from gateway.domain.errors import DomainValidationError
from gateway.domain.models import ListingSnapshot

COMPONENT_ID = "domain.listing"


async def create_listing(
    *,
    repository: ListingRepository,
    sender_id: str | None,
    sender_username: str | None,
    message_id: int | None = None,
    now: datetime | None = None,
) -> ListingSnapshot:
    if not sender_id and not sender_username:
        raise DomainValidationError("listing requires sender id or username")
    return await repository.create_listing(
        sender_id=sender_id,
        sender_username=sender_username,
        message_id=message_id,
        now=now or utc_now(),
    )


async def list_listings(*, repository: ListingRepository, active: bool | None = None) -> list[ListingSnapshot]:
    return await repository.list_listings(active=active)

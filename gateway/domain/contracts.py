from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from gateway.domain.models import (
    BulkUpdateResult,
    CancellationPage,
    CancellationSnapshot,
    ListingSnapshot,
    MessageListQuery,
    MessagePage,
    MessageSnapshot,
    MessageStatus,
    NewMessage,
    OutcomeFields,
    SenderIdentity,
    UpsertCancellationResult,
)


CLAIM_WRITE_CONTRACT = "UPDATE ... WHERE id = :id AND status = 'pending' AND updated_at = :observed"


@runtime_checkable
class MessageRepository(Protocol):
    """Message collection contract.

    Every state change is a conditional write: single-document writes return
    ``None``/``False`` when the filter no longer matches (the caller lost the
    race), bulk writes report matched vs modified counts. Implementations must
    never read a document, mutate it in memory and write it back blindly.
    """

    async def create_message(
        self,
        *,
        message: NewMessage,
        status: MessageStatus,
        now: datetime,
    ) -> MessageSnapshot: ...

    async def get_message(self, *, message_id: int) -> MessageSnapshot | None: ...

    async def list_messages(self, *, query: MessageListQuery) -> MessagePage: ...

    async def list_valid_since(self, *, since: datetime) -> list[MessageSnapshot]: ...

    async def find_recent_duplicate(
        self,
        *,
        sender_id: str,
        group_id: str,
        content: str,
        since: datetime,
    ) -> MessageSnapshot | None: ...

    # Pending messages ordered by message_date ascending. not_before=None
    # disables the age filter.
    async def find_claim_candidates(
        self,
        *,
        not_before: datetime | None,
        limit: int,
        exclude_ids: frozenset[int] = frozenset(),
    ) -> list[MessageSnapshot]: ...

    async def try_claim(
        self,
        *,
        id: int,
        expected_updated_at: datetime,
        lease_id: str,
        now: datetime,
    ) -> MessageSnapshot | None: ...

    async def complete_claim(
        self,
        *,
        message_id: int,
        outcome: MessageStatus,
        fields: OutcomeFields,
        lease_id: str | None,
        now: datetime,
    ) -> MessageSnapshot | None: ...

    async def requeue_stuck(
        self,
        *,
        updated_before: datetime,
        reason: str,
        now: datetime,
    ) -> BulkUpdateResult: ...

    async def count_expiry_candidates(self, *, message_date_before: datetime) -> int: ...

    async def find_expiry_candidates(
        self,
        *,
        message_date_before: datetime,
        limit: int,
    ) -> list[MessageSnapshot]: ...

    async def expire_message(
        self,
        *,
        id: int,
        expected_status: MessageStatus,
        expected_updated_at: datetime,
        reason: str,
        now: datetime,
    ) -> bool: ...

    async def cancel_sender_messages(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult: ...


@runtime_checkable
class CancellationRepository(Protocol):
    """Canceled-sender records.

    ``find_cancellation`` matches a record on either identity field by default;
    with ``match_all`` every field the identity carries must match.
    """

    async def find_cancellation(
        self,
        *,
        identity: SenderIdentity,
        match_all: bool = False,
    ) -> CancellationSnapshot | None: ...

    async def list_cancellations(
        self,
        *,
        username: str | None,
        limit: int,
        offset: int,
    ) -> CancellationPage: ...

    async def upsert_cancellation(
        self,
        *,
        identity: SenderIdentity,
        reason: str | None,
        now: datetime,
    ) -> UpsertCancellationResult: ...

    async def delete_cancellation(self, *, user_id: str) -> CancellationSnapshot | None: ...


@runtime_checkable
class ListingRepository(Protocol):
    async def create_listing(
        self,
        *,
        sender_id: str | None,
        sender_username: str | None,
        message_id: int | None,
        now: datetime,
    ) -> ListingSnapshot: ...

    async def list_listings(self, *, active: bool | None = None) -> list[ListingSnapshot]: ...

    async def deactivate_sender_listings(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult: ...


@runtime_checkable
class GatewayRepository(MessageRepository, CancellationRepository, ListingRepository, Protocol):
    pass


@runtime_checkable
class AnalyticsRecorder(Protocol):
    """Counters/daily buckets live outside this service; we only emit events."""

    async def record_user_message(
        self,
        *,
        user_id: str,
        username: str | None,
        message_date: datetime,
    ) -> None: ...

    async def record_cancel(
        self,
        *,
        user_id: str | None,
        username: str | None,
        by: str,
        reason: str | None,
    ) -> None: ...

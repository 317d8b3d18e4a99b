from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from gateway.domain.errors import DomainInvariantError
from gateway.domain.ids import new_cancellation_public_id, new_listing_public_id
from gateway.domain.lifecycle import IN_FLIGHT_STATES, ensure_initial_state
from gateway.domain.models import (
    BulkUpdateResult,
    CancellationPage,
    CancellationSnapshot,
    Group,
    ListingSnapshot,
    MessageListQuery,
    MessagePage,
    MessageSnapshot,
    MessageStatus,
    NewMessage,
    OutcomeFields,
    Sender,
    SenderIdentity,
    UpsertCancellationResult,
)


@dataclass
class _MessageRow:
    id: int
    message_id: int
    message_date: datetime
    sender: Sender
    group: Group
    content: str | None
    is_valid: bool | None
    is_lfg: bool
    reason: str | None
    status: MessageStatus
    created_at: datetime
    updated_at: datetime
    lease_id: str | None = None
    claimed_at: datetime | None = None
    expired_at: datetime | None = None


@dataclass
class InMemoryGatewayRepository:
    """Non-network repository with deterministic behavior for local runs and tests.

    Conditional writes never await between the filter check and the write, so
    each one is atomic with respect to other coroutines on the event loop.
    """

    messages: dict[int, _MessageRow] = field(default_factory=dict)
    cancellations: dict[str, CancellationSnapshot] = field(default_factory=dict)
    listings: dict[str, ListingSnapshot] = field(default_factory=dict)
    transitions: list[tuple[int, str, str]] = field(default_factory=list)
    next_id: int = 1

    async def create_message(
        self,
        *,
        message: NewMessage,
        status: MessageStatus,
        now: datetime,
    ) -> MessageSnapshot:
        ensure_initial_state(status)
        if any(row.message_id == message.message_id for row in self.messages.values()):
            raise DomainInvariantError(f"message_id {message.message_id} already exists")

        row = _MessageRow(
            id=self.next_id,
            message_id=message.message_id,
            message_date=message.message_date,
            sender=message.sender,
            group=message.group,
            content=message.content,
            is_valid=message.is_valid,
            is_lfg=message.is_lfg,
            reason=message.reason,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.messages[row.id] = row
        self.next_id += 1
        return _snapshot(row)

    async def get_message(self, *, message_id: int) -> MessageSnapshot | None:
        row = self._by_message_id(message_id)
        return _snapshot(row) if row is not None else None

    async def list_messages(self, *, query: MessageListQuery) -> MessagePage:
        rows = [
            row
            for row in self.messages.values()
            if (query.group_username is None or row.group.group_username == query.group_username)
            and (query.sender_username is None or row.sender.username == query.sender_username)
            and (query.is_valid is None or row.is_valid is query.is_valid)
            and (query.is_lfg is None or row.is_lfg is query.is_lfg)
            and (query.status is None or row.status == query.status)
        ]
        rows.sort(key=lambda row: (row.message_date, row.id), reverse=True)
        page = rows[query.offset : query.offset + query.limit]
        return MessagePage(items=[_snapshot(row) for row in page], total=len(rows))

    async def list_valid_since(self, *, since: datetime) -> list[MessageSnapshot]:
        rows = [row for row in self.messages.values() if row.is_valid is True and row.message_date >= since]
        rows.sort(key=lambda row: (row.message_date, row.id), reverse=True)
        return [_snapshot(row) for row in rows]

    async def find_recent_duplicate(
        self,
        *,
        sender_id: str,
        group_id: str,
        content: str,
        since: datetime,
    ) -> MessageSnapshot | None:
        for row in self.messages.values():
            if (
                row.sender.id == sender_id
                and row.group.group_id == group_id
                and row.content == content
                and row.message_date >= since
            ):
                return _snapshot(row)
        return None

    async def find_claim_candidates(
        self,
        *,
        not_before: datetime | None,
        limit: int,
        exclude_ids: frozenset[int] = frozenset(),
    ) -> list[MessageSnapshot]:
        rows = [
            row
            for row in self.messages.values()
            if row.status == MessageStatus.PENDING
            and row.id not in exclude_ids
            and (not_before is None or row.message_date >= not_before)
        ]
        rows.sort(key=lambda row: (row.message_date, row.id))
        return [_snapshot(row) for row in rows[:limit]]

    async def try_claim(
        self,
        *,
        id: int,
        expected_updated_at: datetime,
        lease_id: str,
        now: datetime,
    ) -> MessageSnapshot | None:
        row = self.messages.get(id)
        if row is None or row.status != MessageStatus.PENDING or row.updated_at != expected_updated_at:
            return None
        self._move(row, MessageStatus.PROCESSING)
        row.lease_id = lease_id
        row.claimed_at = now
        row.updated_at = now
        return _snapshot(row)

    async def complete_claim(
        self,
        *,
        message_id: int,
        outcome: MessageStatus,
        fields: OutcomeFields,
        lease_id: str | None,
        now: datetime,
    ) -> MessageSnapshot | None:
        row = self._by_message_id(message_id)
        if row is None or row.status != MessageStatus.PROCESSING:
            return None
        if lease_id is not None and row.lease_id != lease_id:
            return None
        self._move(row, outcome)
        if fields.is_valid is not None:
            row.is_valid = fields.is_valid
        if fields.is_lfg is not None:
            row.is_lfg = fields.is_lfg
        if fields.reason is not None:
            row.reason = fields.reason
        row.lease_id = None
        row.updated_at = now
        return _snapshot(row)

    async def requeue_stuck(
        self,
        *,
        updated_before: datetime,
        reason: str,
        now: datetime,
    ) -> BulkUpdateResult:
        matched = 0
        for row in self.messages.values():
            if row.status == MessageStatus.PROCESSING and row.updated_at < updated_before:
                self._move(row, MessageStatus.PENDING)
                row.reason = reason
                row.lease_id = None
                row.claimed_at = None
                row.updated_at = now
                matched += 1
        return BulkUpdateResult(matched=matched, modified=matched)

    async def count_expiry_candidates(self, *, message_date_before: datetime) -> int:
        return len(self._expiry_rows(message_date_before))

    async def find_expiry_candidates(
        self,
        *,
        message_date_before: datetime,
        limit: int,
    ) -> list[MessageSnapshot]:
        rows = self._expiry_rows(message_date_before)
        rows.sort(key=lambda row: (row.message_date, row.id))
        return [_snapshot(row) for row in rows[:limit]]

    async def expire_message(
        self,
        *,
        id: int,
        expected_status: MessageStatus,
        expected_updated_at: datetime,
        reason: str,
        now: datetime,
    ) -> bool:
        row = self.messages.get(id)
        if row is None or row.status != expected_status or row.updated_at != expected_updated_at:
            return False
        self._move(row, MessageStatus.EXPIRED)
        row.reason = reason
        row.lease_id = None
        row.expired_at = now
        row.updated_at = now
        return True

    async def cancel_sender_messages(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult:
        matched = 0
        for row in self.messages.values():
            if row.status in IN_FLIGHT_STATES and _sender_matches(row.sender.id, row.sender.username, identity):
                self._move(row, MessageStatus.CANCELED_BY_USER)
                row.lease_id = None
                row.updated_at = now
                matched += 1
        return BulkUpdateResult(matched=matched, modified=matched)

    async def find_cancellation(
        self,
        *,
        identity: SenderIdentity,
        match_all: bool = False,
    ) -> CancellationSnapshot | None:
        matches = _identity_matches if match_all else _sender_matches
        for record in sorted(self.cancellations.values(), key=lambda item: item.created_at):
            if matches(record.user_id, record.username, identity):
                return record
        return None

    async def list_cancellations(
        self,
        *,
        username: str | None,
        limit: int,
        offset: int,
    ) -> CancellationPage:
        records = [
            record for record in self.cancellations.values() if username is None or record.username == username
        ]
        records.sort(key=lambda item: (item.created_at, item.cancellation_id), reverse=True)
        return CancellationPage(items=records[offset : offset + limit], total=len(records))

    async def upsert_cancellation(
        self,
        *,
        identity: SenderIdentity,
        reason: str | None,
        now: datetime,
    ) -> UpsertCancellationResult:
        existing = next(
            (
                record
                for record in self.cancellations.values()
                if (identity.user_id and record.user_id == identity.user_id)
                or (not identity.user_id and record.username == identity.username)
            ),
            None,
        )
        if existing is not None:
            if existing.username is None and identity.username:
                existing = replace(existing, username=identity.username)
                self.cancellations[existing.cancellation_id] = existing
            return UpsertCancellationResult(record=existing, created=False)

        record = CancellationSnapshot(
            cancellation_id=new_cancellation_public_id(),
            user_id=identity.user_id,
            username=identity.username,
            reason=reason,
            created_at=now,
        )
        self.cancellations[record.cancellation_id] = record
        return UpsertCancellationResult(record=record, created=True)

    async def delete_cancellation(self, *, user_id: str) -> CancellationSnapshot | None:
        for cancellation_id, record in list(self.cancellations.items()):
            if record.user_id == user_id:
                del self.cancellations[cancellation_id]
                return record
        return None

    async def create_listing(
        self,
        *,
        sender_id: str | None,
        sender_username: str | None,
        message_id: int | None,
        now: datetime,
    ) -> ListingSnapshot:
        listing = ListingSnapshot(
            listing_id=new_listing_public_id(),
            sender_id=sender_id,
            sender_username=sender_username,
            message_id=message_id,
            active=True,
            created_at=now,
            updated_at=now,
        )
        self.listings[listing.listing_id] = listing
        return listing

    async def list_listings(self, *, active: bool | None = None) -> list[ListingSnapshot]:
        items = [item for item in self.listings.values() if active is None or item.active is active]
        items.sort(key=lambda item: (item.created_at, item.listing_id), reverse=True)
        return items

    async def deactivate_sender_listings(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult:
        matched = 0
        modified = 0
        for listing_id, listing in list(self.listings.items()):
            if not _sender_matches(listing.sender_id, listing.sender_username, identity):
                continue
            matched += 1
            if listing.active:
                self.listings[listing_id] = replace(listing, active=False, updated_at=now)
                modified += 1
        return BulkUpdateResult(matched=matched, modified=modified)

    def _by_message_id(self, message_id: int) -> _MessageRow | None:
        return next((row for row in self.messages.values() if row.message_id == message_id), None)

    def _expiry_rows(self, message_date_before: datetime) -> list[_MessageRow]:
        return [
            row
            for row in self.messages.values()
            if row.status in IN_FLIGHT_STATES and row.message_date < message_date_before
        ]

    def _move(self, row: _MessageRow, to_state: MessageStatus) -> None:
        self.transitions.append((row.message_id, row.status.value, to_state.value))
        row.status = to_state


def _sender_matches(user_id: str | None, username: str | None, identity: SenderIdentity) -> bool:
    if identity.user_id and user_id == identity.user_id:
        return True
    return bool(identity.username) and username == identity.username


def _identity_matches(user_id: str | None, username: str | None, identity: SenderIdentity) -> bool:
    if identity.is_empty():
        return False
    if identity.user_id and user_id != identity.user_id:
        return False
    return not identity.username or username == identity.username


def _snapshot(row: _MessageRow) -> MessageSnapshot:
    return MessageSnapshot(
        id=row.id,
        message_id=row.message_id,
        message_date=row.message_date,
        sender=row.sender,
        group=row.group,
        content=row.content,
        is_valid=row.is_valid,
        is_lfg=row.is_lfg,
        reason=row.reason,
        status=row.status,
        lease_id=row.lease_id,
        claimed_at=row.claimed_at,
        expired_at=row.expired_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

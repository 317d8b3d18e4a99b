from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import importlib
from typing import Any

from gateway.domain.errors import DomainDependencyError, DomainInvariantError
from gateway.domain.ids import new_cancellation_public_id, new_listing_public_id
from gateway.domain.lifecycle import ensure_initial_state
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
from gateway.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_CREATE_MESSAGE = load_sql("create_message.sql")
SQL_GET_MESSAGE = load_sql("get_message.sql")
SQL_LIST_MESSAGES = load_sql("list_messages.sql")
SQL_COUNT_MESSAGES = load_sql("count_messages.sql")
SQL_LIST_VALID_SINCE = load_sql("list_valid_since.sql")
SQL_FIND_RECENT_DUPLICATE = load_sql("find_recent_duplicate.sql")
SQL_FIND_CLAIM_CANDIDATES = load_sql("find_claim_candidates.sql")
SQL_TRY_CLAIM = load_sql("try_claim.sql")
SQL_COMPLETE_CLAIM = load_sql("complete_claim.sql")
SQL_REQUEUE_STUCK = load_sql("requeue_stuck.sql")
SQL_COUNT_EXPIRY_CANDIDATES = load_sql("count_expiry_candidates.sql")
SQL_FIND_EXPIRY_CANDIDATES = load_sql("find_expiry_candidates.sql")
SQL_EXPIRE_MESSAGE = load_sql("expire_message.sql")
SQL_CANCEL_SENDER_MESSAGES = load_sql("cancel_sender_messages.sql")
SQL_FIND_CANCELLATION = load_sql("find_cancellation.sql")
SQL_FIND_CANCELLATION_EXACT = load_sql("find_cancellation_exact.sql")
SQL_LIST_CANCELLATIONS = load_sql("list_cancellations.sql")
SQL_COUNT_CANCELLATIONS = load_sql("count_cancellations.sql")
SQL_FIND_CANCELLATION_FOR_UPSERT = load_sql("find_cancellation_for_upsert.sql")
SQL_CREATE_CANCELLATION = load_sql("create_cancellation.sql")
SQL_FILL_CANCELLATION_USERNAME = load_sql("fill_cancellation_username.sql")
SQL_DELETE_CANCELLATION = load_sql("delete_cancellation.sql")
SQL_CREATE_LISTING = load_sql("create_listing.sql")
SQL_LIST_LISTINGS = load_sql("list_listings.sql")
SQL_COUNT_SENDER_LISTINGS = load_sql("count_sender_listings.sql")
SQL_DEACTIVATE_SENDER_LISTINGS = load_sql("deactivate_sender_listings.sql")


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3".
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None
    min_size: int = 1
    max_size: int = 10

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresGatewayRepository:
    """Message, cancellation and listing storage on Postgres.

    Each conditional write is a single ``UPDATE ... WHERE`` statement, so row
    level atomicity in Postgres is all the claim/sweep logic relies on.
    """

    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise DomainDependencyError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create_message(
        self,
        *,
        message: NewMessage,
        status: MessageStatus,
        now: datetime,
    ) -> MessageSnapshot:
        ensure_initial_state(status)
        pool = self._pool()
        async with pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    SQL_CREATE_MESSAGE,
                    message.message_id,
                    message.message_date,
                    message.sender.id,
                    message.sender.username,
                    message.sender.name,
                    message.group.group_id,
                    message.group.group_title,
                    message.group.group_username,
                    message.content,
                    message.is_valid,
                    message.is_lfg,
                    message.reason,
                    status.value,
                    now,
                )
            except Exception as exc:
                if _is_unique_violation(exc):
                    raise DomainInvariantError(f"message_id {message.message_id} already exists") from exc
                raise
        if row is None:
            raise DomainInvariantError("failed to create message")
        return _message_from_row(row)

    async def get_message(self, *, message_id: int) -> MessageSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_MESSAGE, message_id)
        return _message_from_row(row) if row is not None else None

    async def list_messages(self, *, query: MessageListQuery) -> MessagePage:
        filters = (
            query.group_username,
            query.sender_username,
            query.is_valid,
            query.is_lfg,
            query.status.value if query.status is not None else None,
        )
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_MESSAGES, *filters, query.limit, query.offset)
            total = await conn.fetchval(SQL_COUNT_MESSAGES, *filters)
        return MessagePage(items=[_message_from_row(row) for row in rows], total=int(total or 0))

    async def list_valid_since(self, *, since: datetime) -> list[MessageSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_VALID_SINCE, since)
        return [_message_from_row(row) for row in rows]

    async def find_recent_duplicate(
        self,
        *,
        sender_id: str,
        group_id: str,
        content: str,
        since: datetime,
    ) -> MessageSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_RECENT_DUPLICATE, sender_id, group_id, content, since)
        return _message_from_row(row) if row is not None else None

    async def find_claim_candidates(
        self,
        *,
        not_before: datetime | None,
        limit: int,
        exclude_ids: frozenset[int] = frozenset(),
    ) -> list[MessageSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_FIND_CLAIM_CANDIDATES, not_before, limit, sorted(exclude_ids))
        return [_message_from_row(row) for row in rows]

    async def try_claim(
        self,
        *,
        id: int,
        expected_updated_at: datetime,
        lease_id: str,
        now: datetime,
    ) -> MessageSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_TRY_CLAIM, id, expected_updated_at, lease_id, now)
        return _message_from_row(row) if row is not None else None

    async def complete_claim(
        self,
        *,
        message_id: int,
        outcome: MessageStatus,
        fields: OutcomeFields,
        lease_id: str | None,
        now: datetime,
    ) -> MessageSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_COMPLETE_CLAIM,
                message_id,
                outcome.value,
                fields.is_valid,
                fields.is_lfg,
                fields.reason,
                lease_id,
                now,
            )
        return _message_from_row(row) if row is not None else None

    async def requeue_stuck(
        self,
        *,
        updated_before: datetime,
        reason: str,
        now: datetime,
    ) -> BulkUpdateResult:
        pool = self._pool()
        async with pool.acquire() as conn:
            status = await conn.execute(SQL_REQUEUE_STUCK, updated_before, reason, now)
        count = _affected_rows(status)
        return BulkUpdateResult(matched=count, modified=count)

    async def count_expiry_candidates(self, *, message_date_before: datetime) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            total = await conn.fetchval(SQL_COUNT_EXPIRY_CANDIDATES, message_date_before)
        return int(total or 0)

    async def find_expiry_candidates(
        self,
        *,
        message_date_before: datetime,
        limit: int,
    ) -> list[MessageSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_FIND_EXPIRY_CANDIDATES, message_date_before, limit)
        return [_message_from_row(row) for row in rows]

    async def expire_message(
        self,
        *,
        id: int,
        expected_status: MessageStatus,
        expected_updated_at: datetime,
        reason: str,
        now: datetime,
    ) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            status = await conn.execute(SQL_EXPIRE_MESSAGE, id, expected_status.value, expected_updated_at, reason, now)
        return _affected_rows(status) == 1

    async def cancel_sender_messages(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult:
        pool = self._pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                SQL_CANCEL_SENDER_MESSAGES,
                identity.user_id or None,
                identity.username or None,
                now,
            )
        count = _affected_rows(status)
        return BulkUpdateResult(matched=count, modified=count)

    async def find_cancellation(
        self,
        *,
        identity: SenderIdentity,
        match_all: bool = False,
    ) -> CancellationSnapshot | None:
        statement = SQL_FIND_CANCELLATION_EXACT if match_all else SQL_FIND_CANCELLATION
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(statement, identity.user_id or None, identity.username or None)
        return _cancellation_from_row(row) if row is not None else None

    async def list_cancellations(
        self,
        *,
        username: str | None,
        limit: int,
        offset: int,
    ) -> CancellationPage:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_CANCELLATIONS, username, limit, offset)
            total = await conn.fetchval(SQL_COUNT_CANCELLATIONS, username)
        return CancellationPage(items=[_cancellation_from_row(row) for row in rows], total=int(total or 0))

    async def upsert_cancellation(
        self,
        *,
        identity: SenderIdentity,
        reason: str | None,
        now: datetime,
    ) -> UpsertCancellationResult:
        user_id = identity.user_id or None
        username = identity.username or None
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                existing = await conn.fetchrow(SQL_FIND_CANCELLATION_FOR_UPSERT, user_id, username)
                if existing is None:
                    created = await conn.fetchrow(
                        SQL_CREATE_CANCELLATION,
                        new_cancellation_public_id(),
                        user_id,
                        username,
                        reason,
                        now,
                    )
                    if created is not None:
                        return UpsertCancellationResult(record=_cancellation_from_row(created), created=True)
                    # Lost an insert race on user_id; the winner's row is the record.
                    existing = await conn.fetchrow(SQL_FIND_CANCELLATION_FOR_UPSERT, user_id, username)
                    if existing is None:
                        raise DomainInvariantError("cancellation create conflict without row")

                if existing["username"] is None and username is not None:
                    filled = await conn.fetchrow(SQL_FILL_CANCELLATION_USERNAME, existing["public_id"], username)
                    if filled is not None:
                        existing = filled
        return UpsertCancellationResult(record=_cancellation_from_row(existing), created=False)

    async def delete_cancellation(self, *, user_id: str) -> CancellationSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_DELETE_CANCELLATION, user_id)
        return _cancellation_from_row(row) if row is not None else None

    async def create_listing(
        self,
        *,
        sender_id: str | None,
        sender_username: str | None,
        message_id: int | None,
        now: datetime,
    ) -> ListingSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_CREATE_LISTING,
                new_listing_public_id(),
                sender_id,
                sender_username,
                message_id,
                now,
            )
        if row is None:
            raise DomainInvariantError("failed to create listing")
        return _listing_from_row(row)

    async def list_listings(self, *, active: bool | None = None) -> list[ListingSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_LISTINGS, active)
        return [_listing_from_row(row) for row in rows]

    async def deactivate_sender_listings(self, *, identity: SenderIdentity, now: datetime) -> BulkUpdateResult:
        user_id = identity.user_id or None
        username = identity.username or None
        pool = self._pool()
        async with pool.acquire() as conn:
            matched = await conn.fetchval(SQL_COUNT_SENDER_LISTINGS, user_id, username)
            status = await conn.execute(SQL_DEACTIVATE_SENDER_LISTINGS, user_id, username, now)
        return BulkUpdateResult(matched=int(matched or 0), modified=_affected_rows(status))


def _message_from_row(row: Any) -> MessageSnapshot:
    return MessageSnapshot(
        id=int(row["id"]),
        message_id=int(row["message_id"]),
        message_date=row["message_date"],
        sender=Sender(
            id=row["sender_id"],
            username=row["sender_username"],
            name=row["sender_name"],
        ),
        group=Group(
            group_id=row["group_id"],
            group_title=row["group_title"],
            group_username=row["group_username"],
        ),
        content=row["content"],
        is_valid=row["is_valid"],
        is_lfg=bool(row["is_lfg"]),
        reason=row["reason"],
        status=MessageStatus(row["status"]),
        lease_id=row["lease_id"],
        claimed_at=row["claimed_at"],
        expired_at=row["expired_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _cancellation_from_row(row: Any) -> CancellationSnapshot:
    return CancellationSnapshot(
        cancellation_id=row["public_id"],
        user_id=row["user_id"],
        username=row["username"],
        reason=row["reason"],
        created_at=row["created_at"],
    )


def _listing_from_row(row: Any) -> ListingSnapshot:
    return ListingSnapshot(
        listing_id=row["public_id"],
        sender_id=row["sender_id"],
        sender_username=row["sender_username"],
        message_id=int(row["message_id"]) if row["message_id"] is not None else None,
        active=bool(row["active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )

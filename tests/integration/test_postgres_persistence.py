from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from gateway.clients.stub import StubAnalyticsRecorder
from gateway.domain.errors import DomainDependencyError, DomainInvariantError, StaleClaimError
from gateway.domain.models import (
    REQUEUE_REASON,
    BulkUpdateResult,
    MessageListQuery,
    MessageSnapshot,
    MessageStatus,
    NewMessage,
    OutcomeFields,
    Sender,
    SenderIdentity,
)
from gateway.domain.use_cases.cancellation import cancel_user
from gateway.domain.use_cases.claim import claim_messages
from gateway.domain.use_cases.expiry import expire_stale_messages
from gateway.domain.use_cases.outcome import report_outcome
from gateway.domain.use_cases.requeue import requeue_stuck_messages
from gateway.repositories.postgres import AsyncpgPoolManager, PostgresGatewayRepository
from gateway.settings import QueueSettings
from tests.integration.postgres_test_utils import fresh_repository, require_postgres, run_migration

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


async def _seed(repo: PostgresGatewayRepository, *, message_id: int, message_date: datetime, user_id: str = "u-1") -> None:
    await repo.create_message(
        message=NewMessage(
            message_id=message_id,
            message_date=message_date,
            sender=Sender(id=user_id, username=f"player-{user_id}"),
            content=f"lf2m #{message_id}",
        ),
        status=MessageStatus.PENDING,
        now=message_date,
    )


@pytest.mark.integration
def test_migration_up_down_up_contract() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn=dsn) as repo:
            assert await repo.get_message(message_id=1) is None
        await run_migration(dsn=dsn, direction="down")
        await run_migration(dsn=dsn, direction="up")

    asyncio.run(_run())


@pytest.mark.unit
def test_repository_without_pool_is_a_dependency_error() -> None:
    repo = PostgresGatewayRepository(pool_manager=AsyncpgPoolManager(dsn="postgres://unused"))

    with pytest.raises(DomainDependencyError):
        asyncio.run(repo.get_message(message_id=1))


@pytest.mark.integration
def test_concurrent_claims_never_overlap() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn=dsn) as repo:
            for message_id in range(1, 7):
                await _seed(repo, message_id=message_id, message_date=T0 + timedelta(seconds=message_id))

            now = T0 + timedelta(minutes=1)
            results = await asyncio.gather(
                *(claim_messages(repository=repo, settings=QueueSettings(), max_count=3, now=now) for _ in range(4))
            )
            leftover = await claim_messages(repository=repo, settings=QueueSettings(), max_count=6, now=now)
            claimed = [item.message_id for result in (*results, leftover) for item in result.messages]
            assert len(claimed) == len(set(claimed))
            assert sorted(claimed) == [1, 2, 3, 4, 5, 6]

    asyncio.run(_run())


@pytest.mark.integration
def test_requeue_expiry_and_late_outcome() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn=dsn) as repo:
            settings = QueueSettings()
            await _seed(repo, message_id=1, message_date=T0)
            await _seed(repo, message_id=2, message_date=T0 + timedelta(seconds=1), user_id="u-2")
            await claim_messages(repository=repo, settings=settings, max_count=2, now=T0 + timedelta(minutes=1))

            requeued = await requeue_stuck_messages(repository=repo, settings=settings, now=T0 + timedelta(minutes=7))
            assert requeued.requeued == 2
            first = await repo.get_message(message_id=1)
            assert first is not None
            assert first.reason == REQUEUE_REASON
            assert first.lease_id is None

            with pytest.raises(StaleClaimError):
                await report_outcome(repository=repo, message_id=1, outcome="completed", fields=OutcomeFields())

            swept = await expire_stale_messages(repository=repo, settings=settings, now=T0 + timedelta(minutes=30))
            assert swept.expired == 2
            assert swept.reasons == {"expired_after_pending": 2}

            page = await repo.list_messages(query=MessageListQuery(status=MessageStatus.EXPIRED))
            assert page.total == 2

    asyncio.run(_run())


@pytest.mark.integration
def test_expiry_rereads_message_requeued_mid_sweep() -> None:
    dsn = require_postgres()

    class _RequeueDuringSweepRepository(PostgresGatewayRepository):
        requeued_once = False

        async def find_expiry_candidates(self, *, message_date_before: datetime, limit: int) -> list[MessageSnapshot]:
            batch = await super().find_expiry_candidates(message_date_before=message_date_before, limit=limit)
            if limit == QueueSettings().expiry_batch_size and not self.requeued_once:
                self.requeued_once = True
                await requeue_stuck_messages(repository=self, settings=QueueSettings(), now=T0 + timedelta(minutes=20))
            return batch

    async def _run() -> None:
        async with fresh_repository(dsn=dsn, repository_cls=_RequeueDuringSweepRepository) as repo:
            settings = QueueSettings()
            await _seed(repo, message_id=1, message_date=T0)
            await claim_messages(repository=repo, settings=settings, max_count=1, now=T0 + timedelta(minutes=1))

            swept = await expire_stale_messages(repository=repo, settings=settings, now=T0 + timedelta(minutes=20))

            assert swept.lost_races == 1
            assert swept.expired == 1
            expired = await repo.get_message(message_id=1)
            assert expired is not None
            assert expired.status == MessageStatus.EXPIRED
            assert expired.reason == "expired_after_pending"

    asyncio.run(_run())

@pytest.mark.integration
def test_cancellation_upsert_and_cascade() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn=dsn) as repo:
            await _seed(repo, message_id=1, message_date=T0)
            await _seed(repo, message_id=2, message_date=T0 + timedelta(seconds=1))
            await repo.create_listing(sender_id="u-1", sender_username=None, message_id=1, now=T0)

            first = await cancel_user(
                repository=repo,
                analytics=StubAnalyticsRecorder(),
                identity=SenderIdentity(user_id="u-1"),
                now=T0,
            )
            second = await cancel_user(
                repository=repo,
                analytics=StubAnalyticsRecorder(),
                identity=SenderIdentity(user_id="u-1", username="player-u-1"),
                now=T0,
            )

            assert first.record_created is True
            assert first.messages == BulkUpdateResult(matched=2, modified=2)
            assert first.listings == BulkUpdateResult(matched=1, modified=1)
            assert second.record_created is False
            assert second.record.username == "player-u-1"
            assert second.messages.modified == 0
            assert second.listings == BulkUpdateResult(matched=1, modified=0)

            other = SenderIdentity(user_id="u-9", username="player-u-1")
            assert await repo.find_cancellation(identity=other) is not None
            assert await repo.find_cancellation(identity=other, match_all=True) is None
            exact = await repo.find_cancellation(
                identity=SenderIdentity(user_id="u-1", username="player-u-1"),
                match_all=True,
            )
            assert exact is not None
            page = await repo.list_cancellations(username="player-u-1", limit=10, offset=0)
            assert page.total == 1
            assert [record.user_id for record in page.items] == ["u-1"]
            assert (await repo.list_cancellations(username="nobody", limit=10, offset=0)).total == 0

            removed = await repo.delete_cancellation(user_id="u-1")
            assert removed is not None
            assert await repo.find_cancellation(identity=SenderIdentity(user_id="u-1")) is None

    asyncio.run(_run())


@pytest.mark.integration
def test_duplicate_message_id_is_rejected() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn=dsn) as repo:
            await _seed(repo, message_id=1, message_date=T0)
            with pytest.raises(DomainInvariantError):
                await _seed(repo, message_id=1, message_date=T0)

    asyncio.run(_run())

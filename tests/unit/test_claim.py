from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from gateway.domain.errors import DomainValidationError
from gateway.domain.models import MessageSnapshot, MessageStatus, NewMessage, Sender
from gateway.domain.use_cases.claim import claim_messages
from gateway.repositories.stub import InMemoryGatewayRepository
from gateway.settings import QueueSettings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


async def _seed(repository: InMemoryGatewayRepository, *, message_id: int, age: timedelta) -> MessageSnapshot:
    return await repository.create_message(
        message=NewMessage(
            message_id=message_id,
            message_date=NOW - age,
            sender=Sender(id=f"user-{message_id}"),
            content=f"looking for squad {message_id}",
        ),
        status=MessageStatus.PENDING,
        now=NOW - age,
    )


class _InterleavingRepository(InMemoryGatewayRepository):
    """Yields to the event loop after reading candidates so claimers overlap."""

    async def find_claim_candidates(
        self,
        *,
        not_before: datetime | None,
        limit: int,
        exclude_ids: frozenset[int] = frozenset(),
    ) -> list[MessageSnapshot]:
        candidates = await super().find_claim_candidates(
            not_before=not_before,
            limit=limit,
            exclude_ids=exclude_ids,
        )
        await asyncio.sleep(0)
        return candidates


@pytest.mark.unit
def test_claim_returns_oldest_fresh_messages_and_marks_processing() -> None:
    repository = InMemoryGatewayRepository()

    async def _run() -> None:
        await _seed(repository, message_id=1, age=timedelta(minutes=1))
        await _seed(repository, message_id=2, age=timedelta(minutes=3))
        await _seed(repository, message_id=3, age=timedelta(minutes=2))

        result = await claim_messages(repository=repository, settings=QueueSettings(), max_count=2, now=NOW)

        assert [item.message_id for item in result.messages] == [2, 3]
        assert all(item.status == MessageStatus.PROCESSING for item in result.messages)
        assert all(item.lease_id and item.lease_id.startswith("lease_") for item in result.messages)
        assert len({item.lease_id for item in result.messages}) == 2
        assert all(item.claimed_at == NOW for item in result.messages)

        remaining = await repository.get_message(message_id=1)
        assert remaining is not None
        assert remaining.status == MessageStatus.PENDING

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_skips_messages_older_than_expiry_window() -> None:
    repository = InMemoryGatewayRepository()

    async def _run() -> None:
        await _seed(repository, message_id=10, age=timedelta(minutes=10))
        await _seed(repository, message_id=11, age=timedelta(minutes=1))

        result = await claim_messages(repository=repository, settings=QueueSettings(), max_count=5, now=NOW)

        assert [item.message_id for item in result.messages] == [11]
        stale = await repository.get_message(message_id=10)
        assert stale is not None
        assert stale.status == MessageStatus.PENDING

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_without_expiry_has_no_age_filter() -> None:
    repository = InMemoryGatewayRepository()

    async def _run() -> None:
        await _seed(repository, message_id=20, age=timedelta(hours=3))

        result = await claim_messages(
            repository=repository,
            settings=QueueSettings(expiry_enabled=False),
            max_count=5,
            now=NOW,
        )

        assert [item.message_id for item in result.messages] == [20]

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_on_empty_queue_returns_nothing() -> None:
    result = asyncio.run(
        claim_messages(repository=InMemoryGatewayRepository(), settings=QueueSettings(), max_count=3, now=NOW)
    )

    assert result.messages == []
    assert result.candidates_seen == 0


@pytest.mark.unit
@pytest.mark.parametrize("max_count", [0, -1, 101])
def test_claim_rejects_out_of_range_count(max_count: int) -> None:
    with pytest.raises(DomainValidationError):
        asyncio.run(
            claim_messages(
                repository=InMemoryGatewayRepository(),
                settings=QueueSettings(),
                max_count=max_count,
                now=NOW,
            )
        )


@pytest.mark.unit
def test_concurrent_claimers_never_share_a_message() -> None:
    repository = _InterleavingRepository()

    async def _run() -> None:
        for message_id in range(1, 6):
            await _seed(repository, message_id=message_id, age=timedelta(seconds=message_id))

        results = await asyncio.gather(
            claim_messages(repository=repository, settings=QueueSettings(), max_count=3, now=NOW),
            claim_messages(repository=repository, settings=QueueSettings(), max_count=3, now=NOW),
            claim_messages(repository=repository, settings=QueueSettings(), max_count=3, now=NOW),
        )

        claimed = [item.message_id for result in results for item in result.messages]
        assert len(claimed) == len(set(claimed))
        assert sorted(claimed) == [1, 2, 3, 4, 5]
        assert sum(result.lost_races for result in results) > 0

    asyncio.run(_run())


@pytest.mark.unit
def test_claim_records_pending_to_processing_transition() -> None:
    repository = InMemoryGatewayRepository()

    async def _run() -> None:
        await _seed(repository, message_id=42, age=timedelta(seconds=5))
        await claim_messages(repository=repository, settings=QueueSettings(), max_count=1, now=NOW)

    asyncio.run(_run())
    assert repository.transitions == [(42, "pending", "processing")]

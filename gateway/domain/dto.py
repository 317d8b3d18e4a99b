from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from gateway.domain.models import BulkUpdateResult, CancellationSnapshot, MessageSnapshot


@dataclass(frozen=True)
class IngestResult:
    message: MessageSnapshot
    canceled_sender: bool


@dataclass(frozen=True)
class ClaimResult:
    messages: list[MessageSnapshot]
    candidates_seen: int
    lost_races: int


@dataclass(frozen=True)
class RequeueSweepResult:
    cutoff: datetime
    matched: int
    requeued: int


@dataclass(frozen=True)
class ExpirySweepResult:
    cutoff: datetime
    matched: int
    expired: int
    lost_races: int
    reasons: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CancelResult:
    record: CancellationSnapshot
    record_created: bool
    messages: BulkUpdateResult
    listings: BulkUpdateResult

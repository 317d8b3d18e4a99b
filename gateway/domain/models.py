from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


# Canonical message lifecycle states.
#
# IMPORTANT:
# - Keep this enum synchronized with gateway/domain/lifecycle.py
#   (ALLOWED_TRANSITIONS).
# - Keep this enum synchronized with the DB status CHECK constraint in
#   db/migrations/000001_bootstrap.up.sql.
class MessageStatus(StrEnum):
    # Ingress state.
    PENDING = "pending"

    # Claimed by a classification worker.
    PROCESSING = "processing"

    # Worker outcomes.
    COMPLETED = "completed"
    FAILED = "failed"

    # Reconciliation outcomes.
    EXPIRED = "expired"
    CANCELED_BY_USER = "canceled_by_user"


class ExpireReason(StrEnum):
    PENDING_TIMEOUT = "expired_pending_timeout"
    PROCESSING_TIMEOUT = "expired_processing_timeout"
    AFTER_PENDING = "expired_after_pending"


REQUEUE_REASON = "requeued_from_processing_timeout"


@dataclass(frozen=True)
class Sender:
    id: str | None = None
    username: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class Group:
    group_id: str | None = None
    group_title: str | None = None
    group_username: str | None = None


@dataclass(frozen=True)
class NewMessage:
    message_id: int
    message_date: datetime
    sender: Sender = field(default_factory=Sender)
    group: Group = field(default_factory=Group)
    content: str | None = None
    is_valid: bool | None = None
    is_lfg: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class MessageSnapshot:
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
    lease_id: str | None
    claimed_at: datetime | None
    expired_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class MessageListQuery:
    group_username: str | None = None
    sender_username: str | None = None
    is_valid: bool | None = None
    is_lfg: bool | None = None
    status: MessageStatus | None = None
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True)
class MessagePage:
    items: list[MessageSnapshot]
    total: int


@dataclass(frozen=True)
class OutcomeFields:
    is_valid: bool | None = None
    is_lfg: bool | None = None
    reason: str | None = None


@dataclass(frozen=True)
class SenderIdentity:
    """Who a cancellation applies to; either field may be absent, not both."""

    user_id: str | None = None
    username: str | None = None

    def is_empty(self) -> bool:
        return not self.user_id and not self.username


@dataclass(frozen=True)
class CancellationSnapshot:
    cancellation_id: str
    user_id: str | None
    username: str | None
    reason: str | None
    created_at: datetime


@dataclass(frozen=True)
class UpsertCancellationResult:
    record: CancellationSnapshot
    created: bool


@dataclass(frozen=True)
class CancellationPage:
    items: list[CancellationSnapshot]
    total: int


@dataclass(frozen=True)
class ListingSnapshot:
    listing_id: str
    sender_id: str | None
    sender_username: str | None
    message_id: int | None
    active: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class BulkUpdateResult:
    matched: int
    modified: int

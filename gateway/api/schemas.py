from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from gateway.domain.models import MessageStatus


LEASE_ID_PATTERN = r"^lease_[0-9A-HJKMNP-TV-Z]{26}$"
CANCELLATION_ID_PATTERN = r"^cxl_[0-9A-HJKMNP-TV-Z]{26}$"
LISTING_ID_PATTERN = r"^lst_[0-9A-HJKMNP-TV-Z]{26}$"


class ErrorResponse(BaseModel):
    detail: str


class SweepMetrics(BaseModel):
    name: str
    enabled: bool
    running: bool
    in_flight: bool
    interval_seconds: float
    started: bool
    stopped: bool
    ticks_total: int
    runs_total: int
    skipped_ticks_total: int
    errors_total: int
    last_run_at: datetime | None = None
    last_result: dict[str, object] | None = None
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    sweeps_ready: bool
    sweeps: list[SweepMetrics]


class SweepStatusResponse(BaseModel):
    items: list[SweepMetrics]


class SweepRunResponse(BaseModel):
    name: str
    result: dict[str, object]


class SenderPayload(BaseModel):
    id: str | None = Field(default=None, max_length=64)
    username: str | None = Field(default=None, max_length=128)
    name: str | None = Field(default=None, max_length=256)


class GroupPayload(BaseModel):
    group_id: str | None = Field(default=None, max_length=64)
    group_title: str | None = Field(default=None, max_length=256)
    group_username: str | None = Field(default=None, max_length=128)


class CreateMessageRequest(BaseModel):
    message_id: int = Field(gt=0)
    message_date: datetime
    sender: SenderPayload = Field(default_factory=SenderPayload)
    group: GroupPayload = Field(default_factory=GroupPayload)
    message: str | None = None
    is_valid: bool | None = None
    is_lfg: bool = False
    reason: str | None = None


class MessageResponse(BaseModel):
    message_id: int
    message_date: datetime
    sender: SenderPayload
    group: GroupPayload
    message: str | None
    is_valid: bool | None
    is_lfg: bool
    reason: str | None
    status: MessageStatus
    lease_id: str | None = Field(default=None, pattern=LEASE_ID_PATTERN)
    claimed_at: datetime | None = None
    expired_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MessageListResponse(BaseModel):
    data: list[MessageResponse]
    pagination: Pagination


class PendingMessagesResponse(BaseModel):
    data: list[MessageResponse]
    count: int


class ValidSinceResponse(BaseModel):
    data: list[MessageResponse]


class ReportOutcomeRequest(BaseModel):
    outcome: Literal["completed", "failed"]
    is_valid: bool | None = None
    is_lfg: bool | None = None
    reason: str | None = Field(default=None, max_length=2048)
    lease_id: str | None = Field(default=None, pattern=LEASE_ID_PATTERN)


class CancelUserRequest(BaseModel):
    user_id: str | None = Field(default=None, min_length=1, max_length=64)
    username: str | None = Field(default=None, min_length=1, max_length=128)
    reason: str | None = Field(default=None, max_length=512)


class CascadeUpdates(BaseModel):
    messages_matched: int = Field(ge=0)
    messages_canceled: int = Field(ge=0)
    listings_matched: int = Field(ge=0)
    listings_deactivated: int = Field(ge=0)


class CanceledUserResponse(BaseModel):
    cancellation_id: str = Field(pattern=CANCELLATION_ID_PATTERN)
    user_id: str | None
    username: str | None
    reason: str | None
    created_at: datetime


class CancelUserResponse(CanceledUserResponse):
    created: bool
    updates: CascadeUpdates


class IsCanceledResponse(BaseModel):
    is_canceled: bool
    user: CanceledUserResponse | None = None


class CanceledUserListResponse(BaseModel):
    data: list[CanceledUserResponse]
    pagination: Pagination


class CreateListingRequest(BaseModel):
    sender_id: str | None = Field(default=None, min_length=1, max_length=64)
    sender_username: str | None = Field(default=None, min_length=1, max_length=128)
    message_id: int | None = Field(default=None, gt=0)


class ListingResponse(BaseModel):
    listing_id: str = Field(pattern=LISTING_ID_PATTERN)
    sender_id: str | None
    sender_username: str | None
    message_id: int | None
    active: bool
    created_at: datetime
    updated_at: datetime


class ListListingsResponse(BaseModel):
    items: list[ListingResponse]

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

logger = logging.getLogger("gateway.analytics")


@dataclass
class StubAnalyticsRecorder:
    """Keeps analytics events in memory and logs them.

    Counters and daily buckets are owned by the analytics service; this
    recorder only stands in for its "record event" calls.
    """

    events: list[dict[str, object]] = field(default_factory=list)

    async def record_user_message(
        self,
        *,
        user_id: str,
        username: str | None,
        message_date: datetime,
    ) -> None:
        event: dict[str, object] = {
            "event": "user_message",
            "user_id": user_id,
            "username": username,
            "message_date": message_date.isoformat(),
        }
        self.events.append(event)
        logger.info("analytics event recorded", extra=event)

    async def record_cancel(
        self,
        *,
        user_id: str | None,
        username: str | None,
        by: str,
        reason: str | None,
    ) -> None:
        event: dict[str, object] = {
            "event": "cancel",
            "user_id": user_id,
            "username": username,
            "by": by,
            "reason": reason,
        }
        self.events.append(event)
        logger.info("analytics event recorded", extra=event)

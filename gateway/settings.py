from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class QueueSettings:
    expiry_minutes: int = 5
    expiry_enabled: bool = True
    lease_timeout_minutes: int = 5
    spam_window_minutes: int = 60
    claim_hard_cap: int = 100
    expiry_batch_size: int = 1000

    @property
    def expiry_after(self) -> timedelta:
        return timedelta(minutes=self.expiry_minutes)

    @property
    def lease_timeout(self) -> timedelta:
        return timedelta(minutes=self.lease_timeout_minutes)

    @property
    def spam_window(self) -> timedelta:
        return timedelta(minutes=self.spam_window_minutes)


@dataclass(frozen=True)
class SweepRuntimeSettings:
    expiry_enabled: bool = True
    expiry_interval_minutes: int = 1
    requeue_enabled: bool = True
    requeue_interval_minutes: int = 5

    @property
    def expiry_interval_seconds(self) -> float:
        return self.expiry_interval_minutes * 60.0

    @property
    def requeue_interval_seconds(self) -> float:
        return self.requeue_interval_minutes * 60.0


def queue_settings_from_env() -> QueueSettings:
    return QueueSettings(
        expiry_minutes=_env_int("EXPIRY_MINUTES", 5),
        expiry_enabled=_env_bool("AUTO_EXPIRY_ENABLED", True),
        lease_timeout_minutes=_env_int("MESSAGE_REQUEUE_AFTER_MINUTES", 5),
        spam_window_minutes=_env_int("MESSAGE_SPAM_WINDOW_MINUTES", 60, allow_zero=True),
        claim_hard_cap=_env_int("CLAIM_HARD_CAP", 100),
        expiry_batch_size=_env_int("EXPIRY_BATCH_SIZE", 1000),
    )


def sweep_runtime_settings_from_env() -> SweepRuntimeSettings:
    return SweepRuntimeSettings(
        expiry_enabled=_env_bool("AUTO_EXPIRY_ENABLED", True),
        expiry_interval_minutes=_env_int("EXPIRY_INTERVAL_MINUTES", 1),
        requeue_enabled=_env_bool("MESSAGE_REQUEUE_ENABLED", True),
        requeue_interval_minutes=_env_int("MESSAGE_REQUEUE_INTERVAL_MINUTES", 5),
    )


def _env_int(name: str, default: int, *, allow_zero: bool = False) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    if parsed == 0 and allow_zero:
        return 0
    return parsed if parsed > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default

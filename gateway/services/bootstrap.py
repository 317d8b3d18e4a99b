from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import os

from gateway.api.handlers.deps import ApiDeps
from gateway.clients.stub import StubAnalyticsRecorder
from gateway.domain.contracts import AnalyticsRecorder, GatewayRepository
from gateway.domain.use_cases.expiry import expire_stale_messages
from gateway.domain.use_cases.requeue import requeue_stuck_messages
from gateway.repositories.postgres import AsyncpgPoolManager, PostgresGatewayRepository
from gateway.repositories.stub import InMemoryGatewayRepository
from gateway.roles import RuntimeRole
from gateway.settings import (
    QueueSettings,
    SweepRuntimeSettings,
    queue_settings_from_env,
    sweep_runtime_settings_from_env,
)
from gateway.workers.loop import SweepLoop
from gateway.workers.runner import SweepTask

EXPIRY_SWEEP = "expiry"
REQUEUE_SWEEP = "requeue"


@dataclass
class RuntimeContainer:
    role: RuntimeRole
    repository: GatewayRepository
    analytics: AnalyticsRecorder
    settings: QueueSettings
    sweep_settings: SweepRuntimeSettings
    api_deps: ApiDeps
    sweeps: dict[str, SweepTask]
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_sweeps(
    *,
    repository: GatewayRepository,
    settings: QueueSettings,
    sweep_settings: SweepRuntimeSettings,
) -> dict[str, SweepTask]:
    async def _expire() -> object:
        return await expire_stale_messages(repository=repository, settings=settings)

    async def _requeue() -> object:
        return await requeue_stuck_messages(repository=repository, settings=settings)

    return {
        EXPIRY_SWEEP: SweepTask(
            sweep_loop=SweepLoop(name=EXPIRY_SWEEP, sweep=_expire),
            interval_seconds=sweep_settings.expiry_interval_seconds,
            enabled=sweep_settings.expiry_enabled,
        ),
        REQUEUE_SWEEP: SweepTask(
            sweep_loop=SweepLoop(name=REQUEUE_SWEEP, sweep=_requeue),
            interval_seconds=sweep_settings.requeue_interval_seconds,
            enabled=sweep_settings.requeue_enabled,
        ),
    }


def build_runtime_container(
    role: RuntimeRole,
    *,
    settings: QueueSettings | None = None,
    sweep_settings: SweepRuntimeSettings | None = None,
) -> RuntimeContainer:
    database_url = os.getenv("DATABASE_URL")
    settings = settings or queue_settings_from_env()
    sweep_settings = sweep_settings or sweep_runtime_settings_from_env()

    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: GatewayRepository
    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        repository = PostgresGatewayRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        repository = InMemoryGatewayRepository()
    analytics = StubAnalyticsRecorder()

    sweeps = build_sweeps(repository=repository, settings=settings, sweep_settings=sweep_settings)
    api_deps = ApiDeps(
        repository=repository,
        analytics=analytics,
        settings=settings,
        sweeps=sweeps,
    )

    return RuntimeContainer(
        role=role,
        repository=repository,
        analytics=analytics,
        settings=settings,
        sweep_settings=sweep_settings,
        api_deps=api_deps,
        sweeps=sweeps,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )

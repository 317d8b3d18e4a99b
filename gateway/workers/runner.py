from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
import logging
import time

from gateway.domain.clock import utc_now
from gateway.workers.loop import SweepLoop


@dataclass
class SweepRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    runs_total: int = 0
    skipped_ticks_total: int = 0
    errors_total: int = 0
    last_run_at: datetime | None = None
    last_result: dict[str, object] | None = None
    last_error: str | None = None


async def run_sweep_until_stopped(
    *,
    sweep_loop: SweepLoop,
    interval_seconds: float,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    logger: logging.Logger,
    state: SweepRuntimeState | None = None,
) -> None:
    """Run ``sweep_loop`` immediately and then on a fixed period until stopped.

    Ticks that fall due while a run is still going are skipped rather than
    queued. A failing run is logged and the next tick runs as usual.
    """
    if state is not None:
        state.started = True

    logger.info(
        "sweep loop started",
        extra={
            "role": role,
            "service": role,
            "run_id": run_id,
            "sweep": sweep_loop.name,
            "interval_seconds": interval_seconds,
        },
    )

    interval_seconds = max(interval_seconds, 0.001)
    while not stop_event.is_set():
        started_at = time.monotonic()
        try:
            result = await sweep_loop.run_once()
            if state is not None:
                state.ticks_total += 1
                if result is None:
                    state.skipped_ticks_total += 1
                else:
                    state.runs_total += 1
                    state.last_run_at = utc_now()
                    state.last_result = result_payload(result)
                    state.last_error = None
        except Exception as exc:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
                state.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception(
                "sweep tick error",
                extra={"role": role, "service": role, "run_id": run_id, "sweep": sweep_loop.name},
            )

        elapsed = time.monotonic() - started_at
        missed = int(elapsed // interval_seconds)
        if missed > 0:
            if state is not None:
                state.skipped_ticks_total += missed
            logger.warning(
                "sweep overran its interval, skipping ticks",
                extra={"sweep": sweep_loop.name, "skipped_ticks": missed, "elapsed_seconds": round(elapsed, 3)},
            )
        delay = interval_seconds - (elapsed % interval_seconds)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except TimeoutError:
            continue

    logger.info(
        "sweep loop stopped",
        extra={"role": role, "service": role, "run_id": run_id, "sweep": sweep_loop.name},
    )
    if state is not None:
        state.stopped = True


@dataclass
class SweepTask:
    """Owned handle for one periodic sweep: explicit ``start``/``stop``."""

    sweep_loop: SweepLoop
    interval_seconds: float
    enabled: bool = True
    state: SweepRuntimeState = field(default_factory=SweepRuntimeState)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _stop_event: asyncio.Event | None = field(default=None, init=False, repr=False)

    @property
    def name(self) -> str:
        return self.sweep_loop.name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, *, role: str, run_id: str, logger: logging.Logger) -> bool:
        if not self.enabled:
            logger.info("sweep disabled", extra={"role": role, "run_id": run_id, "sweep": self.name})
            return False
        if self.running:
            logger.info("sweep already running", extra={"role": role, "run_id": run_id, "sweep": self.name})
            return False

        self.state = SweepRuntimeState()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            run_sweep_until_stopped(
                sweep_loop=self.sweep_loop,
                interval_seconds=self.interval_seconds,
                role=role,
                run_id=run_id,
                stop_event=self._stop_event,
                logger=logger,
                state=self.state,
            ),
            name=f"sweep-{self.name}",
        )
        return True

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None


def result_payload(result: object) -> dict[str, object]:
    if is_dataclass(result) and not isinstance(result, type):
        payload = asdict(result)
        return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in payload.items()}
    return {"value": repr(result)}

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import pytest

from gateway.domain.dto import RequeueSweepResult
from gateway.workers.loop import SweepLoop
from gateway.workers.runner import SweepRuntimeState, SweepTask, result_payload, run_sweep_until_stopped


@pytest.mark.unit
def test_sweep_loop_skips_while_previous_run_is_in_flight() -> None:
    release = asyncio.Event()
    calls = 0

    async def _slow_sweep() -> str:
        nonlocal calls
        calls += 1
        await release.wait()
        return "done"

    loop = SweepLoop(name="expiry", sweep=_slow_sweep)

    async def _run() -> None:
        first = asyncio.create_task(loop.run_once())
        await asyncio.sleep(0)
        assert loop.in_flight is True

        skipped = await loop.run_once()
        assert skipped is None

        release.set()
        assert await first == "done"
        assert loop.in_flight is False

    asyncio.run(_run())
    assert calls == 1


@pytest.mark.unit
def test_sweep_loop_clears_in_flight_after_error() -> None:
    async def _broken() -> None:
        raise RuntimeError("boom")

    loop = SweepLoop(name="requeue", sweep=_broken)

    with pytest.raises(RuntimeError):
        asyncio.run(loop.run_once())
    assert loop.in_flight is False


@pytest.mark.unit
def test_runner_survives_errors_and_continues() -> None:
    calls = 0

    async def _flaky() -> RequeueSweepResult:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        return RequeueSweepResult(cutoff=datetime(2026, 3, 1, tzinfo=UTC), matched=0, requeued=0)

    stop_event = asyncio.Event()
    state = SweepRuntimeState()

    async def _run() -> None:
        task = asyncio.create_task(
            run_sweep_until_stopped(
                sweep_loop=SweepLoop(name="requeue", sweep=_flaky),
                interval_seconds=0.005,
                role="sweeper",
                run_id="run-1",
                stop_event=stop_event,
                logger=logging.getLogger("test"),
                state=state,
            )
        )
        await asyncio.sleep(0.05)
        stop_event.set()
        await task

    asyncio.run(_run())
    assert calls >= 2
    assert state.started is True
    assert state.stopped is True
    assert state.errors_total == 1
    assert state.runs_total >= 1
    assert state.last_error is None
    assert state.last_result == {"cutoff": "2026-03-01T00:00:00+00:00", "matched": 0, "requeued": 0}


@pytest.mark.unit
def test_runner_skips_ticks_when_a_run_overruns() -> None:
    async def _slow() -> int:
        await asyncio.sleep(0.03)
        return 1

    stop_event = asyncio.Event()
    state = SweepRuntimeState()

    async def _run() -> None:
        task = asyncio.create_task(
            run_sweep_until_stopped(
                sweep_loop=SweepLoop(name="expiry", sweep=_slow),
                interval_seconds=0.01,
                role="sweeper",
                run_id="run-2",
                stop_event=stop_event,
                logger=logging.getLogger("test"),
                state=state,
            )
        )
        await asyncio.sleep(0.05)
        stop_event.set()
        await task

    asyncio.run(_run())
    assert state.runs_total >= 1
    assert state.skipped_ticks_total >= 2


@pytest.mark.unit
def test_sweep_task_start_and_stop() -> None:
    runs = 0

    async def _sweep() -> int:
        nonlocal runs
        runs += 1
        return runs

    task = SweepTask(sweep_loop=SweepLoop(name="expiry", sweep=_sweep), interval_seconds=60)
    logger = logging.getLogger("test")

    async def _run() -> None:
        assert task.start(role="api", run_id="run-3", logger=logger) is True
        assert task.start(role="api", run_id="run-3", logger=logger) is False
        await asyncio.sleep(0.01)
        assert task.running is True
        await task.stop()
        assert task.running is False

    asyncio.run(_run())
    assert runs == 1
    assert task.state.stopped is True


@pytest.mark.unit
def test_disabled_sweep_task_never_starts() -> None:
    async def _sweep() -> None:
        raise AssertionError("must not run")

    task = SweepTask(sweep_loop=SweepLoop(name="expiry", sweep=_sweep), interval_seconds=1, enabled=False)

    async def _run() -> None:
        assert task.start(role="api", run_id="run-4", logger=logging.getLogger("test")) is False
        await task.stop()

    asyncio.run(_run())
    assert task.running is False
    assert task.state.started is False


@pytest.mark.unit
def test_result_payload_for_non_dataclass() -> None:
    assert result_payload(3) == {"value": "3"}

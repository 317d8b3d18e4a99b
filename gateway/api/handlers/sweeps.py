from __future__ import annotations

from gateway.api.schemas import SweepMetrics, SweepRunResponse, SweepStatusResponse
from gateway.domain.errors import DomainInvariantError
from gateway.workers.runner import SweepTask, result_payload

COMPONENT_ID = "api.sweeps"


class SweepNotFoundError(LookupError):
    pass


def sweep_metrics(task: SweepTask) -> SweepMetrics:
    state = task.state
    return SweepMetrics(
        name=task.name,
        enabled=task.enabled,
        running=task.running,
        in_flight=task.sweep_loop.in_flight,
        interval_seconds=task.interval_seconds,
        started=state.started,
        stopped=state.stopped,
        ticks_total=state.ticks_total,
        runs_total=state.runs_total,
        skipped_ticks_total=state.skipped_ticks_total,
        errors_total=state.errors_total,
        last_run_at=state.last_run_at,
        last_result=state.last_result,
        last_error=state.last_error,
    )


def sweep_status_handler(*, sweeps: dict[str, SweepTask]) -> SweepStatusResponse:
    return SweepStatusResponse(items=[sweep_metrics(task) for task in sweeps.values()])


async def run_sweep_handler(*, name: str, sweeps: dict[str, SweepTask]) -> SweepRunResponse:
    """Run one sweep now, sharing the in-flight guard with its timer."""
    task = sweeps.get(name)
    if task is None:
        raise SweepNotFoundError(name)
    result = await task.sweep_loop.run_once()
    if result is None:
        raise DomainInvariantError(f"sweep {name} is already in flight")
    return SweepRunResponse(name=name, result=result_payload(result))

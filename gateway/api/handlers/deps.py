from __future__ import annotations

from dataclasses import dataclass, field

from gateway.domain.contracts import AnalyticsRecorder, GatewayRepository
from gateway.settings import QueueSettings
from gateway.workers.runner import SweepTask


@dataclass(frozen=True)
class ApiDeps:
    repository: GatewayRepository
    analytics: AnalyticsRecorder
    settings: QueueSettings
    sweeps: dict[str, SweepTask] = field(default_factory=dict)

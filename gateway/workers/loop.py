from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging

SweepHandler = Callable[[], Awaitable[object]]
logger = logging.getLogger("runtime")


@dataclass
class SweepLoop:
    """One named sweep with an in-flight guard.

    ``run_once`` refuses to start while a previous run of the same sweep is
    still in flight; the caller sees ``None`` and the attempt is not queued.
    """

    name: str
    sweep: SweepHandler
    _in_flight: bool = field(default=False, init=False, repr=False)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_once(self) -> object | None:
        if self._in_flight:
            logger.info("sweep already in flight, skipping", extra={"sweep": self.name})
            return None

        self._in_flight = True
        try:
            return await self.sweep()
        finally:
            self._in_flight = False

"""Interface between the CLI and simulation engines."""

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Protocol

from simulator_cli.models import SimulationConfig, SimulationEvent


class SimulationDriver(Protocol):
    """A simulation engine driven by the CLI.

    ``start`` returns the event stream of one run; it always finishes with
    ``SimulationEnded``. ``stop`` asks the running simulation to wind down.
    """

    def start(
        self,
        config: SimulationConfig,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        progress_interval_ms: int | None = None,
        max_in_flight: int | None = None,
        delay_ms: int | None = None,
    ) -> AsyncIterator[SimulationEvent]: ...

    def stop(self) -> None: ...

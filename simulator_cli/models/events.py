"""Events emitted by simulation drivers.

``SimulationEvent`` is a closed union; consumers match on the concrete type.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .progress import ProgressSnapshot


@dataclass(frozen=True)
class TokenRequested:
    """An access token was requested from the identity provider."""
    url: str
    user: str


@dataclass(frozen=True)
class TokenReceived:
    """An access token was obtained."""
    expires_at: datetime | None


@dataclass(frozen=True)
class TokenRefreshScheduled:
    """The next access token request was scheduled."""
    scheduled_at: datetime


@dataclass(frozen=True)
class UpdateScheduled:
    """An entity update job was scheduled."""
    entity: str
    first_fire_date: datetime
    interval: float  # seconds


@dataclass(frozen=True)
class UpdateRequested:
    """An entity update request was sent."""
    request_id: int
    entity: str
    simulated_time: datetime
    url: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateResponded:
    """An entity update request got a response."""
    request_id: int
    entity: str
    status_code: int
    elapsed: float  # milliseconds


@dataclass(frozen=True)
class InfoReported:
    """Informational message from the driver."""
    message: str


@dataclass(frozen=True)
class ErrorReported:
    """An error observed by the driver."""
    error: Exception
    request_id: int | None = None
    entity: str | None = None


@dataclass(frozen=True)
class ProgressReported:
    """Periodic progress snapshot."""
    snapshot: ProgressSnapshot


@dataclass(frozen=True)
class SimulationStopped:
    """The driver received a stop request."""


@dataclass(frozen=True)
class SimulationEnded:
    """The simulation finished; always the last event of a stream."""


SimulationEvent = (
    TokenRequested
    | TokenReceived
    | TokenRefreshScheduled
    | UpdateScheduled
    | UpdateRequested
    | UpdateResponded
    | InfoReported
    | ErrorReported
    | ProgressReported
    | SimulationStopped
    | SimulationEnded
)

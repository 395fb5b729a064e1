"""Progress tracking data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol


NOT_APPLICABLE = "N/A"


class SinkStatus(Enum):
    """Status of the last interaction with an external sink."""
    ONGOING = "ongoing"
    COMPLETE = "complete"
    ERROR = "error"
    NOT_SUPPORTED = "not supported"


class ClockHandle(Protocol):
    """Simulated clock exposed by drivers running in fast-forward mode."""

    def now(self) -> datetime: ...

    async def step(self) -> None: ...


@dataclass(frozen=True)
class ScheduledJob:
    """A scheduled update job and its pending fire dates."""
    name: str
    pending_invocations: list[datetime] = field(default_factory=list)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time counters reported by the simulation driver."""
    requests_issued: int
    requests_processed: int
    requests_delayed: int
    requests_errored: int
    real_elapsed: float  # milliseconds
    simulated_elapsed: float  # milliseconds
    clock: ClockHandle | None = None
    scheduled_jobs: list[ScheduledJob] = field(default_factory=list)


@dataclass
class ProgressSummary:
    """Display-ready progress state, recomputed on every progress tick."""
    requests_issued: int = 0
    requests_processed: int = 0
    requests_delayed: int = 0
    requests_errored: int = 0
    throughput: str = NOT_APPLICABLE  # requests per second
    delay_ratio: str = NOT_APPLICABLE  # percentage of processed requests
    error_ratio: str = NOT_APPLICABLE
    real_elapsed: str = NOT_APPLICABLE
    simulated_elapsed: str = NOT_APPLICABLE
    real_pending: str = NOT_APPLICABLE
    simulated_pending: str = NOT_APPLICABLE
    simulated_time: datetime | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    notification_status: SinkStatus | None = None
    notification_updated_at: datetime | None = None
    timeline_status: SinkStatus | None = None
    timeline_updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data: dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
            elif isinstance(value, SinkStatus):
                data[key] = value.value
            else:
                data[key] = value
        return data

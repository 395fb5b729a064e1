"""Data models for the device simulator CLI."""

from .config import (
    AttributeSpec,
    AuthenticationConfig,
    ContextBrokerConfig,
    EntitySpec,
    NotificationTarget,
    RunOptions,
    SimulationConfig,
    TimelineTarget,
)
from .events import (
    ErrorReported,
    InfoReported,
    ProgressReported,
    SimulationEnded,
    SimulationEvent,
    SimulationStopped,
    TokenReceived,
    TokenRefreshScheduled,
    TokenRequested,
    UpdateRequested,
    UpdateResponded,
    UpdateScheduled,
)
from .progress import (
    NOT_APPLICABLE,
    ClockHandle,
    ProgressSnapshot,
    ProgressSummary,
    ScheduledJob,
    SinkStatus,
)

__all__ = [
    "AttributeSpec",
    "AuthenticationConfig",
    "ClockHandle",
    "ContextBrokerConfig",
    "EntitySpec",
    "ErrorReported",
    "InfoReported",
    "NOT_APPLICABLE",
    "NotificationTarget",
    "ProgressReported",
    "ProgressSnapshot",
    "ProgressSummary",
    "RunOptions",
    "ScheduledJob",
    "SimulationConfig",
    "SimulationEnded",
    "SimulationEvent",
    "SimulationStopped",
    "SinkStatus",
    "TimelineTarget",
    "TokenReceived",
    "TokenRefreshScheduled",
    "TokenRequested",
    "UpdateRequested",
    "UpdateResponded",
    "UpdateScheduled",
]

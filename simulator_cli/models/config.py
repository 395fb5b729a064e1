"""Configuration data models."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class NotificationTarget:
    """dweet.io thing the progress summary is published to."""
    name: str
    api_key: str | None = None


@dataclass(frozen=True)
class TimelineTarget:
    """Google spreadsheet the scheduled updates are drawn into."""
    spreadsheet_key: str
    credentials_file: Path
    date_format: str  # strftime syntax
    refresh_interval: float  # milliseconds
    credentials_info: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ContextBrokerConfig:
    """Endpoint of the NGSI v2 Context Broker receiving the updates."""
    host: str
    port: int
    protocol: str = "http"
    service: str | None = None
    subservice: str | None = None

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass(frozen=True)
class AuthenticationConfig:
    """Keystone endpoint and credentials used to obtain access tokens."""
    host: str
    port: int
    user: str
    password: str
    service: str
    subservice: str = "/"
    protocol: str = "http"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass(frozen=True)
class AttributeSpec:
    """Attribute sent on entity updates.

    A list value is cycled through on successive updates.
    """
    name: str
    type: str
    value: Any


@dataclass(frozen=True)
class EntitySpec:
    """Simulated entity and its update schedule."""
    entity_name: str
    entity_type: str
    schedule: float  # seconds between updates
    active: list[AttributeSpec]
    static: list[AttributeSpec] = field(default_factory=list)


@dataclass(frozen=True)
class SimulationConfig:
    """Parsed simulation configuration file."""
    context_broker: ContextBrokerConfig
    entities: list[EntitySpec]
    authentication: AuthenticationConfig | None = None


@dataclass(frozen=True)
class RunOptions:
    """Validated command-line options for one simulation run."""
    configuration_path: Path
    simulation: SimulationConfig
    from_date: datetime | None = None
    to_date: datetime | None = None
    delay: int | None = None  # milliseconds
    maximum_not_responded_requests: int | None = None
    progress_info_interval: int | None = None  # milliseconds
    silent: bool = False
    notification: NotificationTarget | None = None
    timeline: TimelineTarget | None = None

    @property
    def time_window_override(self) -> bool:
        """Whether an explicit start or end date was given."""
        return self.from_date is not None or self.to_date is not None

"""Mutable state shared by the handlers of one simulation run."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from simulator_cli.models import ProgressSummary, RunOptions
from .errors import ErrorRingBuffer


@dataclass
class RunContext:
    """State of one run, passed explicitly through the event handlers.

    Only the event loop thread touches it.
    """
    options: RunOptions
    start_date: datetime
    end_date: datetime | None = None
    summary: ProgressSummary = field(default_factory=ProgressSummary)
    errors: ErrorRingBuffer = field(default_factory=ErrorRingBuffer)
    pending_pushes: set[asyncio.Task[None]] = field(default_factory=set)
    stop_requested: bool = False

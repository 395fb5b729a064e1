"""Service layer: validation, progress aggregation and external sinks."""

from .aggregator import ProgressAggregator, format_duration
from .config import ConfigurationService
from .console import ConsoleReporter
from .context import RunContext
from .errors import (
    AppError,
    AuthenticationError,
    ConfigurationError,
    ErrorCategory,
    ErrorRecord,
    ErrorRingBuffer,
    ErrorSeverity,
    NetworkError,
    TimelineError,
    to_app_error,
)
from .http_client import HttpClientService
from .notification import NotificationService
from .runner import SimulationRunner
from .spreadsheet import SpreadsheetClient, Worksheet
from .timeline import TimelineService

__all__ = [
    "AppError",
    "AuthenticationError",
    "ConfigurationError",
    "ConfigurationService",
    "ConsoleReporter",
    "ErrorCategory",
    "ErrorRecord",
    "ErrorRingBuffer",
    "ErrorSeverity",
    "HttpClientService",
    "NetworkError",
    "NotificationService",
    "ProgressAggregator",
    "RunContext",
    "SimulationRunner",
    "SpreadsheetClient",
    "TimelineError",
    "TimelineService",
    "Worksheet",
    "format_duration",
    "to_app_error",
]

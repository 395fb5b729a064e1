"""Error handling module for the device simulator CLI.

This module provides:
- Custom exception classes for the error taxonomy (configuration, network,
  authentication, timeline, unexpected)
- Conversion of library exceptions into application errors
- The bounded error history attached to progress notifications
"""

import json
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()


ERROR_HISTORY_SIZE = 10


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    CONFIGURATION = "configuration"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    TIMELINE = "timeline"
    UNEXPECTED = "unexpected"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AppError(Exception):
    """Base exception class for application errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        technical_details: str | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.technical_details = technical_details
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging and progress notifications."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "technical_details": self.technical_details,
        }


class ConfigurationError(AppError):
    """Exception for invalid command-line options or configuration files."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        current_value: Any = None,
        expected: str | None = None,
    ) -> None:
        technical_details = None
        if setting:
            technical_details = f"Setting: {setting}"
        if current_value is not None:
            value_str = str(current_value)[:100]  # Truncate long values
            technical_details = (technical_details or "") + f"\nCurrent: {value_str}"
        if expected:
            technical_details = (technical_details or "") + f"\nExpected: {expected}"

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            technical_details=technical_details,
            recoverable=False,
        )
        self.setting = setting
        self.current_value = current_value
        self.expected = expected


class NetworkError(AppError):
    """Exception for network-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        technical_details = None
        if original_error:
            technical_details = f"{type(original_error).__name__}: {str(original_error)}"
        if url:
            technical_details = f"URL: {url}" + (f"\n{technical_details}" if technical_details else "")
        if status_code:
            technical_details = f"Status: {status_code}" + (f"\n{technical_details}" if technical_details else "")

        super().__init__(
            message=message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            technical_details=technical_details,
            recoverable=True,
        )
        self.original_error = original_error
        self.url = url
        self.status_code = status_code


class AuthenticationError(AppError):
    """Exception for failures obtaining credentials or access tokens."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if provider:
            technical_details = f"Provider: {provider}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {type(original_error).__name__}: {str(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.AUTHENTICATION,
            severity=ErrorSeverity.ERROR,
            technical_details=technical_details,
            recoverable=False,
        )
        self.provider = provider
        self.original_error = original_error


class TimelineError(AppError):
    """Exception for failed spreadsheet operations."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        technical_details = None
        if stage:
            technical_details = f"Stage: {stage}"
        if original_error:
            technical_details = (technical_details or "") + f"\nError: {type(original_error).__name__}: {str(original_error)}"

        super().__init__(
            message=message,
            category=ErrorCategory.TIMELINE,
            severity=ErrorSeverity.WARNING,
            technical_details=technical_details,
            recoverable=True,
        )
        self.stage = stage
        self.original_error = original_error


def to_app_error(error: Exception, url: str | None = None) -> AppError:
    """Convert a standard exception to an AppError."""
    # Already an AppError
    if isinstance(error, AppError):
        return error

    if isinstance(error, httpx.ConnectError):
        return NetworkError(
            message="Unable to connect to the server.",
            original_error=error,
            url=url,
        )
    elif isinstance(error, httpx.TimeoutException):
        return NetworkError(
            message="The request timed out.",
            original_error=error,
            url=url,
        )
    elif isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        return NetworkError(
            message=f"HTTP error {status_code} occurred.",
            original_error=error,
            url=url or str(error.request.url),
            status_code=status_code,
        )
    elif isinstance(error, httpx.RequestError):
        return NetworkError(
            message="A network error occurred.",
            original_error=error,
            url=url,
        )
    elif isinstance(error, json.JSONDecodeError):
        return AppError(
            message="Invalid JSON format. The data could not be parsed.",
            technical_details=str(error),
        )

    return AppError(
        message="An unexpected error occurred.",
        category=ErrorCategory.UNEXPECTED,
        severity=ErrorSeverity.ERROR,
        technical_details=f"{type(error).__name__}: {str(error)}",
    )


@dataclass(frozen=True)
class ErrorRecord:
    """An observed error and when it happened."""
    timestamp: datetime
    error: AppError

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "error": self.error.to_dict()}


class ErrorRingBuffer:
    """History of the most recent errors; the oldest entry is evicted once full."""

    def __init__(self, capacity: int = ERROR_HISTORY_SIZE) -> None:
        self._records: deque[ErrorRecord] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._records.maxlen or 0

    def add(self, error: Exception, timestamp: datetime | None = None) -> ErrorRecord:
        """Record an error.

        Args:
            error: The exception that occurred
            timestamp: When it occurred (defaults to now)

        Returns:
            The stored record
        """
        app_error = to_app_error(error)
        record = ErrorRecord(
            timestamp=timestamp or datetime.now(timezone.utc),
            error=app_error,
        )
        self._records.append(record)

        log_method = log.error if app_error.severity != ErrorSeverity.WARNING else log.warning
        log_method(
            "Error recorded",
            error_message=app_error.message,
            category=app_error.category.value,
            technical_details=app_error.technical_details,
        )
        return record

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize the history, oldest first."""
        return [record.to_dict() for record in self._records]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ErrorRecord]:
        return iter(self._records)

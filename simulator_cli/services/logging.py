"""Logging configuration for the device simulator CLI."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog


# (file name, minimum level, max bytes, backups)
LOG_FILES = (
    ("simulator.log", logging.NOTSET, 10 * 1024 * 1024, 5),
    ("error.log", logging.ERROR, 5 * 1024 * 1024, 3),
)


class LoggingService:
    """Configures structlog on top of the standard library logging handlers.

    Log records go to stderr so they never interleave with the progress
    report written to stdout.
    """

    def __init__(
        self,
        log_level: str = "WARNING",
        log_dir: Path | None = None,
    ) -> None:
        """Initialize the logging service.

        Args:
            log_level: The minimum log level to capture
            log_dir: Directory for log files (None for console only)
        """
        self.log_level = log_level.upper()
        self.log_dir = log_dir
        self.is_development = os.getenv("ENVIRONMENT", "development") == "development"

    def configure(self) -> None:
        """Configure structlog with appropriate processors and handlers."""
        self._configure_stdlib_logging()

        structlog.configure(
            processors=self._get_processors(),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()

        numeric_level = getattr(logging, self.log_level, logging.WARNING)
        root_logger.setLevel(numeric_level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(console_handler)

        if self.log_dir:
            self._setup_file_logging(root_logger, numeric_level)

        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    def _setup_file_logging(self, root_logger: logging.Logger, level: int) -> None:
        """Add the rotating JSON log files to ``root_logger``."""
        if not self.log_dir:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        for filename, file_level, max_bytes, backups in LOG_FILES:
            handler = logging.handlers.RotatingFileHandler(
                filename=self.log_dir / filename,
                maxBytes=max_bytes,
                backupCount=backups,
                encoding="utf-8",
            )
            handler.setLevel(max(level, file_level))
            handler.setFormatter(logging.Formatter("%(message)s"))
            root_logger.addHandler(handler)

    def _get_processors(self) -> list[Any]:
        common_processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        if self.is_development and not self.log_dir:
            return common_processors + [
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
            ]
        # Files and production consoles get one JSON object per line
        return common_processors + [
            structlog.processors.JSONRenderer()
        ]

    def get_logger(self, name: str | None = None) -> structlog.stdlib.BoundLogger:
        """Get a configured logger instance."""
        return structlog.stdlib.get_logger(name)


def setup_logging(
    log_level: str = "WARNING",
    log_dir: Path | None = None,
    environment: str | None = None,
) -> LoggingService:
    """Set up application logging with the specified configuration.

    Args:
        log_level: Minimum log level to capture
        log_dir: Directory for log files (None for console only)
        environment: Environment name (development/production)

    Returns:
        Configured LoggingService instance
    """
    if environment:
        os.environ["ENVIRONMENT"] = environment

    service = LoggingService(log_level=log_level, log_dir=log_dir)
    service.configure()
    return service

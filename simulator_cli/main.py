"""Main entry point for the device simulator CLI.

This module provides the application entry point with:
- Command-line argument parsing and validation
- Application initialization and dependency injection
- Graceful shutdown handling
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn

import structlog

from simulator_cli import __version__
from simulator_cli.models import RunOptions
from simulator_cli.services.config import ConfigurationService
from simulator_cli.services.console import ConsoleReporter
from simulator_cli.services.context import RunContext
from simulator_cli.services.errors import AuthenticationError, ConfigurationError, TimelineError
from simulator_cli.services.http_client import HttpClientService
from simulator_cli.services.logging import setup_logging
from simulator_cli.services.notification import NotificationService
from simulator_cli.services.runner import SimulationRunner
from simulator_cli.services.spreadsheet import SpreadsheetClient
from simulator_cli.services.timeline import TimelineService
from simulator_cli.simulation.driver import LocalSimulationDriver


log = structlog.stdlib.get_logger()


class ApplicationContext:
    """Container for the services of one run.

    Services are created lazily and released by ``cleanup``.
    """

    def __init__(self, options: RunOptions) -> None:
        self.options: RunOptions = options
        self._http_client: HttpClientService | None = None
        self._driver: LocalSimulationDriver | None = None

    @property
    def http_client(self) -> HttpClientService:
        if self._http_client is None:
            self._http_client = HttpClientService()
        return self._http_client

    @property
    def driver(self) -> LocalSimulationDriver:
        if self._driver is None:
            self._driver = LocalSimulationDriver(http_client=self.http_client)
        return self._driver

    @property
    def notifier(self) -> NotificationService | None:
        if self.options.notification is None:
            return None
        return NotificationService(self.options.notification, self.http_client)

    async def connect_timeline(self) -> TimelineService | None:
        """Authenticate against Google and select the timeline worksheet.

        Raises:
            AuthenticationError: If the service account is rejected
            TimelineError: If the spreadsheet cannot be looked up
        """
        target = self.options.timeline
        if target is None:
            return None
        client = SpreadsheetClient(target.spreadsheet_key, target.credentials_info, self.http_client)
        await client.authenticate()
        await client.load_worksheet()
        return TimelineService(target, client)

    def create_run_context(self, now: datetime | None = None) -> RunContext:
        current = now or datetime.now().astimezone()
        from_date = self.options.from_date
        to_date = self.options.to_date
        return RunContext(
            options=self.options,
            start_date=from_date or current,
            end_date=to_date or (current if from_date is not None else None),
        )

    async def cleanup(self) -> None:
        """Close network connections."""
        if self._http_client is not None:
            await self._http_client.close()
        log.debug("Application cleanup complete")


class ParsedArgs:
    """Type-safe container for parsed command-line arguments."""

    def __init__(self, ns: argparse.Namespace) -> None:
        self.configuration: str | None = ns.configuration
        self.delay: int | None = ns.delay
        self.maximum_not_responded_requests: int | None = ns.maximumNotRespondedRequests
        self.progress_info_interval: int | None = ns.progressInfoInterval
        self.silent: bool = bool(ns.silent)
        self.dweet: str | None = ns.dweet
        self.timeline: str | None = ns.timeline
        self.from_date: str | None = ns.from_date
        self.to_date: str | None = ns.to_date
        self.log_level: str = ns.log_level
        self.log_dir: Path | None = ns.log_dir


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="device-simulator",
        description="Simulate devices updating a FIWARE Context Broker and report the progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  device-simulator -c simulation.json
  device-simulator -c simulation.json -f 2024-01-01T00:00:00 -t 2024-01-02T00:00:00
  device-simulator -c simulation.json -w '{"name": "my-simulation"}'
  device-simulator -c simulation.json -l '{"dateFormat": "%Y-%m-%d %H:%M:%S",
      "refreshInterval": 15000,
      "spreadsheet": {"key": "<key>", "credentialsFilePath": "credentials.json"}}'
        """
    )

    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _ = parser.add_argument(
        "-c", "--configuration",
        help="Path to the simulation configuration file (required)"
    )
    _ = parser.add_argument(
        "-d", "--delay", type=int,
        help="Milliseconds to wait before re-checking a request held back by -m (default: 1000)"
    )
    _ = parser.add_argument(
        "-m", "--maximumNotRespondedRequests", type=int,
        help="Maximum number of requests awaiting a response (default: unlimited)"
    )
    _ = parser.add_argument(
        "-p", "--progressInfoInterval", type=int,
        help="Milliseconds between progress reports (default: 1000)"
    )
    _ = parser.add_argument(
        "-s", "--silent", action="store_true",
        help="Do not print events or progress to the console"
    )
    _ = parser.add_argument(
        "-w", "--dweet",
        help='Publish progress to dweet.io: \'{"name": "<thing>", "apiKey": "<optional key>"}\''
    )
    _ = parser.add_argument(
        "-l", "--timeline",
        help="Draw scheduled updates into a Google spreadsheet (JSON, see examples)"
    )
    _ = parser.add_argument(
        "-f", "--from", dest="from_date",
        help="Simulated start date (ISO 8601); fast-forwards from it"
    )
    _ = parser.add_argument(
        "-t", "--to", dest="to_date",
        help="Simulated end date (ISO 8601)"
    )
    _ = parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set the logging level (default: WARNING)"
    )
    _ = parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for JSON log files (default: console only)"
    )
    return parser


def exit_with_help(parser: argparse.ArgumentParser, error: ConfigurationError) -> NoReturn:
    """Show the validation error, then the usage help, and exit."""
    log.info("Invalid options", error=error.message, technical_details=error.technical_details)
    print(f"Error: {error.message}", file=sys.stderr)
    if error.technical_details:
        print(error.technical_details, file=sys.stderr)
    print(file=sys.stderr)
    parser.print_help(sys.stderr)
    sys.exit(1)


def validate_arguments(
    parser: argparse.ArgumentParser,
    args: ParsedArgs,
    service: ConfigurationService | None = None,
) -> RunOptions:
    """Turn parsed arguments into run options or exit through the help path."""
    service = service or ConfigurationService()
    try:
        return service.build_options(
            configuration=args.configuration,
            from_raw=args.from_date,
            to_raw=args.to_date,
            delay=args.delay,
            maximum_not_responded_requests=args.maximum_not_responded_requests,
            progress_info_interval=args.progress_info_interval,
            silent=args.silent,
            dweet=args.dweet,
            timeline=args.timeline,
        )
    except ConfigurationError as e:
        exit_with_help(parser, e)


def setup_signal_handlers(runner: SimulationRunner) -> None:
    """Stop the simulation on SIGINT/SIGTERM and on faults escaping tasks."""
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int) -> None:
        log.info("Received signal", signal=signal.Signals(signum).name)
        runner.stop()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except NotImplementedError:
            # Windows event loops do not support add_signal_handler
            _ = signal.signal(signum, lambda s, _frame: loop.call_soon_threadsafe(signal_handler, s))

    def exception_handler(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        error = context.get("exception") or RuntimeError(context.get("message", "Unknown error"))
        runner.handle_fault(error)

    loop.set_exception_handler(exception_handler)
    log.debug("Signal handlers registered")


async def run_simulation(app: ApplicationContext) -> int:
    """Connect the sinks, run the simulation and return the exit code."""
    try:
        timeline = await app.connect_timeline()
        runner = SimulationRunner(
            driver=app.driver,
            context=app.create_run_context(),
            console=ConsoleReporter(silent=app.options.silent),
            notifier=app.notifier,
            timeline=timeline,
        )
        setup_signal_handlers(runner)
        return await runner.run()
    finally:
        await app.cleanup()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    parser = build_parser()
    args = ParsedArgs(parser.parse_args(argv))

    _ = setup_logging(log_level=args.log_level, log_dir=args.log_dir)

    options = validate_arguments(parser, args)
    log.info(
        "Starting device simulator",
        version=__version__,
        configuration=str(options.configuration_path),
        from_date=options.from_date.isoformat() if options.from_date else None,
        to_date=options.to_date.isoformat() if options.to_date else None,
    )

    app = ApplicationContext(options)
    try:
        exit_code = asyncio.run(run_simulation(app))
    except (AuthenticationError, TimelineError) as e:
        log.error("Timeline setup failed", error=e.message, technical_details=e.technical_details)
        print(f"Error: {e.message}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        log.info("Application interrupted by user")
        exit_code = 130  # Standard exit code for SIGINT

    log.info("Application exiting", exit_code=exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

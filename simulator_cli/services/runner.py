"""Dispatch loop consuming the event stream of a simulation driver."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import assert_never

import structlog

from simulator_cli.models import (
    ErrorReported,
    InfoReported,
    ProgressReported,
    ProgressSnapshot,
    SimulationEnded,
    SimulationEvent,
    SimulationStopped,
    SinkStatus,
    TokenReceived,
    TokenRefreshScheduled,
    TokenRequested,
    UpdateRequested,
    UpdateResponded,
    UpdateScheduled,
)
from simulator_cli.simulation.base import SimulationDriver
from .aggregator import ProgressAggregator
from .console import ConsoleReporter
from .context import RunContext
from .errors import NetworkError
from .notification import NotificationService
from .timeline import TimelineService

log = structlog.stdlib.get_logger()


SHUTDOWN_PUSH_ATTEMPTS = 5
SHUTDOWN_PUSH_INTERVAL = 1.0  # seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SimulationRunner:
    """Runs one simulation and keeps the sinks up to date with its progress."""

    def __init__(
        self,
        driver: SimulationDriver,
        context: RunContext,
        console: ConsoleReporter,
        notifier: NotificationService | None = None,
        timeline: TimelineService | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._driver = driver
        self.context = context
        self._console = console
        self._notifier = notifier
        self._timeline = timeline
        self._now = now
        self._aggregator = ProgressAggregator(context.start_date, context.end_date)

    def stop(self) -> None:
        """Ask the driver to stop; only the first call reaches it."""
        if self.context.stop_requested:
            return
        self.context.stop_requested = True
        self._driver.stop()

    def handle_fault(self, error: BaseException) -> None:
        """Record an unexpected error and shut the simulation down."""
        log.error("Unexpected fault, stopping simulation", error=str(error), error_type=type(error).__name__)
        if isinstance(error, Exception):
            self.context.errors.add(error)
        self.stop()

    async def run(self) -> int:
        """Consume the event stream until the simulation ends.

        Returns:
            Exit code (0 unless the final progress push failed)
        """
        options = self.context.options
        events = self._driver.start(
            options.simulation,
            from_date=options.from_date,
            to_date=options.to_date,
            progress_interval_ms=options.progress_info_interval,
            max_in_flight=options.maximum_not_responded_requests,
            delay_ms=options.delay,
        )
        log.info("Simulation started", configuration=str(options.configuration_path))

        try:
            async for event in events:
                try:
                    await self.dispatch(event)
                except Exception as e:
                    self.handle_fault(e)
        except Exception as e:
            # The stream itself failed; nothing more will arrive
            self.handle_fault(e)

        return await self.shutdown()

    async def dispatch(self, event: SimulationEvent) -> None:
        match event:
            case ProgressReported(snapshot=snapshot):
                await self._on_progress(snapshot)
            case ErrorReported(error=error):
                self.context.errors.add(error)
                self._console.render_event(event)
            case (
                TokenRequested()
                | TokenReceived()
                | TokenRefreshScheduled()
                | UpdateScheduled()
                | UpdateRequested()
                | UpdateResponded()
                | InfoReported()
                | SimulationStopped()
                | SimulationEnded()
            ):
                self._console.render_event(event)
            case _:
                assert_never(event)

    async def _on_progress(self, snapshot: ProgressSnapshot) -> None:
        context = self.context
        context.summary = self._aggregator.summarize(snapshot, context.summary)

        if self._notifier is not None:
            context.summary.notification_status = SinkStatus.ONGOING
            self._track(asyncio.create_task(self._publish()))

        if self._timeline is not None:
            if context.options.time_window_override:
                context.summary.timeline_status = SinkStatus.NOT_SUPPORTED
            else:
                task = self._timeline.trigger(context, snapshot.scheduled_jobs)
                if task is not None:
                    self._track(task)

        self._console.render_summary(context.summary)

        if snapshot.clock is not None:
            await snapshot.clock.step()

    async def _publish(self) -> None:
        assert self._notifier is not None
        try:
            await self._notifier.publish(self.context.summary, self.context.errors)
        except NetworkError as e:
            self.context.errors.add(e)
            self.context.summary.notification_status = SinkStatus.ERROR
            return
        self.context.summary.notification_status = SinkStatus.COMPLETE
        self.context.summary.notification_updated_at = self._now()

    def _track(self, task: asyncio.Task[None]) -> None:
        self.context.pending_pushes.add(task)
        task.add_done_callback(self._on_push_done)

    def _on_push_done(self, task: asyncio.Task[None]) -> None:
        self.context.pending_pushes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.handle_fault(error)

    async def shutdown(self) -> int:
        """Wait for outstanding pushes, then publish the final summary."""
        if self.context.pending_pushes:
            await asyncio.gather(*self.context.pending_pushes, return_exceptions=True)

        if self._notifier is None:
            log.info("Simulation finished")
            return 0

        try:
            await self._notifier.publish(
                self.context.summary,
                self.context.errors,
                attempts=SHUTDOWN_PUSH_ATTEMPTS,
                interval=SHUTDOWN_PUSH_INTERVAL,
            )
        except NetworkError as e:
            log.error(
                "Final progress notification failed",
                attempts=SHUTDOWN_PUSH_ATTEMPTS,
                error=e.message,
                technical_details=e.technical_details,
            )
            return 1

        log.info("Final progress notification sent", thing=self._notifier.target.name)
        return 0

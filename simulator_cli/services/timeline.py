"""Timeline sink: draws pending scheduled updates into a spreadsheet."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from simulator_cli.models import ScheduledJob, SinkStatus, TimelineTarget
from .context import RunContext
from .errors import TimelineError
from .spreadsheet import SpreadsheetClient

log = structlog.stdlib.get_logger()


TIMELINE_HEADER = ["Row Label", "Bar Label", "Start", "End"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimelineService:
    """Refreshes the timeline worksheet, at most once per refresh interval.

    Status moves idle -> ongoing -> complete | error and the sheet is eligible
    for the next refresh once the interval since the last attempt has passed,
    whether that attempt succeeded or not.
    """

    def __init__(
        self,
        target: TimelineTarget,
        client: SpreadsheetClient,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.target = target
        self._client = client
        self._now = now
        self._last_attempt_at: datetime | None = None

    def build_rows(self, jobs: list[ScheduledJob]) -> list[list[str]]:
        """One row per pending invocation across all jobs."""
        rows = []
        for job in jobs:
            for fire_date in job.pending_invocations:
                formatted = fire_date.strftime(self.target.date_format)
                rows.append([job.name, f"[{formatted}]: {job.name}", formatted, formatted])
        return rows

    def should_refresh(self, context: RunContext) -> bool:
        summary = context.summary
        if summary.timeline_status in (SinkStatus.ONGOING, SinkStatus.NOT_SUPPORTED):
            return False
        if self._last_attempt_at is None:
            return True
        elapsed = (self._now() - self._last_attempt_at).total_seconds() * 1000
        return elapsed >= self.target.refresh_interval

    def trigger(self, context: RunContext, jobs: list[ScheduledJob]) -> asyncio.Task[None] | None:
        """Start a refresh if one is due; returns the running task."""
        if not self.should_refresh(context):
            return None
        context.summary.timeline_status = SinkStatus.ONGOING
        self._last_attempt_at = self._now()
        return asyncio.create_task(self.refresh(context, self.build_rows(jobs)))

    async def refresh(self, context: RunContext, rows: list[list[str]]) -> None:
        """Rewrite the worksheet; the first failing stage aborts the rest."""
        stages = [
            ("clear", self._client.clear),
            ("resize", lambda: self._client.resize(1, len(TIMELINE_HEADER))),
            ("header", lambda: self._client.set_header(TIMELINE_HEADER)),
        ]
        if rows:
            stages.append(("rows", lambda: self._client.add_rows(rows)))

        for stage, operation in stages:
            try:
                await operation()
            except Exception as e:
                error = e if isinstance(e, TimelineError) else TimelineError(
                    f"Timeline update failed while running {stage}",
                    stage=stage,
                    original_error=e,
                )
                context.errors.add(error)
                context.summary.timeline_status = SinkStatus.ERROR
                log.warning("Timeline update aborted", stage=stage, error=str(e))
                return

        context.summary.timeline_status = SinkStatus.COMPLETE
        context.summary.timeline_updated_at = self._now()
        log.info("Timeline updated", rows=len(rows))

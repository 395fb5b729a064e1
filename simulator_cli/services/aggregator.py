"""Derivation of progress summaries from driver snapshots."""

from datetime import datetime

import structlog

from simulator_cli.models import NOT_APPLICABLE, ProgressSnapshot, ProgressSummary

log = structlog.stdlib.get_logger()


_UNITS = (
    ("d", 86_400_000),
    ("h", 3_600_000),
    ("m", 60_000),
    ("s", 1_000),
)


def format_duration(milliseconds: float) -> str:
    """Humanize a duration, e.g. ``90061000`` -> ``"1d 1h 1m 1s"``."""
    remaining = max(int(milliseconds), 0)
    if remaining < 1_000:
        return f"{remaining}ms"
    parts = []
    for suffix, size in _UNITS:
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{suffix}")
    return " ".join(parts)


def percentage(part: int, total: int) -> str:
    """Format ``part / total`` as a percentage, or N/A when total is zero."""
    if total <= 0:
        return NOT_APPLICABLE
    return f"{part / total * 100:.2f}"


class ProgressAggregator:
    """Recomputes the progress summary on every tick.

    The summary is rebuilt in full from the snapshot; only the sink status
    fields are carried over from the previous summary.
    """

    def __init__(self, start_date: datetime, end_date: datetime | None = None) -> None:
        """Initialize the aggregator.

        Args:
            start_date: Simulated start of the run (the from date, or now)
            end_date: Simulated end of the run, if bounded
        """
        self.start_date = start_date
        self.end_date = end_date

    def summarize(self, snapshot: ProgressSnapshot, previous: ProgressSummary | None = None) -> ProgressSummary:
        """Build the summary for ``snapshot``."""
        previous = previous or ProgressSummary()

        if snapshot.real_elapsed > 0:
            throughput = f"{snapshot.requests_issued / (snapshot.real_elapsed / 1000):.2f}"
        else:
            throughput = NOT_APPLICABLE

        simulated_pending = NOT_APPLICABLE
        real_pending = NOT_APPLICABLE
        if self.end_date is not None:
            window = (self.end_date - self.start_date).total_seconds() * 1000
            remaining = max(window - snapshot.simulated_elapsed, 0.0)
            simulated_pending = format_duration(remaining)
            if snapshot.simulated_elapsed > 0:
                # Assumes simulated time keeps progressing at the rate observed so far
                real_pending = format_duration(
                    remaining * snapshot.real_elapsed / snapshot.simulated_elapsed
                )

        summary = ProgressSummary(
            requests_issued=snapshot.requests_issued,
            requests_processed=snapshot.requests_processed,
            requests_delayed=snapshot.requests_delayed,
            requests_errored=snapshot.requests_errored,
            throughput=throughput,
            delay_ratio=percentage(snapshot.requests_delayed, snapshot.requests_processed),
            error_ratio=percentage(snapshot.requests_errored, snapshot.requests_processed),
            real_elapsed=format_duration(snapshot.real_elapsed),
            simulated_elapsed=format_duration(snapshot.simulated_elapsed),
            real_pending=real_pending,
            simulated_pending=simulated_pending,
            simulated_time=snapshot.clock.now() if snapshot.clock is not None else None,
            from_date=self.start_date,
            to_date=self.end_date,
            notification_status=previous.notification_status,
            notification_updated_at=previous.notification_updated_at,
            timeline_status=previous.timeline_status,
            timeline_updated_at=previous.timeline_updated_at,
        )
        log.debug("Progress summary computed", requests_issued=summary.requests_issued, throughput=throughput)
        return summary

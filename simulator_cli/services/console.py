"""Console rendering of simulation events and progress summaries."""

import sys
from datetime import datetime
from typing import TextIO

from simulator_cli.models import (
    ErrorReported,
    InfoReported,
    ProgressSummary,
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


def _timestamp(value: datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value is not None else "N/A"


class ConsoleReporter:
    """Writes human-readable progress lines; prints nothing when silent."""

    def __init__(self, silent: bool = False, stream: TextIO | None = None) -> None:
        self.silent = silent
        self._stream = stream or sys.stdout

    def _write(self, line: str) -> None:
        if not self.silent:
            print(line, file=self._stream, flush=True)

    def render_event(self, event: SimulationEvent) -> None:
        match event:
            case TokenRequested(url=url, user=user):
                self._write(f"- Requesting token for user '{user}' to {url}")
            case TokenReceived(expires_at=expires_at):
                self._write(f"- Token received, expires at {_timestamp(expires_at)}")
            case TokenRefreshScheduled(scheduled_at=scheduled_at):
                self._write(f"- Token refresh scheduled at {_timestamp(scheduled_at)}")
            case UpdateScheduled(entity=entity, first_fire_date=first, interval=interval):
                self._write(f"- Update of '{entity}' scheduled every {interval:g}s from {_timestamp(first)}")
            case UpdateRequested(request_id=request_id, entity=entity, simulated_time=simulated_time):
                self._write(f"- Request #{request_id}: updating '{entity}' at {_timestamp(simulated_time)}")
            case UpdateResponded(request_id=request_id, status_code=status_code, elapsed=elapsed):
                self._write(f"- Response #{request_id}: {status_code} in {elapsed:.0f}ms")
            case InfoReported(message=message):
                self._write(f"- Info: {message}")
            case ErrorReported(error=error, request_id=request_id):
                prefix = f" (request #{request_id})" if request_id is not None else ""
                self._write(f"- Error{prefix}: {error}")
            case SimulationStopped():
                self._write("- Simulation stop requested")
            case SimulationEnded():
                self._write("- Simulation ended")
            case _:
                pass

    def render_summary(self, summary: ProgressSummary) -> None:
        lines = [
            "",
            "Progress:",
            f"  Requests: {summary.requests_issued} issued, {summary.requests_processed} processed, "
            f"{summary.requests_delayed} delayed, {summary.requests_errored} errored",
            f"  Throughput: {summary.throughput} requests/s",
            f"  Delayed: {summary.delay_ratio}% | Errored: {summary.error_ratio}%",
            f"  Elapsed: {summary.real_elapsed} real, {summary.simulated_elapsed} simulated",
            f"  Pending: {summary.real_pending} real, {summary.simulated_pending} simulated",
            f"  Window: {_timestamp(summary.from_date)} -> {_timestamp(summary.to_date)}",
        ]
        if summary.simulated_time is not None:
            lines.append(f"  Simulated time: {_timestamp(summary.simulated_time)}")
        if summary.notification_status is not None:
            lines.append(
                f"  Dweet: {summary.notification_status.value} "
                f"(last update {_timestamp(summary.notification_updated_at)})"
            )
        if summary.timeline_status is not None:
            lines.append(
                f"  Timeline: {summary.timeline_status.value} "
                f"(last update {_timestamp(summary.timeline_updated_at)})"
            )
        for line in lines:
            self._write(line)

"""Local simulation driver updating entities in an NGSI v2 Context Broker."""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import structlog

from simulator_cli.models import (
    AuthenticationConfig,
    EntitySpec,
    ErrorReported,
    InfoReported,
    ProgressReported,
    ProgressSnapshot,
    ScheduledJob,
    SimulationConfig,
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
from simulator_cli.services.errors import AppError, AuthenticationError, to_app_error
from simulator_cli.services.http_client import HttpClientService
from .clock import SimulatedClock

log = structlog.stdlib.get_logger()


DEFAULT_PROGRESS_INTERVAL_MS = 1000
DEFAULT_DELAY_MS = 1000
TOKEN_REFRESH_MARGIN = timedelta(minutes=1)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class UpdateJob:
    """Periodic update of one entity."""

    def __init__(self, entity: EntitySpec, first_fire: datetime) -> None:
        self.entity = entity
        self.next_fire = first_fire
        self.updates = 0

    @property
    def name(self) -> str:
        return f"update {self.entity.entity_name}"

    def advance(self) -> None:
        self.updates += 1
        self.next_fire += timedelta(seconds=self.entity.schedule)

    def payload(self) -> dict[str, Any]:
        """NGSI v2 batch update body for the current update.

        List values are cycled through, one element per update.
        """
        entity: dict[str, Any] = {
            "id": self.entity.entity_name,
            "type": self.entity.entity_type,
        }
        for attribute in self.entity.active + self.entity.static:
            value = attribute.value
            if isinstance(value, list):
                value = value[self.updates % len(value)]
            entity[attribute.name] = {"type": attribute.type, "value": value}
        return {"actionType": "append", "entities": [entity]}


class LocalSimulationDriver:
    """Drives the entity update schedule of a simulation configuration.

    Without a from date the run follows the wall clock. With one, a simulated
    clock jumps from one scheduled update to the next until the to date (or
    the moment the run started) is reached.
    """

    def __init__(
        self,
        http_client: HttpClientService,
        now: Callable[[], datetime] = _local_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http_client = http_client
        self._now = now
        self._monotonic = monotonic
        self._stop_event: asyncio.Event | None = None
        self._queue: asyncio.Queue[SimulationEvent] = asyncio.Queue()
        self._in_flight: set[asyncio.Task[None]] = set()
        self._token: str | None = None
        self._token_refresh_at: datetime | None = None
        self._token_lock: asyncio.Lock | None = None
        self._request_id = 0
        self._issued = 0
        self._processed = 0
        self._delayed = 0
        self._errored = 0

    def stop(self) -> None:
        if self._stop_event is not None and not self._stop_event.is_set():
            log.info("Simulation stop requested")
            self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def _emit(self, event: SimulationEvent) -> None:
        self._queue.put_nowait(event)

    async def start(
        self,
        config: SimulationConfig,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        progress_interval_ms: int | None = None,
        max_in_flight: int | None = None,
        delay_ms: int | None = None,
    ) -> AsyncIterator[SimulationEvent]:
        """Run the simulation, yielding its events as they happen."""
        self._stop_event = asyncio.Event()
        self._token_lock = asyncio.Lock()
        self._queue = asyncio.Queue()

        producer = asyncio.create_task(self._run(
            config,
            from_date,
            to_date,
            (progress_interval_ms or DEFAULT_PROGRESS_INTERVAL_MS) / 1000,
            max_in_flight,
            (delay_ms or DEFAULT_DELAY_MS) / 1000,
        ))
        try:
            while True:
                event = await self._queue.get()
                yield event
                if isinstance(event, SimulationEnded):
                    break
        finally:
            if not producer.done():
                producer.cancel()
            for task in list(self._in_flight):
                task.cancel()

    async def _run(self, *args: Any) -> None:
        try:
            await self._simulate(*args)
        except Exception as e:
            log.error("Simulation driver failed", error=str(e), exc_info=True)
            self._emit(ErrorReported(error=to_app_error(e)))
        finally:
            self._emit(SimulationEnded())

    async def _simulate(
        self,
        config: SimulationConfig,
        from_date: datetime | None,
        to_date: datetime | None,
        progress_interval: float,
        max_in_flight: int | None,
        delay: float,
    ) -> None:
        real_start = self._monotonic()
        started_at = self._now()
        clock = SimulatedClock(from_date) if from_date is not None else None
        start_date = from_date or started_at
        end_date = to_date or (started_at if clock is not None else None)

        jobs = [
            UpdateJob(entity, start_date + timedelta(seconds=entity.schedule))
            for entity in config.entities
        ]
        for job in jobs:
            self._emit(UpdateScheduled(
                entity=job.entity.entity_name,
                first_fire_date=job.next_fire,
                interval=job.entity.schedule,
            ))
        self._emit(InfoReported(
            message="Fast-forwarding from {} to {}".format(start_date.isoformat(), end_date.isoformat())
            if clock is not None else "Simulation started in real time"
        ))

        if config.authentication is not None:
            try:
                await self._request_token(config.authentication)
            except AuthenticationError as e:
                self._emit(ErrorReported(error=e))
                return

        def snapshot() -> ProgressSnapshot:
            real_elapsed = (self._monotonic() - real_start) * 1000
            if clock is not None:
                simulated_elapsed = (clock.now() - start_date).total_seconds() * 1000
            else:
                simulated_elapsed = (self._now() - start_date).total_seconds() * 1000
            return ProgressSnapshot(
                requests_issued=self._issued,
                requests_processed=self._processed,
                requests_delayed=self._delayed,
                requests_errored=self._errored,
                real_elapsed=real_elapsed,
                simulated_elapsed=max(simulated_elapsed, 0.0),
                clock=clock,
                scheduled_jobs=[
                    ScheduledJob(
                        name=job.name,
                        pending_invocations=[job.next_fire] if end_date is None or job.next_fire <= end_date else [],
                    )
                    for job in jobs
                ],
            )

        next_progress = self._monotonic() + progress_interval

        async def wait_until(moment: datetime) -> bool:
            """Wait in real time until ``moment``, reporting progress; False if stopped."""
            nonlocal next_progress
            while not self.stopped:
                remaining = (moment - self._now()).total_seconds()
                if remaining <= 0:
                    return True
                timeout = min(remaining, max(next_progress - self._monotonic(), 0.0))
                await self._wait_for_stop(timeout)
                if self._monotonic() >= next_progress:
                    self._emit(ProgressReported(snapshot=snapshot()))
                    next_progress = self._monotonic() + progress_interval
            return False

        while not self.stopped:
            job = min(jobs, key=lambda j: j.next_fire)
            fire_date = job.next_fire
            if end_date is not None and fire_date > end_date:
                break

            if clock is not None:
                if self._monotonic() >= next_progress:
                    self._emit(ProgressReported(snapshot=snapshot()))
                    next_progress = self._monotonic() + progress_interval
                clock.advance_to(fire_date)
                await clock.step()
            elif not await wait_until(fire_date):
                break

            await self._throttle(max_in_flight, delay)
            if self.stopped:
                break

            self._request_id += 1
            task = asyncio.create_task(self._send_update(config, job, fire_date, self._request_id))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            job.advance()

        if clock is None and end_date is not None and not self.stopped:
            await wait_until(end_date)

        if self.stopped:
            self._emit(SimulationStopped())

        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        if clock is not None and end_date is not None and not self.stopped:
            clock.advance_to(end_date)

        self._emit(ProgressReported(snapshot=snapshot()))
        log.info(
            "Simulation finished",
            issued=self._issued,
            processed=self._processed,
            errored=self._errored,
            stopped=self.stopped,
        )

    async def _wait_for_stop(self, timeout: float) -> None:
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _throttle(self, max_in_flight: int | None, delay: float) -> None:
        """Hold back a request while too many are awaiting a response."""
        if max_in_flight is None:
            return
        counted = False
        while len(self._in_flight) >= max_in_flight and not self.stopped:
            if not counted:
                self._delayed += 1
                counted = True
            await self._wait_for_stop(delay)

    async def _request_token(self, authentication: AuthenticationConfig) -> None:
        """Obtain a Keystone v3 token for the configured service."""
        url = f"{authentication.base_url}/v3/auth/tokens"
        self._emit(TokenRequested(url=url, user=authentication.user))
        body = {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "domain": {"name": authentication.service},
                            "name": authentication.user,
                            "password": authentication.password,
                        }
                    },
                },
                "scope": {
                    "project": {
                        "domain": {"name": authentication.service},
                        "name": authentication.subservice,
                    }
                },
            }
        }
        try:
            response = await self._http_client.post_json(url, body)
        except httpx.HTTPError as e:
            raise AuthenticationError("Token request failed", provider="keystone", original_error=e) from e

        token = response.headers.get("X-Subject-Token")
        if not token:
            raise AuthenticationError("Token response carries no X-Subject-Token header", provider="keystone")

        expires_at: datetime | None = None
        try:
            expires_raw = response.json()["token"]["expires_at"]
            expires_at = datetime.fromisoformat(expires_raw.replace("Z", "+00:00"))
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning("Token expiration could not be read; the token will not be refreshed")

        self._token = token
        self._emit(TokenReceived(expires_at=expires_at))
        if expires_at is not None:
            self._token_refresh_at = expires_at - TOKEN_REFRESH_MARGIN
            self._emit(TokenRefreshScheduled(scheduled_at=self._token_refresh_at))
        else:
            self._token_refresh_at = None

    async def _refresh_token_if_due(self, authentication: AuthenticationConfig) -> None:
        assert self._token_lock is not None
        async with self._token_lock:
            if self._token_refresh_at is not None and self._now() >= self._token_refresh_at:
                await self._request_token(authentication)

    async def _send_update(
        self,
        config: SimulationConfig,
        job: UpdateJob,
        simulated_time: datetime,
        request_id: int,
    ) -> None:
        broker = config.context_broker
        url = f"{broker.base_url}/v2/op/update"
        payload = job.payload()
        headers: dict[str, str] = {}
        if broker.service:
            headers["Fiware-Service"] = broker.service
        if broker.subservice:
            headers["Fiware-ServicePath"] = broker.subservice

        self._issued += 1
        self._emit(UpdateRequested(
            request_id=request_id,
            entity=job.entity.entity_name,
            simulated_time=simulated_time,
            url=url,
            payload=payload,
        ))
        started = self._monotonic()
        try:
            if config.authentication is not None:
                await self._refresh_token_if_due(config.authentication)
                headers["X-Auth-Token"] = self._token or ""
            response = await self._http_client.post_json(url, payload, headers=headers)
        except (httpx.HTTPError, AppError) as e:
            self._processed += 1
            self._errored += 1
            self._emit(ErrorReported(
                error=to_app_error(e, url=url),
                request_id=request_id,
                entity=job.entity.entity_name,
            ))
            return

        self._processed += 1
        self._emit(UpdateResponded(
            request_id=request_id,
            entity=job.entity.entity_name,
            status_code=response.status_code,
            elapsed=(self._monotonic() - started) * 1000,
        ))

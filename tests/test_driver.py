"""Tests for the local NGSI v2 simulation driver."""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from simulator_cli.models import (
    AuthenticationConfig,
    ContextBrokerConfig,
    ErrorReported,
    InfoReported,
    ProgressReported,
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
from simulator_cli.services import AuthenticationError, HttpClientService, NetworkError
from simulator_cli.simulation import LocalSimulationDriver, SimulatedClock, UpdateJob


FROM = datetime(2024, 1, 1, tzinfo=timezone.utc)
TO = FROM + timedelta(minutes=1)
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _driver(handler: Callable[[httpx.Request], httpx.Response]) -> LocalSimulationDriver:
    http_client = HttpClientService(transport=httpx.MockTransport(handler))
    return LocalSimulationDriver(http_client, now=lambda: NOW)


async def _collect(driver: LocalSimulationDriver, config: SimulationConfig, **kwargs: object) -> list[SimulationEvent]:
    async def consume() -> list[SimulationEvent]:
        return [event async for event in driver.start(config, **kwargs)]  # type: ignore[arg-type]
    return await asyncio.wait_for(consume(), timeout=10)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(204)


class TestUpdateJob:
    """Payload construction for a single entity."""

    def test_payload_cycles_list_values(self, simulation_config: SimulationConfig) -> None:
        job = UpdateJob(simulation_config.entities[0], FROM)
        values = []
        for _ in range(4):
            values.append(job.payload()["entities"][0]["temperature"]["value"])
            job.advance()
        assert values == [20, 21, 22, 20]

    def test_payload_shape(self, simulation_config: SimulationConfig) -> None:
        job = UpdateJob(simulation_config.entities[0], FROM)
        assert job.payload() == {
            "actionType": "append",
            "entities": [{
                "id": "Room:1",
                "type": "Room",
                "temperature": {"type": "Number", "value": 20},
                "floor": {"type": "Number", "value": 1},
            }],
        }

    def test_advance_moves_next_fire(self, simulation_config: SimulationConfig) -> None:
        job = UpdateJob(simulation_config.entities[0], FROM)
        job.advance()
        assert job.next_fire == FROM + timedelta(seconds=10)
        assert job.name == "update Room:1"


class TestSimulatedClock:
    """Clock used in fast-forward mode."""

    def test_never_moves_backwards(self) -> None:
        clock = SimulatedClock(FROM)
        clock.advance_to(TO)
        clock.advance_to(FROM)
        assert clock.now() == TO


class TestFastForward:
    """Runs over a past time window."""

    @pytest.mark.asyncio
    async def test_one_update_per_schedule_tick(self, simulation_config: SimulationConfig) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        events = await _collect(_driver(handler), simulation_config, from_date=FROM, to_date=TO)

        assert len(requests) == 6
        assert all(request.url.path == "/v2/op/update" for request in requests)
        assert sum(isinstance(event, UpdateRequested) for event in events) == 6
        assert sum(isinstance(event, UpdateResponded) for event in events) == 6
        assert isinstance(events[-1], SimulationEnded)

        final = [event for event in events if isinstance(event, ProgressReported)][-1].snapshot
        assert final.requests_issued == 6
        assert final.requests_processed == 6
        assert final.requests_errored == 0
        assert final.clock is not None
        assert final.clock.now() == TO
        assert final.simulated_elapsed == 60_000

    @pytest.mark.asyncio
    async def test_scheduling_events_come_first(self, simulation_config: SimulationConfig) -> None:
        events = await _collect(_driver(_ok), simulation_config, from_date=FROM, to_date=TO)

        assert events[0] == UpdateScheduled(
            entity="Room:1", first_fire_date=FROM + timedelta(seconds=10), interval=10
        )
        assert isinstance(events[1], InfoReported)

    @pytest.mark.asyncio
    async def test_request_body_and_simulated_time(self, simulation_config: SimulationConfig) -> None:
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(204)

        events = await _collect(_driver(handler), simulation_config, from_date=FROM, to_date=TO)

        requested = [event for event in events if isinstance(event, UpdateRequested)]
        assert [event.simulated_time for event in requested] == [
            FROM + timedelta(seconds=10 * n) for n in range(1, 7)
        ]
        assert [body["entities"][0]["temperature"]["value"] for body in bodies] == [20, 21, 22, 20, 21, 22]  # type: ignore[index]

    @pytest.mark.asyncio
    async def test_end_defaults_to_start_of_run(self, simulation_config: SimulationConfig) -> None:
        driver = LocalSimulationDriver(
            HttpClientService(transport=httpx.MockTransport(_ok)),
            now=lambda: FROM + timedelta(seconds=30),
        )
        events = await _collect(driver, simulation_config, from_date=FROM)
        assert sum(isinstance(event, UpdateRequested) for event in events) == 3

    @pytest.mark.asyncio
    async def test_failed_update_is_reported(self, simulation_config: SimulationConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        events = await _collect(_driver(handler), simulation_config, from_date=FROM, to_date=TO)

        errors = [event for event in events if isinstance(event, ErrorReported)]
        assert len(errors) == 6
        assert isinstance(errors[0].error, NetworkError)
        assert errors[0].error.status_code == 500
        assert errors[0].request_id is not None
        assert errors[0].entity == "Room:1"

        final = [event for event in events if isinstance(event, ProgressReported)][-1].snapshot
        assert final.requests_errored == 6
        assert final.requests_processed == 6

    @pytest.mark.asyncio
    async def test_service_headers(self, simulation_config: SimulationConfig) -> None:
        config = SimulationConfig(
            context_broker=ContextBrokerConfig(
                host="broker.test", port=1026, service="smartcity", subservice="/rooms"
            ),
            entities=simulation_config.entities,
        )
        headers: list[httpx.Headers] = []

        def handler(request: httpx.Request) -> httpx.Response:
            headers.append(request.headers)
            return httpx.Response(204)

        await _collect(_driver(handler), config, from_date=FROM, to_date=FROM + timedelta(seconds=10))

        assert headers[0]["Fiware-Service"] == "smartcity"
        assert headers[0]["Fiware-ServicePath"] == "/rooms"


class TestAuthentication:
    """Keystone token handling."""

    @staticmethod
    def _config(simulation_config: SimulationConfig) -> SimulationConfig:
        return SimulationConfig(
            context_broker=simulation_config.context_broker,
            entities=simulation_config.entities,
            authentication=AuthenticationConfig(
                host="keystone.test", port=5001, user="admin", password="secret", service="smartcity"
            ),
        )

    @pytest.mark.asyncio
    async def test_token_is_sent_with_updates(self, simulation_config: SimulationConfig) -> None:
        auth_tokens: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v3/auth/tokens":
                body = json.loads(request.content)
                assert body["auth"]["identity"]["password"]["user"]["name"] == "admin"
                return httpx.Response(
                    201,
                    headers={"X-Subject-Token": "token-1"},
                    json={"token": {"expires_at": "2030-01-01T00:00:00.000000Z"}},
                )
            auth_tokens.append(request.headers.get("X-Auth-Token"))
            return httpx.Response(204)

        events = await _collect(
            _driver(handler), self._config(simulation_config), from_date=FROM, to_date=FROM + timedelta(seconds=20)
        )

        assert auth_tokens == ["token-1", "token-1"]
        assert any(isinstance(event, TokenRequested) and event.user == "admin" for event in events)
        received = next(event for event in events if isinstance(event, TokenReceived))
        assert received.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        scheduled = next(event for event in events if isinstance(event, TokenRefreshScheduled))
        assert scheduled.scheduled_at == datetime(2029, 12, 31, 23, 59, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_rejected_credentials_end_the_run(self, simulation_config: SimulationConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v3/auth/tokens":
                return httpx.Response(401)
            raise AssertionError("No update must be sent without a token")

        events = await _collect(_driver(handler), self._config(simulation_config), from_date=FROM, to_date=TO)

        errors = [event for event in events if isinstance(event, ErrorReported)]
        assert len(errors) == 1
        assert isinstance(errors[0].error, AuthenticationError)
        assert not any(isinstance(event, UpdateRequested) for event in events)
        assert isinstance(events[-1], SimulationEnded)


class TestRealTime:
    """Runs following the wall clock."""

    @pytest.mark.asyncio
    async def test_stop_ends_the_stream(self, simulation_config: SimulationConfig) -> None:
        driver = LocalSimulationDriver(HttpClientService(transport=httpx.MockTransport(_ok)))
        events: list[SimulationEvent] = []

        async def consume() -> None:
            async for event in driver.start(simulation_config, progress_interval_ms=50):
                events.append(event)
                if isinstance(event, InfoReported):
                    driver.stop()

        await asyncio.wait_for(consume(), timeout=5)

        assert any(isinstance(event, SimulationStopped) for event in events)
        assert not any(isinstance(event, UpdateRequested) for event in events)
        assert isinstance(events[-1], SimulationEnded)

    @pytest.mark.asyncio
    async def test_progress_is_reported_periodically(self, simulation_config: SimulationConfig) -> None:
        driver = LocalSimulationDriver(HttpClientService(transport=httpx.MockTransport(_ok)))
        progress: list[ProgressReported] = []

        async def consume() -> None:
            async for event in driver.start(simulation_config, progress_interval_ms=20):
                if isinstance(event, ProgressReported):
                    progress.append(event)
                    if len(progress) == 2:
                        driver.stop()

        await asyncio.wait_for(consume(), timeout=5)

        assert len(progress) >= 2
        assert progress[0].snapshot.clock is None
        assert progress[0].snapshot.scheduled_jobs[0].name == "update Room:1"

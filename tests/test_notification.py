"""Tests for publishing progress to dweet.io."""

import json
from collections.abc import Callable
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from simulator_cli.models import NotificationTarget, ProgressSummary, SinkStatus
from simulator_cli.services import (
    ErrorRingBuffer,
    HttpClientService,
    NetworkError,
    NotificationService,
    TimelineError,
)


def _service(
    handler: Callable[[httpx.Request], httpx.Response],
    target: NotificationTarget | None = None,
) -> NotificationService:
    http_client = HttpClientService(transport=httpx.MockTransport(handler))
    return NotificationService(target or NotificationTarget(name="my-simulation"), http_client)


def test_url_without_api_key() -> None:
    service = _service(lambda request: httpx.Response(200))
    assert service.url == "https://dweet.io/dweet/for/my-simulation"
    assert service.params is None


@pytest.mark.asyncio
async def test_api_key_is_sent_as_query_parameter() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"this": "succeeded"})

    service = _service(handler, NotificationTarget(name="locked-thing", api_key="secret"))
    await service.publish(ProgressSummary(), ErrorRingBuffer())

    [request] = requests
    assert request.method == "POST"
    assert request.url.path == "/dweet/for/locked-thing"
    assert request.url.params["key"] == "secret"


@pytest.mark.asyncio
async def test_payload_carries_summary_and_errors() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    errors = ErrorRingBuffer()
    errors.add(TimelineError("Timeline update failed", stage="clear"), timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))
    summary = ProgressSummary(requests_issued=12, throughput="1.20", timeline_status=SinkStatus.ERROR)

    await _service(handler).publish(summary, errors)

    [body] = bodies
    assert body["requests_issued"] == 12
    assert body["throughput"] == "1.20"
    assert body["timeline_status"] == "error"
    assert body["errors"] == errors.to_list()


@pytest.mark.asyncio
async def test_failure_raises_network_error() -> None:
    service = _service(lambda request: httpx.Response(503))
    with pytest.raises(NetworkError) as exc_info:
        await service.publish(ProgressSummary(), ErrorRingBuffer())
    assert exc_info.value.status_code == 503
    assert exc_info.value.url == service.url


@pytest.mark.asyncio
async def test_bounded_attempts_at_fixed_interval() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("unreachable", request=request)

    service = _service(handler)
    with patch("simulator_cli.services.http_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(NetworkError):
            await service.publish(ProgressSummary(), ErrorRingBuffer(), attempts=5, interval=1.0)

    assert len(calls) == 5
    assert [call.args[0] for call in sleep.await_args_list] == [1.0] * 4


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 403, 404])
async def test_client_errors_are_retried(status_code: int) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code)

    service = _service(handler)
    with patch("simulator_cli.services.http_client.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(NetworkError) as exc_info:
            await service.publish(ProgressSummary(), ErrorRingBuffer(), attempts=5, interval=1.0)

    assert len(calls) == 5
    assert exc_info.value.status_code == status_code


@pytest.mark.asyncio
async def test_client_error_then_success() -> None:
    responses = iter([httpx.Response(404), httpx.Response(404), httpx.Response(200)])
    service = _service(lambda request: next(responses))

    with patch("simulator_cli.services.http_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await service.publish(ProgressSummary(), ErrorRingBuffer(), attempts=5, interval=1.0)

    assert sleep.await_count == 2

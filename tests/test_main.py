"""Tests for the command-line entry point."""

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from simulator_cli.main import ApplicationContext, build_parser, main, run_simulation
from simulator_cli.models import RunOptions
from simulator_cli.services import AuthenticationError, HttpClientService


def _timeline_option(credentials: Path) -> str:
    return json.dumps({
        "dateFormat": "%Y-%m-%d %H:%M:%S",
        "refreshInterval": 15000,
        "spreadsheet": {"key": "sheet-key", "credentialsFilePath": str(credentials)},
    })


def _exit_code(argv: list[str]) -> int | str | None:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestArgumentValidation:
    """Invalid options end the process before anything starts."""

    def test_malformed_dweet_prints_usage(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with patch("simulator_cli.main.HttpClientService") as http_client:
            assert _exit_code(["-c", str(config_file), "-w", "{not json"]) == 1
        http_client.assert_not_called()

        err = capsys.readouterr().err
        assert "Error:" in err
        assert "usage: device-simulator" in err

    def test_past_end_date_is_rejected(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        past = (datetime.now().astimezone() - timedelta(hours=1)).isoformat()
        assert _exit_code(["-c", str(config_file), "-t", past]) == 1
        assert "usage:" in capsys.readouterr().err

    def test_missing_configuration(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert _exit_code([]) == 1
        assert "configuration" in capsys.readouterr().err

    def test_non_positive_delay(self, config_file: Path) -> None:
        assert _exit_code(["-c", str(config_file), "-d", "0"]) == 1

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert _exit_code(["--version"]) == 0
        assert "device-simulator" in capsys.readouterr().out


class TestRun:
    """Process exit codes of complete runs."""

    def test_valid_run_exits_with_runner_code(self, config_file: Path) -> None:
        with patch("simulator_cli.main.run_simulation", new_callable=AsyncMock, return_value=0) as run:
            assert _exit_code(["-c", str(config_file), "-s"]) == 0
        app = run.await_args.args[0]
        assert isinstance(app, ApplicationContext)
        assert app.options.silent

    def test_failed_final_push_exits_with_one(self, config_file: Path) -> None:
        with patch("simulator_cli.main.run_simulation", new_callable=AsyncMock, return_value=1):
            assert _exit_code(["-c", str(config_file), "-w", '{"name": "my-simulation"}']) == 1

    def test_timeline_authentication_failure(
        self, config_file: Path, credentials_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with (
            patch("simulator_cli.main.SpreadsheetClient") as spreadsheet_client,
            patch("simulator_cli.main.LocalSimulationDriver") as driver,
        ):
            spreadsheet_client.return_value.authenticate = AsyncMock(
                side_effect=AuthenticationError("Google service account authentication failed", provider="google")
            )
            assert _exit_code(["-c", str(config_file), "-l", _timeline_option(credentials_file)]) == 1

        driver.assert_not_called()
        err = capsys.readouterr().err
        assert "authentication failed" in err
        assert "usage:" not in err

    @pytest.mark.asyncio
    async def test_fast_forward_run(self, run_options_factory: Callable[..., RunOptions]) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        options = run_options_factory(from_date=start, to_date=start + timedelta(minutes=1), silent=True)
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        app = ApplicationContext(options)
        app._http_client = HttpClientService(transport=httpx.MockTransport(handler))

        assert await run_simulation(app) == 0
        assert len(requests) == 6


class TestApplicationContext:
    """Derived run state."""

    def test_open_ended_run(self, run_options_factory: Callable[..., RunOptions]) -> None:
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        context = ApplicationContext(run_options_factory()).create_run_context(now=now)
        assert context.start_date == now
        assert context.end_date is None

    def test_fast_forward_ends_at_run_start(self, run_options_factory: Callable[..., RunOptions]) -> None:
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        context = ApplicationContext(run_options_factory(from_date=start)).create_run_context(now=now)
        assert context.start_date == start
        assert context.end_date == now

    def test_notifier_only_when_configured(self, run_options_factory: Callable[..., RunOptions]) -> None:
        assert ApplicationContext(run_options_factory()).notifier is None


def test_parser_option_names() -> None:
    args = build_parser().parse_args([
        "-c", "simulation.json",
        "-d", "10",
        "-m", "5",
        "-p", "2000",
        "-s",
        "-f", "2024-01-01T00:00:00",
        "-t", "2024-01-02T00:00:00",
    ])
    assert args.configuration == "simulation.json"
    assert args.delay == 10
    assert args.maximumNotRespondedRequests == 5
    assert args.progressInfoInterval == 2000
    assert args.silent
    assert args.from_date == "2024-01-01T00:00:00"
    assert args.to_date == "2024-01-02T00:00:00"
    assert args.log_level == "WARNING"

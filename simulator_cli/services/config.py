"""Validation of command-line options and the simulation configuration file."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from simulator_cli.models import (
    AttributeSpec,
    AuthenticationConfig,
    ContextBrokerConfig,
    EntitySpec,
    NotificationTarget,
    RunOptions,
    SimulationConfig,
    TimelineTarget,
)
from .errors import ConfigurationError

log = structlog.stdlib.get_logger()


REQUIRED_CREDENTIAL_FIELDS = ("client_email", "private_key", "token_uri")


def _parse_json_option(raw: str, setting: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"The {setting} option is not valid JSON: {e}",
            setting=setting,
            current_value=raw,
            expected="a JSON object",
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"The {setting} option must be a JSON object",
            setting=setting,
            current_value=raw,
            expected="a JSON object",
        )
    return data


def _require_string(data: dict[str, Any], key: str, setting: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"The {setting} setting must be a non-empty string",
            setting=setting,
            current_value=value,
            expected="non-empty string",
        )
    return value


def _optional_string(data: dict[str, Any], key: str, setting: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigurationError(
            f"The {setting} setting must be a string",
            setting=setting,
            current_value=value,
            expected="string",
        )
    return value


def _require_positive_number(data: dict[str, Any], key: str, setting: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(
            f"The {setting} setting must be a positive number",
            setting=setting,
            current_value=value,
            expected="positive number",
        )
    return float(value)


def _require_port(data: dict[str, Any], setting: str) -> int:
    value = data.get("port")
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value < 65536:
        raise ConfigurationError(
            f"The {setting} setting must be a valid port number",
            setting=setting,
            current_value=value,
            expected="integer between 1 and 65535",
        )
    return value


class ConfigurationService:
    """Validates raw command-line values into a ``RunOptions`` instance.

    Every defect raises ``ConfigurationError`` naming the offending setting.
    """

    def validate_configuration_path(self, raw: str | None, cwd: Path | None = None) -> Path:
        """Resolve the configuration file path and check that it exists."""
        if not raw:
            raise ConfigurationError(
                "A configuration file is required",
                setting="configuration",
                expected="path to a JSON configuration file",
            )
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = (cwd or Path.cwd()) / path
        if not path.is_file():
            raise ConfigurationError(
                f"The configuration file does not exist: {path}",
                setting="configuration",
                current_value=str(path),
            )
        return path

    def parse_date(self, raw: str, setting: str) -> datetime:
        """Parse an ISO 8601 date; naive values are taken as local time."""
        try:
            value = datetime.fromisoformat(raw)
        except ValueError as e:
            raise ConfigurationError(
                f"The {setting} date is not a valid ISO 8601 date",
                setting=setting,
                current_value=raw,
                expected="ISO 8601 date, e.g. 2024-01-01T10:00:00",
            ) from e
        return value.astimezone()

    def validate_time_window(
        self,
        from_raw: str | None,
        to_raw: str | None,
        now: datetime | None = None,
    ) -> tuple[datetime | None, datetime | None]:
        """Validate the optional simulation time window.

        Without a start date the simulation starts now, so an end date must lie
        in the future.
        """
        from_date = self.parse_date(from_raw, "from") if from_raw else None
        to_date = self.parse_date(to_raw, "to") if to_raw else None
        current = now or datetime.now().astimezone()

        if to_date is not None and from_date is None and to_date <= current:
            raise ConfigurationError(
                "The to date must be in the future when no from date is given",
                setting="to",
                current_value=to_date.isoformat(),
                expected=f"a date after {current.isoformat()}",
            )
        if from_date is not None and to_date is not None and from_date >= to_date:
            raise ConfigurationError(
                "The from date must be before the to date",
                setting="from",
                current_value=from_date.isoformat(),
                expected=f"a date before {to_date.isoformat()}",
            )
        return from_date, to_date

    def parse_notification_target(self, raw: str) -> NotificationTarget:
        """Parse the dweet option: ``{"name": ..., "apiKey": ...}``."""
        data = _parse_json_option(raw, "dweet")
        return NotificationTarget(
            name=_require_string(data, "name", "dweet.name"),
            api_key=_optional_string(data, "apiKey", "dweet.apiKey"),
        )

    def parse_timeline_target(self, raw: str, cwd: Path | None = None) -> TimelineTarget:
        """Parse the timeline option.

        Expected shape::

            {"dateFormat": "%Y-%m-%d %H:%M:%S", "refreshInterval": 15000,
             "spreadsheet": {"key": "...", "credentialsFilePath": "..."}}
        """
        data = _parse_json_option(raw, "timeline")
        date_format = _require_string(data, "dateFormat", "timeline.dateFormat")
        refresh_interval = _require_positive_number(data, "refreshInterval", "timeline.refreshInterval")

        spreadsheet = data.get("spreadsheet")
        if not isinstance(spreadsheet, dict):
            raise ConfigurationError(
                "The timeline.spreadsheet setting must be an object",
                setting="timeline.spreadsheet",
                current_value=spreadsheet,
                expected='{"key": ..., "credentialsFilePath": ...}',
            )
        key = _require_string(spreadsheet, "key", "timeline.spreadsheet.key")
        credentials_raw = _require_string(
            spreadsheet, "credentialsFilePath", "timeline.spreadsheet.credentialsFilePath"
        )

        credentials_file = Path(credentials_raw).expanduser()
        if not credentials_file.is_absolute():
            credentials_file = (cwd or Path.cwd()) / credentials_file

        return TimelineTarget(
            spreadsheet_key=key,
            credentials_file=credentials_file,
            date_format=date_format,
            refresh_interval=refresh_interval,
            credentials_info=self._load_credentials(credentials_file),
        )

    def _load_credentials(self, path: Path) -> dict[str, Any]:
        setting = "timeline.spreadsheet.credentialsFilePath"
        if not path.is_file():
            raise ConfigurationError(
                f"The credentials file does not exist: {path}",
                setting=setting,
                current_value=str(path),
            )
        try:
            with open(path, 'r', encoding='utf-8') as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"The credentials file could not be read as JSON: {e}",
                setting=setting,
                current_value=str(path),
            ) from e

        if not isinstance(info, dict):
            raise ConfigurationError(
                "The credentials file must contain a JSON object",
                setting=setting,
                current_value=str(path),
            )
        missing = [name for name in REQUIRED_CREDENTIAL_FIELDS if not isinstance(info.get(name), str)]
        if missing:
            raise ConfigurationError(
                f"The credentials file is missing: {', '.join(missing)}",
                setting=setting,
                current_value=str(path),
                expected="service account credentials",
            )
        return info

    def load_simulation_config(self, path: Path) -> SimulationConfig:
        """Load and validate the simulation configuration file."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"The configuration file could not be read as JSON: {e}",
                setting="configuration",
                current_value=str(path),
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "The configuration file must contain a JSON object",
                setting="configuration",
                current_value=str(path),
            )

        config = SimulationConfig(
            context_broker=self._parse_context_broker(data.get("contextBroker")),
            entities=self._parse_entities(data.get("entities")),
            authentication=self._parse_authentication(data.get("authentication")),
        )
        log.info(
            "Simulation configuration loaded",
            path=str(path),
            entities=len(config.entities),
            authentication=config.authentication is not None,
        )
        return config

    def _parse_context_broker(self, data: Any) -> ContextBrokerConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(
                "The contextBroker setting must be an object",
                setting="contextBroker",
                current_value=data,
            )
        return ContextBrokerConfig(
            host=_require_string(data, "host", "contextBroker.host"),
            port=_require_port(data, "contextBroker.port"),
            protocol=_optional_string(data, "protocol", "contextBroker.protocol") or "http",
            service=_optional_string(data, "service", "contextBroker.service"),
            subservice=_optional_string(data, "subservice", "contextBroker.subservice"),
        )

    def _parse_authentication(self, data: Any) -> AuthenticationConfig | None:
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ConfigurationError(
                "The authentication setting must be an object",
                setting="authentication",
                current_value=data,
            )
        return AuthenticationConfig(
            host=_require_string(data, "host", "authentication.host"),
            port=_require_port(data, "authentication.port"),
            user=_require_string(data, "user", "authentication.user"),
            password=_require_string(data, "password", "authentication.password"),
            service=_require_string(data, "service", "authentication.service"),
            subservice=_optional_string(data, "subservice", "authentication.subservice") or "/",
            protocol=_optional_string(data, "protocol", "authentication.protocol") or "http",
        )

    def _parse_entities(self, data: Any) -> list[EntitySpec]:
        if not isinstance(data, list) or not data:
            raise ConfigurationError(
                "The entities setting must be a non-empty list",
                setting="entities",
                current_value=data,
            )
        entities = []
        for index, item in enumerate(data):
            setting = f"entities[{index}]"
            if not isinstance(item, dict):
                raise ConfigurationError(
                    f"The {setting} setting must be an object",
                    setting=setting,
                    current_value=item,
                )
            active = self._parse_attributes(item.get("active"), f"{setting}.active")
            if not active:
                raise ConfigurationError(
                    f"The {setting}.active setting must list at least one attribute",
                    setting=f"{setting}.active",
                )
            entities.append(EntitySpec(
                entity_name=_require_string(item, "entity_name", f"{setting}.entity_name"),
                entity_type=_require_string(item, "entity_type", f"{setting}.entity_type"),
                schedule=_require_positive_number(item, "schedule", f"{setting}.schedule"),
                active=active,
                static=self._parse_attributes(item.get("staticAttributes", []), f"{setting}.staticAttributes"),
            ))
        return entities

    def _parse_attributes(self, data: Any, setting: str) -> list[AttributeSpec]:
        if not isinstance(data, list):
            raise ConfigurationError(
                f"The {setting} setting must be a list",
                setting=setting,
                current_value=data,
            )
        attributes = []
        for index, item in enumerate(data):
            item_setting = f"{setting}[{index}]"
            if not isinstance(item, dict) or "value" not in item:
                raise ConfigurationError(
                    f"The {item_setting} setting must be an object with a value",
                    setting=item_setting,
                    current_value=item,
                )
            value = item["value"]
            if isinstance(value, list) and not value:
                raise ConfigurationError(
                    f"The {item_setting}.value list must not be empty",
                    setting=f"{item_setting}.value",
                )
            attributes.append(AttributeSpec(
                name=_require_string(item, "name", f"{item_setting}.name"),
                type=_require_string(item, "type", f"{item_setting}.type"),
                value=value,
            ))
        return attributes

    def build_options(
        self,
        configuration: str | None,
        from_raw: str | None = None,
        to_raw: str | None = None,
        delay: int | None = None,
        maximum_not_responded_requests: int | None = None,
        progress_info_interval: int | None = None,
        silent: bool = False,
        dweet: str | None = None,
        timeline: str | None = None,
        now: datetime | None = None,
    ) -> RunOptions:
        """Validate every option; raises on the first defect."""
        path = self.validate_configuration_path(configuration)
        from_date, to_date = self.validate_time_window(from_raw, to_raw, now=now)
        notification = self.parse_notification_target(dweet) if dweet is not None else None
        timeline_target = self.parse_timeline_target(timeline) if timeline is not None else None

        for setting, value in (
            ("delay", delay),
            ("maximumNotRespondedRequests", maximum_not_responded_requests),
            ("progressInfoInterval", progress_info_interval),
        ):
            if value is not None and value <= 0:
                raise ConfigurationError(
                    f"The {setting} option must be a positive integer",
                    setting=setting,
                    current_value=value,
                    expected="positive integer",
                )

        simulation = self.load_simulation_config(path)

        return RunOptions(
            configuration_path=path,
            simulation=simulation,
            from_date=from_date,
            to_date=to_date,
            delay=delay,
            maximum_not_responded_requests=maximum_not_responded_requests,
            progress_info_interval=progress_info_interval,
            silent=silent,
            notification=notification,
            timeline=timeline_target,
        )

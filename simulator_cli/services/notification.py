"""Publishing of progress summaries to dweet.io."""

from typing import Any

import httpx
import structlog

from simulator_cli.models import NotificationTarget, ProgressSummary
from .errors import ErrorRingBuffer, NetworkError
from .http_client import HttpClientService

log = structlog.stdlib.get_logger()


DWEET_URL_TEMPLATE = "https://dweet.io/dweet/for/{name}"


class NotificationService:
    """Posts the progress summary and recent errors to a dweet thing."""

    def __init__(
        self,
        target: NotificationTarget,
        http_client: HttpClientService,
        url_template: str = DWEET_URL_TEMPLATE,
    ) -> None:
        self.target = target
        self._http_client = http_client
        self.url = url_template.format(name=target.name)
        self.params = {"key": target.api_key} if target.api_key else None

    def build_payload(self, summary: ProgressSummary, errors: ErrorRingBuffer) -> dict[str, Any]:
        payload = summary.to_dict()
        payload["errors"] = errors.to_list()
        return payload

    async def publish(
        self,
        summary: ProgressSummary,
        errors: ErrorRingBuffer,
        attempts: int = 1,
        interval: float = 1.0,
    ) -> None:
        """Post the summary.

        Args:
            summary: Summary to publish
            errors: Recent errors attached to the payload
            attempts: Total number of attempts
            interval: Fixed delay between attempts in seconds

        Raises:
            NetworkError: If every attempt failed
        """
        payload = self.build_payload(summary, errors)
        try:
            response = await self._http_client.post_json(
                self.url,
                payload,
                params=self.params,
                max_retries=max(attempts - 1, 0),
                retry_delay=interval,
                backoff=False,
                retry_client_errors=True,
            )
        except httpx.HTTPError as e:
            status_code = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            raise NetworkError(
                "Publishing progress to dweet.io failed",
                original_error=e,
                url=self.url,
                status_code=status_code,
            ) from e

        log.debug("Progress published", thing=self.target.name, status_code=response.status_code)

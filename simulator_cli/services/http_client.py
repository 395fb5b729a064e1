"""HTTP client service with bounded retry logic."""

import asyncio
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()


class HttpClientService:
    """HTTP client service with retry logic and timeout handling.

    Requests are single-attempt unless the caller asks for retries.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        verify_ssl: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client service.

        Args:
            timeout: Request timeout in seconds
            max_retries: Default number of retry attempts after the first one
            base_delay: Base delay between retries in seconds
            max_delay: Maximum delay between retries in seconds
            verify_ssl: Whether to verify SSL certificates
            transport: Optional transport override (used by tests)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={
                "User-Agent": "device-simulator-cli/0.1"
            },
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
            verify=verify_ssl,
            transport=transport,
        )

        log.debug(
            "HTTP client service initialized",
            timeout=timeout,
            max_retries=max_retries,
        )

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        backoff: bool = True,
        retry_client_errors: bool = False,
    ) -> httpx.Response:
        """Make a request, retrying transient failures.

        Args:
            method: HTTP method
            url: The URL to request
            json: Optional JSON body
            params: Optional query parameters
            headers: Optional additional headers
            max_retries: Retries after the first attempt (defaults to the service setting)
            retry_delay: Delay before the first retry in seconds (defaults to base_delay)
            backoff: Double the delay after each failed attempt; otherwise keep it fixed
            retry_client_errors: Also retry 4xx responses other than 429

        Returns:
            HTTP response object

        Raises:
            httpx.HTTPError: If all attempts fail
        """
        retries = self.max_retries if max_retries is None else max_retries
        first_delay = self.base_delay if retry_delay is None else retry_delay

        for attempt in range(retries + 1):
            try:
                log.debug(
                    "Making HTTP request",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=retries + 1
                )

                response = await self._client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=headers,
                )
                response.raise_for_status()

                log.debug(
                    "HTTP request successful",
                    method=method,
                    url=url,
                    status_code=response.status_code,
                )
                return response

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                log.warning(
                    "HTTP request failed",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__
                )

                # Don't retry on client errors (4xx) except for rate limiting,
                # unless the caller treats every non-success response as transient
                if isinstance(e, httpx.HTTPStatusError) and not retry_client_errors:
                    status_code = e.response.status_code
                    if 400 <= status_code < 500 and status_code != 429:
                        raise

                if attempt == retries:
                    if retries:
                        log.error(
                            "HTTP request failed after all retries",
                            method=method,
                            url=url,
                            total_attempts=retries + 1
                        )
                    raise

                if backoff:
                    delay = min(first_delay * (2 ** attempt), self.max_delay)
                else:
                    delay = first_delay
                log.info("Retrying after delay", delay=delay)
                await asyncio.sleep(delay)

        # This should never be reached, but satisfy type checker
        raise RuntimeError("Unexpected end of retry loop")

    async def post_json(
        self,
        url: str,
        payload: Any,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """POST a JSON body; see ``request`` for the retry arguments."""
        return await self.request("POST", url, json=payload, params=params, headers=headers, **kwargs)

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._client.aclose()
        log.debug("HTTP client closed")

    async def __aenter__(self) -> "HttpClientService":
        return self

    async def __aexit__(self, exc_type: type[Exception] | None, exc_val: Exception | None, exc_tb: Any) -> None:
        await self.close()

"""HTTP client for the spreadsheet replica values API.

This module provides:
- SheetsClient: async HTTP client for range reads, writes, clears and appends
- APIError and subclasses mapping HTTP status codes to failure kinds

Each call is individually atomic on the replica side; nothing here spans
more than one request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from sheetsync.client.retry import (
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    is_transient,
    is_unsent,
    retry_with_backoff,
)
from sheetsync.core.config import ReplicaConfig

logger = logging.getLogger(__name__)

Row = list[Any]

VALUE_INPUT_OPTION = "USER_ENTERED"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Access token expired or invalid."""


class PermissionDeniedError(APIError):
    """Token lacks access to the spreadsheet."""


class NotFoundError(APIError):
    """Spreadsheet or range not found."""


class QuotaExceededError(APIError):
    """Request quota exceeded; retry later."""


def _error_detail(response: httpx.Response) -> str:
    """Extract a human-readable message from an error response."""
    try:
        data = response.json()
    except ValueError:
        text = response.text[:150]
        return f"HTTP {response.status_code}: {text}" if text else f"HTTP {response.status_code}"

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class SheetsClient:
    """Async HTTP client for the spreadsheet values API.

    Usage:
        async with SheetsClient(config) as client:
            rows = await client.fetch_range("Orders!A2:P")
            await client.write_range("Orders!A2:P", rows)
    """

    def __init__(
        self,
        config: ReplicaConfig,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Replica configuration with spreadsheet id and token.
            max_retries: Retries for transient failures (429, 5xx, network).
            initial_backoff: First retry delay in seconds.
            transport: Optional transport override (tests).
        """
        self._config = config
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={"Authorization": f"Bearer {config.token}"},
            transport=transport,
        )

    @property
    def config(self) -> ReplicaConfig:
        """Get the replica configuration."""
        return self._config

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> SheetsClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    def _handle_response(self, response: httpx.Response, context: str) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        detail = _error_detail(response)
        logger.debug("API error (%d) in %s: %s", status, context, detail)
        if status == 401:
            raise AuthenticationError(f"Access token expired or invalid: {detail}", 401)
        if status == 403:
            raise PermissionDeniedError(f"Permission denied: {detail}", 403)
        if status == 404:
            raise NotFoundError(f"Spreadsheet or range not found: {detail}", 404)
        if status == 429:
            raise QuotaExceededError(f"Quota exceeded: {detail}", 429)
        raise APIError(detail, status)

    async def _request(
        self,
        method: str,
        url: str,
        context: str,
        should_retry: Callable[[BaseException], bool] = is_transient,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying failures accepted by ``should_retry``."""
        self._config.validate()

        async def send() -> httpx.Response:
            response = await self._client.request(method, url, **kwargs)
            return self._handle_response(response, context)

        return await retry_with_backoff(
            send,
            max_retries=self._max_retries,
            initial_backoff=self._initial_backoff,
            should_retry=should_retry,
        )

    # === Health check ===

    async def health_check(self) -> bool:
        """Check that the spreadsheet is reachable with the current token.

        Returns:
            True if the spreadsheet metadata could be read.
        """
        try:
            self._config.validate()
            response = await self._client.get(
                self._config.spreadsheet_url, params={"fields": "spreadsheetId"}
            )
            return response.status_code == 200
        except (httpx.RequestError, ValueError):
            return False

    # === Range operations ===

    async def fetch_range(self, a1_range: str) -> list[Row]:
        """Read all values of a range.

        Args:
            a1_range: Range to read.

        Returns:
            Rows as lists of cell values (trailing empty rows are omitted
            by the API).

        Raises:
            APIError: If the body is not a JSON object (e.g. a proxy page).
        """
        response = await self._request(
            "GET", self._config.values_url(a1_range), f"GET {a1_range}"
        )
        try:
            data = response.json()
        except ValueError as e:
            raise APIError(
                f"Unexpected response body for {a1_range}: not JSON", response.status_code
            ) from e
        if not isinstance(data, dict):
            raise APIError(
                f"Unexpected response body for {a1_range}: {type(data).__name__}",
                response.status_code,
            )
        values = data.get("values") or []
        if not isinstance(values, list):
            raise APIError(f"Unexpected values payload for {a1_range}", response.status_code)
        return [list(row) for row in values]

    async def write_range(self, a1_range: str, rows: list[Row]) -> None:
        """Overwrite a range with rows.

        Args:
            a1_range: Range to write, anchored at its top-left cell.
            rows: Rows to write.
        """
        await self._request(
            "PUT",
            self._config.values_url(a1_range),
            f"write {a1_range}",
            params={"valueInputOption": VALUE_INPUT_OPTION},
            json={"values": rows},
        )

    async def clear_range(self, a1_range: str) -> None:
        """Clear all values of a range.

        Args:
            a1_range: Range to clear.
        """
        await self._request(
            "POST",
            self._config.values_url(a1_range) + ":clear",
            f"clear {a1_range}",
        )

    async def append_rows(self, a1_range: str, rows: list[Row]) -> None:
        """Append rows after the last row of a table.

        Appending twice duplicates rows, so only failures where the request
        never reached the replica are retried.

        Args:
            a1_range: Range identifying the table.
            rows: Rows to append.
        """
        await self._request(
            "POST",
            self._config.values_url(a1_range) + ":append",
            f"append {a1_range}",
            should_retry=is_unsent,
            params={"valueInputOption": VALUE_INPUT_OPTION},
            json={"values": rows},
        )

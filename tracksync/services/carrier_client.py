"""Async HTTP client for the carrier's full order tracking endpoint.

One GET per tracking number against ``{base_url}/fullOrderTracking/<number>``.
Transport failures get a single immediate retry; anything beyond that is
left to the reconciliation engine's retry passes.
"""

import json
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from tracksync.config import CarrierConfig
from tracksync.models import TrackingEvent, TrackingFeed
from tracksync.services.errors import CarrierError, ErrorKind
from tracksync.services.event_normalizer import normalize

logger = logging.getLogger(__name__)

# 0 mirrors the "no response" status some HTTP stacks report.
RETRYABLE_STATUS_CODES = frozenset({0, 429, 500, 502, 503, 504, 507, 508, 509})


def is_retryable_status(status_code: int) -> bool:
    """Return True when an HTTP status is worth retrying later."""
    return status_code in RETRYABLE_STATUS_CODES


class CarrierClient:
    """Fetches and normalizes carrier tracking feeds.

    Usable as an async context manager to share one connection pool
    across a run; otherwise each fetch opens a short-lived client.
    """

    def __init__(
        self,
        config: CarrierConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        normalizer: Callable[[Iterable[Any]], list[TrackingEvent]] = normalize,
    ) -> None:
        """Initialize the client.

        Args:
            config: Carrier section of the configuration.
            transport: Optional httpx transport, used by tests.
            normalizer: Converts the raw events list into TrackingEvents.
        """
        self._config = config or CarrierConfig()
        self._transport = transport
        self._normalizer = normalizer
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._config.effective_timeout

    def build_url(self, tracking_number: str) -> str:
        """Return the tracking endpoint URL for a tracking number."""
        base = self._config.base_url.rstrip("/")
        return f"{base}/fullOrderTracking/{quote(tracking_number, safe='')}"

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "User-Agent": self._config.user_agent,
                "Accept": "application/json",
            },
            transport=self._transport,
        )

    async def __aenter__(self) -> "CarrierClient":
        self._client = self._new_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the shared httpx client if one is open."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """GET with exactly one immediate retry on transport failure."""
        try:
            return await client.get(url)
        except httpx.TransportError as first:
            logger.info("Carrier request failed (%s), retrying once: %s", type(first).__name__, url)
        try:
            return await client.get(url)
        except httpx.TransportError as e:
            raise CarrierError.from_code(
                "E-3001", kind=ErrorKind.RETRYABLE, details=str(e) or type(e).__name__
            ) from e

    async def fetch(self, tracking_number: str) -> TrackingFeed:
        """Fetch the tracking feed for one tracking number.

        Args:
            tracking_number: Carrier tracking number.

        Returns:
            TrackingFeed with normalized events. When the carrier answers
            with an ``error`` field the feed has no events and
            ``carrier_error`` set.

        Raises:
            CarrierError: Tagged retryable or permanent.
        """
        tracking_number = (tracking_number or "").strip()
        if not tracking_number:
            raise CarrierError(
                code="E-1001",
                message="Tracking number is empty.",
                kind=ErrorKind.PERMANENT,
            )

        url = self.build_url(tracking_number)
        if self._client is not None:
            response = await self._get(self._client, url)
        else:
            async with self._new_client() as client:
                response = await self._get(client, url)

        return self._parse_response(tracking_number, response)

    def _parse_response(self, tracking_number: str, response: httpx.Response) -> TrackingFeed:
        status = response.status_code
        if status != 200:
            retryable = is_retryable_status(status)
            code = "E-3002" if status == 429 else "E-3003"
            logger.warning(
                "Carrier returned HTTP %d for %s (%s)",
                status,
                tracking_number,
                "retryable" if retryable else "permanent",
            )
            raise CarrierError.from_code(
                code,
                kind=ErrorKind.RETRYABLE if retryable else ErrorKind.PERMANENT,
                status_code=status,
            )

        try:
            body = json.loads(response.content)
        except ValueError as e:
            raise CarrierError.from_code(
                "E-3004", kind=ErrorKind.RETRYABLE, status_code=status, details=str(e)
            ) from e

        fetched_at = datetime.now(UTC)
        if isinstance(body, dict) and body.get("error"):
            logger.info("Carrier reported no data for %s: %s", tracking_number, body["error"])
            return TrackingFeed(
                events=[],
                raw_payload=body,
                fetched_at=fetched_at,
                carrier_error=str(body["error"]),
            )

        if not isinstance(body, dict) or not isinstance(body.get("events"), list):
            raise CarrierError.from_code("E-3005", kind=ErrorKind.PERMANENT, status_code=status)

        return TrackingFeed(
            events=self._normalizer(body["events"]),
            raw_payload=body,
            fetched_at=fetched_at,
        )

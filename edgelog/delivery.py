"""
Outbound delivery of a pending batch.

A batch travels as newline-delimited JSON: one object per line, no enclosing
array, sent as text/plain. Only the response status is consulted.
"""

import json
import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Statuses that keep the batch and engage backoff. Every other status,
# including 4xx/5xx, counts as delivered so a permanent error cannot
# cause an endless retry loop.
RETRYABLE_STATUSES = frozenset({403, 429})

DEFAULT_TIMEOUT = 30.0


class DeliveryOutcome(Enum):
    """Result classes of one delivery attempt."""

    DELIVERED = "delivered"
    RETRY = "retry"  # 429/403 from the collector
    TRANSPORT_ERROR = "transport_error"  # the request itself failed


def encode_batch(records: Iterable[Any]) -> str:
    """Serialize records to an NDJSON payload."""
    return "\n".join(
        json.dumps(record, separators=(",", ":"), ensure_ascii=False) for record in records
    )


def decode_batch(payload: str) -> list[Any]:
    """Inverse of encode_batch."""
    if not payload:
        return []
    return [json.loads(line) for line in payload.split("\n")]


def classify_status(status_code: int) -> DeliveryOutcome:
    if status_code in RETRYABLE_STATUSES:
        return DeliveryOutcome.RETRY
    return DeliveryOutcome.DELIVERED


class BatchSender:
    """
    POSTs batches to a collector endpoint.

    The underlying httpx client never follows redirects; a 3xx answer is
    just another non-retryable status.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=False)
        return self._client

    async def send(self, endpoint: str, records: list[Any]) -> int:
        """
        Deliver one batch and return the response status code.

        Transport errors (connection refused, timeouts, ...) propagate to
        the caller unchanged.
        """
        body = encode_batch(records)
        response = await self._get_client().post(
            endpoint,
            content=body.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
            follow_redirects=False,
        )
        logger.debug(f"Collector answered {response.status_code} for {len(records)} records")
        return response.status_code

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

"""HTTP client for the telemetry ingestion endpoint."""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any

import httpx
import orjson

from tracebench.errors import IngestionError

logger = logging.getLogger(__name__)

INGESTION_CONTENT_TYPE = "application/x-json-stream"


def encode_batch(records: list[dict[str, Any]]) -> bytes:
    """Serialize a batch as one JSON array."""
    return orjson.dumps(records)


class IngestionClient:
    """Posts telemetry batches as one JSON array per call.

    ``send`` returns the HTTP status; interpreting it is the caller's job.
    Transport problems (connect, timeout, DNS) are raised as
    :class:`IngestionError`.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, records: list[dict[str, Any]]) -> int:
        # Kept off the event loop, where in-flight request timers run
        payload = await asyncio.to_thread(encode_batch, records)
        try:
            response = await self._client.post(
                self.url,
                content=payload,
                headers={"Content-Type": INGESTION_CONTENT_TYPE},
            )
        except httpx.HTTPError as e:
            raise IngestionError(
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                item_count=len(records),
            ) from e

        if response.status_code >= 400:
            logger.debug(
                f"Ingestion rejected batch status={response.status_code} "
                f"body={response.text[:500]}"
            )
        return response.status_code

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "IngestionClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

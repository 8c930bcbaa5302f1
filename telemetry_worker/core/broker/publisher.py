"""Publicador de documentos al broker (Redis Streams).

Un exchange lógico con dos routing keys, cada una en su stream:
    {exchange}:telemetry  → un mensaje por TelemetryDocument
    {exchange}:event      → un mensaje por EventSummaryDocument

Orden: todos los documentos de detalle se confirman antes de publicar el
resumen, así un consumidor que lee el resumen puede asumir que el detalle
ya existe (best-effort, no es una transacción entre streams).
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from ..domain.documents import EventSummaryDocument, TelemetryDocument
from ..domain.errors import PublishError

logger = logging.getLogger(__name__)

TELEMETRY_ROUTING_KEY = "telemetry"
EVENT_ROUTING_KEY = "event"
DEFAULT_EXCHANGE = "telemetry"
DEFAULT_MAX_LEN = 100000


class DocumentPublisher(ABC):
    """Interfaz del broker de salida."""

    @abstractmethod
    async def publish_documents(self, documents: Sequence[TelemetryDocument]) -> None:
        """Publica documentos de detalle. Raises PublishError."""

    @abstractmethod
    async def publish_batch(
        self,
        documents: Sequence[TelemetryDocument],
        summary: EventSummaryDocument,
    ) -> None:
        """Detalle primero, resumen después. Raises PublishError."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisStreamPublisher(DocumentPublisher):
    """Publica a Redis Streams con MAXLEN aproximado (backpressure)."""

    def __init__(
        self,
        client: redis.Redis,
        exchange: str = DEFAULT_EXCHANGE,
        max_len: int = DEFAULT_MAX_LEN,
    ):
        self._client = client
        self._exchange = exchange
        self._max_len = max_len

    @classmethod
    def from_url(
        cls,
        url: Optional[str] = None,
        exchange: str = DEFAULT_EXCHANGE,
        max_len: int = DEFAULT_MAX_LEN,
    ) -> "RedisStreamPublisher":
        url = url or os.getenv("BROKER_REDIS_URL") or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        client = redis.Redis.from_url(
            url,
            decode_responses=False,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        logger.info("[PUBLISHER] Redis broker: %s exchange=%s", url.split("@")[-1], exchange)
        return cls(client, exchange=exchange, max_len=max_len)

    def stream_for(self, routing_key: str) -> str:
        return f"{self._exchange}:{routing_key}"

    async def _publish(self, routing_key: str, bodies: Iterable[dict]) -> List[bytes]:
        stream = self.stream_for(routing_key)
        async with self._client.pipeline(transaction=False) as pipe:
            for body in bodies:
                pipe.xadd(
                    stream,
                    {
                        "routing_key": routing_key,
                        "content_type": "application/json",
                        "body": orjson.dumps(body),
                    },
                    maxlen=self._max_len,
                    approximate=True,
                )
            # execute() espera la respuesta de cada XADD: cada id es una confirmación.
            return await pipe.execute()

    async def publish_documents(self, documents: Sequence[TelemetryDocument]) -> None:
        try:
            ids = await self._publish(TELEMETRY_ROUTING_KEY, (d.to_dict() for d in documents))
        except RedisError as e:
            raise PublishError(f"Telemetry publish failed: {e}") from e

        logger.debug("[PUBLISHER] Published %d telemetry docs", len(ids))

    async def publish_batch(
        self,
        documents: Sequence[TelemetryDocument],
        summary: EventSummaryDocument,
    ) -> None:
        await self.publish_documents(documents)

        try:
            await self._publish(EVENT_ROUTING_KEY, [summary.to_dict()])
        except RedisError as e:
            raise PublishError(f"Event publish failed for {summary.id}: {e}") from e

        logger.debug(
            "[PUBLISHER] Published event=%s count=%d", summary.id, summary.count,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("[PUBLISHER] Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()

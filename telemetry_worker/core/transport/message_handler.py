"""Handler de mensajes MQTT."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Future
from typing import Optional

from ..adapters.dispatcher import FragmentDispatcher, parse_topic
from ..adapters.envelope import decode_envelope
from ..domain.errors import EnvelopeDecodeError
from ..monitoring import metrics
from ..monitoring.stats import Stats
from ..pipeline.processor import TelemetryProcessor

logger = logging.getLogger(__name__)


class MessageHandler:
    """Maneja mensajes MQTT y los procesa a través del pipeline.

    Responsabilidades:
    - Topic → (source_id, canal)
    - Decodificación msgpack + clasificación por canal
    - Delegación al procesador
    - Tracking de estadísticas

    El callback de paho corre en su propio hilo; submit() agenda cada
    mensaje como una tarea independiente en el event loop del worker.
    """

    def __init__(
        self,
        processor: TelemetryProcessor,
        dispatcher: Optional[FragmentDispatcher] = None,
        topic_prefix: str = "telemetry",
        stats: Optional[Stats] = None,
    ):
        self._processor = processor
        self._dispatcher = dispatcher or FragmentDispatcher()
        self._prefix = topic_prefix
        self._stats = stats or processor.stats
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._in_flight = 0

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def submit(self, topic: str, payload: bytes) -> Optional[Future]:
        """Thread-safe: llamado desde el hilo de red de paho."""
        if self._loop is None or self._loop.is_closed():
            logger.warning("[HANDLER] No event loop bound, message dropped (topic=%s)", topic)
            return None
        return asyncio.run_coroutine_threadsafe(self._tracked(topic, payload), self._loop)

    async def _tracked(self, topic: str, payload: bytes) -> bool:
        # El contador solo se toca desde el loop
        self._in_flight += 1
        try:
            return await self.handle(topic, payload)
        finally:
            self._in_flight -= 1

    async def handle(self, topic: str, payload: bytes) -> bool:
        """Procesa un mensaje MQTT."""
        self._stats.received += 1
        self._stats.last_message_at = time.time()

        try:
            parsed = parse_topic(topic, self._prefix)
            if parsed is None or not self._dispatcher.is_known(parsed[1]):
                self._stats.ignored += 1
                metrics.MESSAGES_RECEIVED.labels(status="ignored").inc()
                logger.debug("[HANDLER] Ignored topic=%s", topic)
                return False
            source_id, channel = parsed

            try:
                envelope = decode_envelope(payload)
                record = self._dispatcher.dispatch(source_id, channel, envelope)
            except EnvelopeDecodeError as e:
                logger.warning("[HANDLER] Dropped message: %s (topic=%s)", e, topic)
                self._stats.failed += 1
                metrics.MESSAGES_RECEIVED.labels(status="decode_error").inc()
                return False

            success = await self._processor.process(record)

            if success:
                self._stats.processed += 1
                metrics.MESSAGES_RECEIVED.labels(status="processed").inc()
            else:
                self._stats.failed += 1
                metrics.MESSAGES_RECEIVED.labels(status="failed").inc()

            # Log periódico
            if success and self._stats.processed % 100 == 0:
                logger.info("[HANDLER] %s", self._stats)
            return success

        except Exception as e:
            logger.exception("[HANDLER] Error: %s (topic=%s)", e, topic)
            self._stats.failed += 1
            metrics.MESSAGES_RECEIVED.labels(status="failed").inc()
            return False

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def in_flight(self) -> int:
        return self._in_flight

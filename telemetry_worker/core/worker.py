"""Worker de telemetría - Punto de entrada principal.

Usa la arquitectura modular:
- transport/   → Cliente MQTT (suscripción compartida)
- adapters/    → msgpack → registros de dominio
- buffer/      → Reensamblado de ráfagas en Redis
- metadata/    → Device → asset → sensor (SQL)
- pipeline/    → Composición y orquestación
- broker/      → Publicación a Redis Streams
- monitoring/  → Stats, métricas y health
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import check_connection, get_engine

from .adapters.dispatcher import FragmentDispatcher
from .broker.publisher import RedisStreamPublisher
from .buffer.reassembly import ReassemblyBuffer
from .buffer.redis_store import RedisFragmentStore
from .domain.errors import TransportError
from .metadata.resolver import SqlMetadataResolver
from .monitoring.health import HealthChecker
from .monitoring.stats import Stats
from .pipeline.composer import EventComposer
from .pipeline.processor import TelemetryProcessor
from .transport.message_handler import MessageHandler
from .transport.mqtt_client import MQTTClient

logger = logging.getLogger(__name__)


class TelemetryWorker:
    """Worker MQTT → Redis Streams con arquitectura modular.

    Componentes:
    - MQTTClient: Conexión y suscripción MQTT
    - MessageHandler: Parseo y delegación
    - TelemetryProcessor: buffer + metadata + composer + publisher
    - HealthChecker: estado de BD, buffer, broker y MQTT

    Varias instancias pueden correr en paralelo sobre el mismo Redis: el
    claim atómico del buffer garantiza que cada ráfaga se publica una vez.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._mqtt: Optional[MQTTClient] = None
        self._handler: Optional[MessageHandler] = None
        self._engine: Optional[Engine] = None
        self._store: Optional[RedisFragmentStore] = None
        self._publisher: Optional[RedisStreamPublisher] = None
        self._health: Optional[HealthChecker] = None
        self._stats = Stats()
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._fatal_reason: Optional[str] = None

    async def start(self) -> bool:
        """Inicia el worker."""
        s = self._settings
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._fatal_reason = None

        try:
            # 1. Metadata store
            self._engine = get_engine(s)
            if not await self._loop.run_in_executor(None, check_connection, self._engine):
                logger.error("[WORKER] Database connection failed")
                return False
            logger.info("[WORKER] Database connected")

            # 2. Buffer y broker
            self._store = RedisFragmentStore.from_url(s.redis_url)
            self._publisher = RedisStreamPublisher.from_url(
                s.broker_redis_url,
                exchange=s.broker_exchange,
                max_len=s.broker_stream_maxlen,
            )
            if not await self._store.ping():
                logger.error("[WORKER] Fragment buffer unreachable")
                return False
            if not await self._publisher.ping():
                logger.error("[WORKER] Broker unreachable")
                return False

            # 3. Pipeline
            resolver = SqlMetadataResolver(self._engine, cache_ttl_seconds=s.metadata_cache_ttl_seconds)
            processor = TelemetryProcessor(
                buffer=ReassemblyBuffer(self._store, ttl_seconds=s.fragment_ttl_seconds),
                resolver=resolver,
                composer=EventComposer(default_interval_us=s.default_sample_interval_us),
                publisher=self._publisher,
                writer=resolver,
                clear_after_publish=s.clear_after_publish,
                stats=self._stats,
            )

            # 4. Handler
            self._handler = MessageHandler(
                processor,
                FragmentDispatcher(),
                topic_prefix=s.mqtt_topic_prefix,
                stats=self._stats,
            )
            self._handler.bind_loop(self._loop)

            # 5. Cliente MQTT
            self._mqtt = MQTTClient(
                broker_host=s.mqtt_host,
                broker_port=s.mqtt_port,
                username=s.mqtt_username,
                password=s.mqtt_password,
                client_id=s.mqtt_client_id,
                topic_prefix=s.mqtt_topic_prefix,
                share_group=s.mqtt_share_group,
                use_tls=s.mqtt_tls,
            )
            self._mqtt.set_message_handler(self._handler.submit)
            self._mqtt.set_fatal_handler(self._on_transport_failure)

            # 6. Conectar MQTT (bloqueante, fuera del loop)
            if not await self._loop.run_in_executor(None, self._mqtt.connect):
                logger.error("[WORKER] MQTT connection failed")
                self._fatal_reason = self._fatal_reason or "mqtt connection failed"
                return False

            # 7. Health checker
            self._health = HealthChecker(self._engine, self._store, self._publisher)

            self._running = True
            logger.info(
                "[WORKER] Started successfully (clear_after_publish=%s ttl=%ss)",
                s.clear_after_publish, s.fragment_ttl_seconds,
            )
            return True

        except Exception as e:
            logger.exception("[WORKER] Start failed: %s", e)
            return False

    async def stop(self) -> None:
        """Detiene el worker."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

        if self._mqtt:
            self._mqtt.disconnect()
        if self._store:
            await self._store.close()
        if self._publisher:
            await self._publisher.close()
        if self._engine:
            self._engine.dispose()

        logger.info("[WORKER] Stopped. %s", self._stats)

    def request_stop(self) -> None:
        """Pide la parada de run_forever (p.ej. desde un signal handler)."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self) -> None:
        """Arranca y espera hasta stop o fallo de transporte.

        Raises:
            TransportError: si MQTT no conecta o se pierde de forma fatal
        """
        try:
            if not await self.start():
                raise TransportError(self._fatal_reason or "worker failed to start")
            await self._stop_event.wait()
            if self._fatal_reason:
                raise TransportError(self._fatal_reason)
        finally:
            await self.stop()

    def _on_transport_failure(self, reason: str) -> None:
        # Llamado desde el hilo de paho
        self._fatal_reason = reason
        if self._loop is not None and self._stop_event is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._stop_event.set)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._mqtt.is_connected if self._mqtt else False

    @property
    def fatal_reason(self) -> Optional[str]:
        return self._fatal_reason

    @property
    def stats(self) -> dict:
        """Estadísticas del worker."""
        return {
            "running": self._running,
            "connected": self.is_connected,
            "in_flight": self._handler.in_flight if self._handler else 0,
            **self._stats.to_dict(),
        }

    async def health_check(self) -> dict:
        """Health check del worker."""
        if not self._health:
            return {"healthy": False, "reason": "Not initialized"}

        status = await self._health.get_status(
            mqtt_connected=self.is_connected,
            processed=self._stats.processed,
            failed=self._stats.failed,
        )
        return status.to_dict()


# Singleton
_worker: Optional[TelemetryWorker] = None


def get_worker() -> Optional[TelemetryWorker]:
    """Obtiene el worker singleton."""
    return _worker


def create_worker(settings: Optional[Settings] = None) -> TelemetryWorker:
    """Crea (o devuelve) el worker singleton."""
    global _worker

    if _worker is None:
        _worker = TelemetryWorker(settings)
    return _worker


async def stop_worker() -> None:
    """Detiene el worker singleton."""
    global _worker

    if _worker is not None:
        _worker.request_stop()
        _worker = None

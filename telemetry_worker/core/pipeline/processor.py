"""Procesador principal: registro de dominio → documentos publicados.

Pipeline por registro (o por ráfaga completa):
1. Resolver metadata (device → asset → sensor)
2. Componer documentos
3. Publicar (detalle, luego resumen)
4. Limpiar la clave del buffer

Cada ráfaga tiene su propia frontera de error: un fallo se loguea y
aborta solo esa clave. No hay reintentos automáticos.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from ..broker.publisher import EVENT_ROUTING_KEY, TELEMETRY_ROUTING_KEY, DocumentPublisher
from ..buffer.reassembly import ReassemblyBuffer
from ..domain.errors import FragmentRejectedError, MetadataNotFoundError, PublishError
from ..domain.records import (
    AggregatedRecord,
    BurstRecord,
    FragmentKey,
    LocationRecord,
    Record,
    ResetRecord,
    ScalarRecord,
)
from ..metadata.resolver import MetadataResolver, MetadataWriter, resolve_context
from ..monitoring import metrics
from ..monitoring.stats import Stats
from .composer import EventComposer

logger = logging.getLogger(__name__)


class TelemetryProcessor:
    """Orquesta buffer, resolver, composer y publisher.

    Con clear_after_publish=True (default) la clave se borra solo cuando el
    broker confirmó detalle y resumen; si algo falla se suelta el claim y la
    clave queda en el buffer hasta su TTL (o hasta que un fragmento
    reentregado vuelva a completarla). Con False se usa el orden antiguo:
    drain primero, publicar después.
    """

    def __init__(
        self,
        buffer: ReassemblyBuffer,
        resolver: MetadataResolver,
        composer: EventComposer,
        publisher: DocumentPublisher,
        writer: Optional[MetadataWriter] = None,
        clear_after_publish: bool = True,
        stats: Optional[Stats] = None,
    ):
        self._buffer = buffer
        self._resolver = resolver
        self._composer = composer
        self._publisher = publisher
        self._writer = writer
        self._clear_after_publish = clear_after_publish
        self._stats = stats or Stats()

    @property
    def stats(self) -> Stats:
        return self._stats

    async def process(self, record: Record) -> bool:
        """Procesa un registro del dispatcher.

        Returns:
            True si se procesó (o quedó almacenado a la espera de más fragmentos)
        """
        if isinstance(record, BurstRecord):
            if record.is_single_part:
                return await self._process_single_part_burst(record)
            return await self._process_fragment(record)
        if isinstance(record, (ScalarRecord, AggregatedRecord)):
            return await self._process_measurement(record)
        if isinstance(record, LocationRecord):
            return await self._process_location(record)
        if isinstance(record, ResetRecord):
            return await self._process_reset(record)

        logger.warning("[PIPELINE] Unsupported record type: %s", type(record).__name__)
        return False

    # ------------------------------------------------------------------
    # Mediciones puntuales
    # ------------------------------------------------------------------

    async def _process_measurement(self, record) -> bool:
        start = time.perf_counter()
        try:
            context = await resolve_context(self._resolver, record.source_id, record.sensor_type)
            document = self._composer.compose_single(context, record)
            await self._publisher.publish_documents([document])
        except MetadataNotFoundError as e:
            self._metadata_missing(record.source_id, e)
            return False
        except PublishError as e:
            logger.error("[PIPELINE] Publish failed source=%s: %s", record.source_id, e)
            metrics.PIPELINE_FAILURES.labels(reason="publish_error").inc()
            return False

        self._stats.documents_published += 1
        metrics.DOCUMENTS_PUBLISHED.labels(routing_key=TELEMETRY_ROUTING_KEY).inc()
        metrics.PIPELINE_LATENCY.observe(time.perf_counter() - start)
        logger.debug(
            "[PIPELINE] Published %s source=%s ts=%s",
            record.channel, record.source_id, document.timestamp,
        )
        return True

    # ------------------------------------------------------------------
    # Ráfagas
    # ------------------------------------------------------------------

    async def _process_single_part_burst(self, record: BurstRecord) -> bool:
        """total == 1: no pasa por el buffer."""
        start = time.perf_counter()
        try:
            context = await resolve_context(self._resolver, record.source_id, record.sensor_type)
            event = self._composer.compose_burst(context, list(record.values), record.header)
            await self._publisher.publish_batch(event.documents, event.summary)
        except MetadataNotFoundError as e:
            self._metadata_missing(record.source_id, e)
            return False
        except PublishError as e:
            logger.error("[PIPELINE] Publish failed source=%s: %s", record.source_id, e)
            metrics.PIPELINE_FAILURES.labels(reason="publish_error").inc()
            return False
        except ValueError as e:
            logger.warning("[PIPELINE] Cannot compose burst source=%s: %s", record.source_id, e)
            metrics.PIPELINE_FAILURES.labels(reason="error").inc()
            return False

        self._published(len(event.documents), start)
        return True

    async def _process_fragment(self, record: BurstRecord) -> bool:
        try:
            result = await self._buffer.append_record(record)
        except FragmentRejectedError as e:
            logger.warning("[PIPELINE] Fragment rejected: %s", e)
            metrics.PIPELINE_FAILURES.labels(reason="fragment_rejected").inc()
            return False

        self._stats.fragments_stored += 1
        metrics.FRAGMENTS_STORED.inc()

        if not result.claimed:
            return True

        logger.info(
            "[PIPELINE] Burst complete key=%s parts=%d",
            record.key, result.expected,
        )
        return await self.complete_burst(record.key, record.sensor_type)

    async def complete_burst(self, key: FragmentKey, sensor_type: int) -> bool:
        """resolve → compose → publish → clear para una ráfaga reclamada."""
        self._stats.bursts_completed += 1
        metrics.BURSTS_COMPLETED.inc()
        start = time.perf_counter()

        try:
            context = await resolve_context(self._resolver, key.source_id, sensor_type)

            if self._clear_after_publish:
                burst = await self._buffer.snapshot(key)
            else:
                burst = await self._buffer.drain(key)
            if burst is None:
                logger.warning("[PIPELINE] Burst vanished before composing key=%s", key)
                return False

            event = self._composer.compose_burst(context, burst.values, burst.header)
            await self._publisher.publish_batch(event.documents, event.summary)

        except MetadataNotFoundError as e:
            self._metadata_missing(key.source_id, e)
            await self._release(key)
            return False
        except PublishError as e:
            logger.error("[PIPELINE] Publish failed key=%s: %s", key, e)
            metrics.PIPELINE_FAILURES.labels(reason="publish_error").inc()
            await self._release(key)
            return False
        except Exception as e:
            logger.exception("[PIPELINE] Burst failed key=%s: %s", key, e)
            metrics.PIPELINE_FAILURES.labels(reason="error").inc()
            await self._release(key)
            return False

        if self._clear_after_publish:
            try:
                await self._buffer.clear(key)
            except Exception as e:
                # Ya publicado: la clave (y su claim) caduca por TTL
                logger.warning("[PIPELINE] Could not clear key=%s after publish: %s", key, e)

        self._published(len(event.documents), start)
        logger.info(
            "[PIPELINE] Event published key=%s event=%s count=%d",
            key, event.summary.id, event.summary.count,
        )
        return True

    async def _release(self, key: FragmentKey) -> None:
        if not self._clear_after_publish:
            return
        try:
            await self._buffer.release(key)
        except Exception as e:
            logger.warning("[PIPELINE] Could not release claim key=%s: %s", key, e)

    # ------------------------------------------------------------------
    # Location / reset
    # ------------------------------------------------------------------

    async def _process_location(self, record: LocationRecord) -> bool:
        if self._writer is None:
            logger.debug("[PIPELINE] No metadata writer, location ignored source=%s", record.source_id)
            return False
        try:
            await self._writer.update_geolocation(record.source_id, record.latitude, record.longitude)
        except MetadataNotFoundError as e:
            self._metadata_missing(record.source_id, e)
            return False
        logger.info("[PIPELINE] Geocodes updated source=%s", record.source_id)
        return True

    async def _process_reset(self, record: ResetRecord) -> bool:
        if self._writer is None:
            logger.debug("[PIPELINE] No metadata writer, reset log ignored source=%s", record.source_id)
            return False
        try:
            await self._writer.append_reset_log(record.source_id, record.timestamp_us, record.payload)
        except MetadataNotFoundError as e:
            self._metadata_missing(record.source_id, e)
            return False
        logger.info("[PIPELINE] Device reset data saved source=%s", record.source_id)
        return True

    # ------------------------------------------------------------------

    def _metadata_missing(self, source_id: str, error: MetadataNotFoundError) -> None:
        self._stats.metadata_missing += 1
        metrics.PIPELINE_FAILURES.labels(reason="metadata_not_found").inc()
        logger.warning("[PIPELINE] Aborted source=%s: %s", source_id, error)

    def _published(self, documents: int, start: float) -> None:
        self._stats.documents_published += documents
        self._stats.events_published += 1
        metrics.DOCUMENTS_PUBLISHED.labels(routing_key=TELEMETRY_ROUTING_KEY).inc(documents)
        metrics.DOCUMENTS_PUBLISHED.labels(routing_key=EVENT_ROUTING_KEY).inc()
        metrics.PIPELINE_LATENCY.observe(time.perf_counter() - start)

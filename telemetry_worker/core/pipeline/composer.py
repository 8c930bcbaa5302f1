"""Composición de documentos a partir de valores + contexto enriquecido."""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional, Sequence, Tuple

from ..domain.documents import ComposedEvent, EventSummaryDocument, TagHierarchy, TelemetryDocument
from ..domain.metadata import EnrichmentContext
from ..domain.records import AggregatedRecord, FragmentHeader, MeasurementRecord
from ..timecodec import ONE_SECOND_US

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL_US = 1000


def _new_event_id() -> str:
    return uuid.uuid4().hex


def is_valid_sample_rate(sample_rate: Optional[Tuple[int, int]]) -> bool:
    if not sample_rate:
        return False
    numerator, denominator = sample_rate
    return numerator > 0 and denominator > 0


class EventComposer:
    """Reconstruye timestamps por muestra y arma documentos + resumen.

    timestamp_i = base + i * (1s / (num / den)), en microsegundos enteros.
    Se calcula cada offset desde la base (sin acumular) para no arrastrar
    error de redondeo en ráfagas largas.
    """

    def __init__(
        self,
        default_interval_us: int = DEFAULT_SAMPLE_INTERVAL_US,
        id_factory: Callable[[], str] = _new_event_id,
    ):
        if default_interval_us <= 0:
            raise ValueError("default_interval_us must be positive")
        self._default_interval_us = default_interval_us
        self._id_factory = id_factory

    def offset_us(self, index: int, sample_rate: Optional[Tuple[int, int]]) -> int:
        """Offset de la muestra `index` respecto a la base."""
        if not is_valid_sample_rate(sample_rate):
            return index * self._default_interval_us
        numerator, denominator = sample_rate
        return (index * ONE_SECOND_US * denominator) // numerator

    def compose_burst(
        self,
        context: EnrichmentContext,
        values: Sequence[float],
        header: FragmentHeader,
    ) -> ComposedEvent:
        if not values:
            raise ValueError("Cannot compose an event without values")

        if not is_valid_sample_rate(header.sample_rate):
            logger.info(
                "[COMPOSER] Missing/invalid sample rate %s, using default interval %dus",
                header.sample_rate, self._default_interval_us,
            )

        event_id = self._id_factory()
        tag = TagHierarchy.from_context(context)
        documents = [
            TelemetryDocument(
                timestamp_us=header.timestamp_us + self.offset_us(i, header.sample_rate),
                tag=tag,
                context=context,
                value=value,
                event=event_id,
            )
            for i, value in enumerate(values)
        ]

        summary = EventSummaryDocument(
            id=event_id,
            start_us=documents[0].timestamp_us,
            end_us=documents[-1].timestamp_us,
            count=len(documents),
            tag=tag,
            context=context,
        )
        return ComposedEvent(documents=documents, summary=summary)

    def compose_single(self, context: EnrichmentContext, record: MeasurementRecord) -> TelemetryDocument:
        """Un documento en el timestamp decodificado, sin resumen ni event id."""
        if isinstance(record, AggregatedRecord):
            return TelemetryDocument(
                timestamp_us=record.timestamp_us,
                tag=TagHierarchy.from_context(context),
                context=context,
                value=record.to_values(),
                aggregated=True,
            )
        return TelemetryDocument(
            timestamp_us=record.timestamp_us,
            tag=TagHierarchy.from_context(context),
            context=context,
            value=record.value,
        )

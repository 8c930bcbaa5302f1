"""Domain layer - Modelos y contratos."""

from .documents import ComposedEvent, EventSummaryDocument, TagHierarchy, TelemetryDocument
from .errors import (
    EnvelopeDecodeError,
    FragmentRejectedError,
    MetadataNotFoundError,
    PublishError,
    TelemetryWorkerError,
    TransportError,
)
from .metadata import Asset, Client, Device, EnrichmentContext, Location, Sensor
from .records import (
    AggregatedRecord,
    BurstRecord,
    FragmentHeader,
    FragmentKey,
    LocationRecord,
    Record,
    ResetRecord,
    ScalarRecord,
)

__all__ = [
    "AggregatedRecord",
    "Asset",
    "BurstRecord",
    "Client",
    "ComposedEvent",
    "Device",
    "EnrichmentContext",
    "EnvelopeDecodeError",
    "EventSummaryDocument",
    "FragmentHeader",
    "FragmentKey",
    "FragmentRejectedError",
    "Location",
    "LocationRecord",
    "MetadataNotFoundError",
    "PublishError",
    "Record",
    "ResetRecord",
    "ScalarRecord",
    "Sensor",
    "TagHierarchy",
    "TelemetryDocument",
    "TelemetryWorkerError",
    "TransportError",
]

"""Documentos que se publican al broker.

TelemetryDocument → routing key "telemetry" (uno por muestra)
EventSummaryDocument → routing key "event" (uno por ráfaga)

Ambos comparten el tag y el id de correlación para poder unirlos aguas abajo.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from ..timecodec import format_from_fixed_point
from .metadata import EnrichmentContext


@dataclass(frozen=True)
class TagHierarchy:
    client: str
    location: str
    asset: str
    sensor: str

    @property
    def full(self) -> str:
        return f"{self.location}_{self.asset}_{self.sensor}"

    @classmethod
    def from_context(cls, context: EnrichmentContext) -> "TagHierarchy":
        return cls(
            client=context.client.tag_code,
            location=context.location.tag_code,
            asset=context.asset.tag_code,
            sensor=context.sensor.tag_code,
        )

    def to_dict(self) -> dict:
        return {
            "full": self.full,
            "clientTagCode": self.client,
            "locationTagCode": self.location,
            "assetTagCode": self.asset,
            "sensorTagCode": self.sensor,
        }


@dataclass(frozen=True)
class TelemetryDocument:
    timestamp_us: int
    tag: TagHierarchy
    context: EnrichmentContext
    value: Any
    event: Optional[str] = None
    aggregated: bool = False

    @property
    def timestamp(self) -> str:
        return format_from_fixed_point(self.timestamp_us)

    def to_dict(self) -> dict:
        asset = self.context.asset
        location = self.context.location
        device = self.context.device
        sensor = self.context.sensor
        data: dict = {"unit": sensor.unit}
        if self.aggregated:
            data["values"] = self.value
        else:
            data["value"] = self.value

        return {
            "timestamp": self.timestamp,
            "timestamp_us": self.timestamp_us,
            "tag": self.tag.to_dict(),
            "asset": {
                "_id": asset.id,
                "tagCode": asset.tag_code,
                "name": asset.name,
                "description": asset.description,
                "location": {
                    "tagCode": location.tag_code,
                    "description": location.description,
                    "geolocation": list(location.geolocation) if location.geolocation else None,
                },
            },
            "device": {
                "_id": device.id,
                "serialNumber": device.serial_number,
                "type": device.type,
                "description": device.description,
            },
            "sensor": {
                "_id": sensor.id,
                "type": sensor.type,
                "typeString": sensor.type_string,
                "description": sensor.description,
                "unit": sensor.unit,
            },
            "client": self.context.client.id,
            "event": self.event,
            "data": data,
        }


@dataclass(frozen=True)
class EventSummaryDocument:
    id: str
    start_us: int
    end_us: int
    count: int
    tag: TagHierarchy
    context: EnrichmentContext

    @property
    def description(self) -> str:
        return f"{self.context.sensor.type_string} event"

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "start": format_from_fixed_point(self.start_us),
            "end": format_from_fixed_point(self.end_us),
            "count": self.count,
            "description": self.description,
            "tag": self.tag.to_dict(),
            "asset": self.context.asset.id,
            "device": self.context.device.id,
            "sensor": self.context.sensor.id,
            "client": self.context.client.id,
        }


@dataclass(frozen=True)
class ComposedEvent:
    documents: List[TelemetryDocument]
    summary: EventSummaryDocument

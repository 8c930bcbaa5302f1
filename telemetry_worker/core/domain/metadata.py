"""Snapshots de metadata: client → device → asset → location, sensor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Client:
    id: str
    tag_code: str
    name: Optional[str] = None


@dataclass(frozen=True)
class Location:
    id: str
    tag_code: str
    description: Optional[str] = None
    geolocation: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class Asset:
    id: str
    tag_code: str
    location: Location
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Device:
    id: str
    topic_id: str
    client: Client
    asset_id: Optional[str] = None
    serial_number: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Sensor:
    id: str
    type: int
    tag_code: str
    type_string: str
    unit: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class EnrichmentContext:
    """Todo lo que el composer necesita para construir documentos."""
    device: Device
    asset: Asset
    sensor: Sensor

    @property
    def client(self) -> Client:
        return self.device.client

    @property
    def location(self) -> Location:
        return self.asset.location

"""Registros normalizados que produce el dispatcher.

Unión etiquetada: cada canal MQTT produce exactamente una de estas
variantes. El resto del pipeline hace dispatch por tipo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union

from ..timecodec import to_millisecond_bucket


@dataclass(frozen=True)
class ScalarRecord:
    """Lectura puntual de un sensor."""
    channel: str
    source_id: str
    timestamp_us: int
    sensor_type: int
    value: float


@dataclass(frozen=True)
class AggregatedRecord:
    """Ventana agregada: min/max/avg/n y opcionalmente el valor puntual."""
    channel: str
    source_id: str
    timestamp_us: int
    sensor_type: int
    value: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None
    n: Optional[int] = None

    def to_values(self) -> dict:
        return {
            "min": self.min,
            "max": self.max,
            "average": self.avg,
            "point": self.value,
            "samples": self.n,
        }


@dataclass(frozen=True)
class BurstRecord:
    """Un fragmento de una ráfaga multi-parte (part_index es 1-based)."""
    channel: str
    source_id: str
    timestamp_us: int
    sensor_type: int
    part_index: int
    part_total: int
    values: Tuple[float, ...]
    sample_rate: Optional[Tuple[int, int]] = None

    @property
    def is_single_part(self) -> bool:
        return self.part_total == 1

    @property
    def key(self) -> "FragmentKey":
        return FragmentKey(
            bucket_ms=to_millisecond_bucket(self.timestamp_us),
            source_id=self.source_id,
            channel=self.channel,
        )

    @property
    def header(self) -> "FragmentHeader":
        return FragmentHeader(sample_rate=self.sample_rate, timestamp_us=self.timestamp_us)


@dataclass(frozen=True)
class LocationRecord:
    channel: str
    source_id: str
    timestamp_us: int
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ResetRecord:
    """Log de reset del dispositivo; payload opaco."""
    channel: str
    source_id: str
    timestamp_us: int
    payload: Any = field(default=None)


Record = Union[ScalarRecord, AggregatedRecord, BurstRecord, LocationRecord, ResetRecord]
MeasurementRecord = Union[ScalarRecord, AggregatedRecord]


@dataclass(frozen=True)
class FragmentKey:
    """Identifica una ráfaga en vuelo: bucket de tiempo + fuente (+ canal)."""
    bucket_ms: int
    source_id: str
    channel: str

    def redis_key(self, prefix: str = "fragments") -> str:
        return f"{prefix}:{self.channel}:{self.source_id}:{self.bucket_ms}"

    def __str__(self) -> str:
        return self.redis_key()


@dataclass(frozen=True)
class FragmentHeader:
    """Cabecera de la ráfaga: sample rate racional y timestamp base (µs)."""
    sample_rate: Optional[Tuple[int, int]]
    timestamp_us: int

    def to_dict(self) -> dict:
        return {
            "samplerate": list(self.sample_rate) if self.sample_rate else None,
            "timestamp": self.timestamp_us,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FragmentHeader":
        rate = data.get("samplerate")
        return cls(
            sample_rate=tuple(rate) if rate else None,
            timestamp_us=int(data["timestamp"]),
        )

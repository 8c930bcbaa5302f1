"""Decodificación y validación de envelopes binarios (msgpack).

Cada canal tiene un schema pydantic; un payload que no encaja en el
schema de su canal se rechaza con EnvelopeDecodeError en vez de
comprobar campos sueltos más adelante.

Formato burst esperado:
{
    "date": <timestamp msgpack | "2024-03-01T10:00:00.123456Z">,
    "part": [1, 3],
    "value": [0.12, 0.13, ...],
    "sample-rate": [2000, 1]
}
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, List, Optional, Tuple, Union

import msgpack
from msgpack.exceptions import UnpackException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..domain.errors import EnvelopeDecodeError
from ..timecodec import datetime_to_fixed_point, parse_to_fixed_point

logger = logging.getLogger(__name__)


def decode_envelope(payload: bytes) -> dict:
    """Decodifica el payload msgpack a dict.

    Los timestamps con la extensión msgpack -1 llegan como datetime UTC.
    """
    try:
        data = msgpack.unpackb(payload, raw=False, timestamp=3)
    except (UnpackException, ValueError, TypeError) as e:
        raise EnvelopeDecodeError(f"Undecodable envelope: {e}") from e

    if not isinstance(data, dict):
        raise EnvelopeDecodeError(f"Envelope must be a map, got {type(data).__name__}")
    return data


def _check_finite(v: Optional[float]) -> Optional[float]:
    if v is None:
        return v
    if math.isnan(v):
        raise ValueError("Value is NaN")
    if math.isinf(v):
        raise ValueError("Value is infinite")
    return v


def _is_integral(x: Any) -> bool:
    if isinstance(x, bool):
        return False
    return isinstance(x, int) or (isinstance(x, float) and x.is_integer())


class _TimestampedEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    timestamp: Union[datetime, str] = Field(validation_alias=AliasChoices("date", "timestamp"))

    @property
    def timestamp_us(self) -> int:
        """Timestamp base en microsegundos (conserva los dígitos sub-ms)."""
        if isinstance(self.timestamp, datetime):
            return datetime_to_fixed_point(self.timestamp)
        return parse_to_fixed_point(self.timestamp)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v):
        if isinstance(v, str):
            # Valida formato/precisión en el momento de decodificar.
            parse_to_fixed_point(v)
        return v


class MeasurementEnvelope(_TimestampedEnvelope):
    """Lectura escalar o ventana agregada (min/max/avg/n)."""

    value: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None
    n: Optional[int] = Field(default=None, ge=0)

    @field_validator("value", "min", "max", "avg")
    @classmethod
    def validate_finite(cls, v):
        return _check_finite(v)

    @model_validator(mode="after")
    def require_measurement(self):
        if self.value is None and not self.is_aggregated:
            raise ValueError("Measurement needs 'value' or min/max/avg/n")
        return self

    @property
    def is_aggregated(self) -> bool:
        return any(x is not None for x in (self.min, self.max, self.avg, self.n))


class BurstEnvelope(_TimestampedEnvelope):
    """Fragmento de ráfaga: part = [índice 1-based, total]."""

    part: Tuple[int, int]
    value: List[float]
    sample_rate: Optional[Tuple[int, int]] = Field(
        default=None,
        validation_alias=AliasChoices("sample-rate", "sample_rate", "samplerate"),
    )

    @field_validator("value")
    @classmethod
    def validate_values(cls, v):
        for item in v:
            _check_finite(item)
        return v

    @field_validator("sample_rate", mode="before")
    @classmethod
    def coerce_sample_rate(cls, v):
        """Un sample-rate malformado se descarta (None): intervalo por defecto."""
        if v is None:
            return None
        if isinstance(v, (list, tuple)) and len(v) == 2 and all(_is_integral(x) for x in v):
            return tuple(int(x) for x in v)
        logger.warning("[ENVELOPE] Malformed sample-rate %r, using default interval", v)
        return None

    @model_validator(mode="after")
    def validate_part(self):
        index, total = self.part
        if total < 1:
            raise ValueError(f"Part total must be >= 1, got {total}")
        if not 1 <= index <= total:
            raise ValueError(f"Part index {index} outside 1..{total}")
        return self


class LocationEnvelope(_TimestampedEnvelope):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class ResetEnvelope(_TimestampedEnvelope):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def opaque_payload(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

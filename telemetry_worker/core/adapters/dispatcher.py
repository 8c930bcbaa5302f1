"""Dispatcher de fragmentos: canal MQTT + envelope → registro de dominio.

No hace I/O ni tiene efectos secundarios. Canales desconocidos → None.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import ValidationError

from ..domain.errors import EnvelopeDecodeError
from ..domain.records import (
    AggregatedRecord,
    BurstRecord,
    LocationRecord,
    Record,
    ResetRecord,
    ScalarRecord,
)
from .envelope import (
    BurstEnvelope,
    LocationEnvelope,
    MeasurementEnvelope,
    ResetEnvelope,
)

logger = logging.getLogger(__name__)


class ChannelKind(Enum):
    MEASUREMENT = "measurement"
    BURST = "burst"
    LOCATION = "location"
    RESET = "reset"


# canal → (tipo de payload, código de tipo de sensor)
CHANNELS: Dict[str, Tuple[ChannelKind, Optional[int]]] = {
    "pressure": (ChannelKind.MEASUREMENT, 1),
    "temperature": (ChannelKind.MEASUREMENT, 2),
    "battery": (ChannelKind.MEASUREMENT, 3),
    "signal-strength": (ChannelKind.MEASUREMENT, 4),
    "location": (ChannelKind.LOCATION, None),
    "reset-log": (ChannelKind.RESET, None),
    "burst-event": (ChannelKind.BURST, 1),
    "acoustic-burst": (ChannelKind.BURST, 11),
    "acoustic-summary": (ChannelKind.MEASUREMENT, 12),
}

CHANNEL_SENSOR_TYPES: Dict[str, int] = {
    name: sensor_type for name, (_, sensor_type) in CHANNELS.items() if sensor_type is not None
}


def parse_topic(topic: str, prefix: str = "telemetry") -> Optional[Tuple[str, str]]:
    """Extrae (source_id, canal) de '{prefix}/{source_id}/{canal}'."""
    parts = topic.strip("/").split("/")
    prefix_parts = prefix.strip("/").split("/") if prefix else []

    if parts[: len(prefix_parts)] != prefix_parts:
        return None
    rest = parts[len(prefix_parts):]
    if len(rest) != 2 or not rest[0] or not rest[1]:
        return None
    return rest[0], rest[1]


class FragmentDispatcher:
    """Clasifica un envelope según su canal y produce un registro normalizado."""

    def __init__(self, channels: Optional[Dict[str, Tuple[ChannelKind, Optional[int]]]] = None):
        self._channels = channels or CHANNELS

    def is_known(self, channel: str) -> bool:
        return channel in self._channels

    def dispatch(self, source_id: str, channel: str, envelope: dict) -> Optional[Record]:
        """Convierte un envelope decodificado en un registro.

        Returns:
            Registro de dominio, o None si el canal no se reconoce

        Raises:
            EnvelopeDecodeError: el envelope no tiene la forma del canal
        """
        entry = self._channels.get(channel)
        if entry is None:
            return None

        kind, sensor_type = entry
        try:
            if kind is ChannelKind.BURST:
                return self._burst(source_id, channel, sensor_type, envelope)
            if kind is ChannelKind.MEASUREMENT:
                return self._measurement(source_id, channel, sensor_type, envelope)
            if kind is ChannelKind.LOCATION:
                loc = LocationEnvelope.model_validate(envelope)
                return LocationRecord(
                    channel=channel,
                    source_id=source_id,
                    timestamp_us=loc.timestamp_us,
                    latitude=loc.latitude,
                    longitude=loc.longitude,
                )
            reset = ResetEnvelope.model_validate(envelope)
            return ResetRecord(
                channel=channel,
                source_id=source_id,
                timestamp_us=reset.timestamp_us,
                payload=reset.opaque_payload(),
            )
        except ValidationError as e:
            raise EnvelopeDecodeError(
                f"Invalid {channel} envelope from {source_id}: {e.error_count()} error(s): "
                + "; ".join(err["msg"] for err in e.errors())
            ) from e

    def _burst(self, source_id: str, channel: str, sensor_type: int, envelope: dict) -> BurstRecord:
        burst = BurstEnvelope.model_validate(envelope)
        index, total = burst.part
        return BurstRecord(
            channel=channel,
            source_id=source_id,
            timestamp_us=burst.timestamp_us,
            sensor_type=sensor_type,
            part_index=index,
            part_total=total,
            values=tuple(burst.value),
            sample_rate=burst.sample_rate,
        )

    def _measurement(self, source_id: str, channel: str, sensor_type: int, envelope: dict) -> Record:
        m = MeasurementEnvelope.model_validate(envelope)
        if m.is_aggregated:
            return AggregatedRecord(
                channel=channel,
                source_id=source_id,
                timestamp_us=m.timestamp_us,
                sensor_type=sensor_type,
                value=m.value,
                min=m.min,
                max=m.max,
                avg=m.avg,
                n=m.n,
            )
        return ScalarRecord(
            channel=channel,
            source_id=source_id,
            timestamp_us=m.timestamp_us,
            sensor_type=sensor_type,
            value=m.value,
        )

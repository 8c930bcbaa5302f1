"""Excepciones del worker de telemetría."""

from __future__ import annotations

from typing import Any


class TelemetryWorkerError(Exception):
    """Base de todos los errores del worker."""


class EnvelopeDecodeError(TelemetryWorkerError):
    """Payload ilegible o con forma inválida para su canal. Se descarta."""


class FragmentRejectedError(TelemetryWorkerError):
    """Fragmento incompatible con la ráfaga ya almacenada (índice fuera de rango)."""

    def __init__(self, key: str, part_index: int, expected_total: int):
        super().__init__(
            f"Fragment {part_index} out of range 1..{expected_total} for {key}"
        )
        self.key = key
        self.part_index = part_index
        self.expected_total = expected_total


class MetadataNotFoundError(TelemetryWorkerError):
    """Una de las búsquedas de metadata (device/asset/sensor) no encontró nada."""

    def __init__(self, kind: str, lookup: Any):
        super().__init__(f"{kind} not found: {lookup!r}")
        self.kind = kind
        self.lookup = lookup


class PublishError(TelemetryWorkerError):
    """El broker no confirmó la publicación de documentos."""


class TransportError(TelemetryWorkerError):
    """Fallo de conexión MQTT. Es fatal para el proceso."""

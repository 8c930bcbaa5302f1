"""Worker de telemetría: MQTT → reensamblado → enriquecimiento → Redis Streams."""

__version__ = "0.1.0"

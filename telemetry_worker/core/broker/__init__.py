"""Broker layer - Publicación de documentos a Redis Streams."""

from .publisher import (
    EVENT_ROUTING_KEY,
    TELEMETRY_ROUTING_KEY,
    DocumentPublisher,
    RedisStreamPublisher,
)

__all__ = [
    "EVENT_ROUTING_KEY",
    "TELEMETRY_ROUTING_KEY",
    "DocumentPublisher",
    "RedisStreamPublisher",
]

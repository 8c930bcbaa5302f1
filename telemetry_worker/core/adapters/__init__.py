"""Adapters - Envelope MQTT → registros de dominio."""

from .dispatcher import CHANNEL_SENSOR_TYPES, CHANNELS, ChannelKind, FragmentDispatcher, parse_topic
from .envelope import decode_envelope

__all__ = [
    "CHANNEL_SENSOR_TYPES",
    "CHANNELS",
    "ChannelKind",
    "FragmentDispatcher",
    "decode_envelope",
    "parse_topic",
]

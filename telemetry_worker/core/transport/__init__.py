"""Transport layer - Recepción de datos MQTT."""

from .message_handler import MessageHandler
from .mqtt_client import MQTTClient, build_subscription

__all__ = ["MQTTClient", "MessageHandler", "build_subscription"]

"""Cliente MQTT para recepción de telemetría."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from ..monitoring import metrics

logger = logging.getLogger(__name__)


def build_subscription(prefix: str, share_group: Optional[str] = None) -> str:
    """Topic de suscripción; con share_group el broker reparte entre workers."""
    topic = f"{prefix.strip('/')}/+/+"
    if share_group:
        return f"$share/{share_group}/{topic}"
    return topic


class MQTTClient:
    """Cliente MQTT ligero para recepción de telemetría.

    Responsabilidades:
    - Conexión/desconexión a broker MQTT
    - Suscripción (compartida) a los canales de telemetría
    - Delegación de mensajes a handler
    - Señalar fallos de conexión como fatales
    """

    def __init__(
        self,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "worker-telemetry",
        topic_prefix: str = "telemetry",
        share_group: Optional[str] = None,
        use_tls: bool = False,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"
        self.subscription = build_subscription(topic_prefix, share_group)
        self.use_tls = use_tls

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._message_handler: Optional[Callable[[str, bytes], None]] = None
        self._fatal_handler: Optional[Callable[[str], None]] = None

    def set_message_handler(self, handler: Callable[[str, bytes], None]):
        """Configura el handler de mensajes."""
        self._message_handler = handler

    def set_fatal_handler(self, handler: Callable[[str], None]):
        """Callback para fallos de conexión (el proceso debe terminar)."""
        self._fatal_handler = handler

    def connect(self, timeout: float = 5.0) -> bool:
        """Conecta al broker MQTT."""
        try:
            self._client = mqtt.Client(
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            self._client.on_connect = self._on_connect
            self._client.on_connect_fail = self._on_connect_fail
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.username:
                self._client.username_pw_set(self.username, self.password)
            if self.use_tls:
                self._client.tls_set()

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
            self._client.connect(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()

            # Esperar conexión
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline:
                if self._connected:
                    return True
                time.sleep(0.1)

            logger.error("[MQTT] Connection timeout")
            return False

        except (OSError, ValueError) as e:
            logger.error(
                "[MQTT] Error connecting to %s:%d with username %s - %s",
                self.broker_host, self.broker_port, self.username, e,
            )
            return False

    def disconnect(self):
        """Desconecta del broker."""
        if self._client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except Exception as e:
                logger.warning("[MQTT] Disconnect error: %s", e)
        self._connected = False
        metrics.MQTT_CONNECTED.set(0)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de conexión."""
        if reason_code.is_failure:
            self._connected = False
            logger.error("[MQTT] Connection refused: %s", reason_code)
            self._fatal(f"connection refused: {reason_code}")
            return

        self._connected = True
        metrics.MQTT_CONNECTED.set(1)
        logger.info("[MQTT] Connected to broker")
        client.subscribe(self.subscription, qos=1)
        logger.info("[MQTT] Subscribed to %s", self.subscription)

    def _on_connect_fail(self, client, userdata):
        self._connected = False
        logger.error("[MQTT] Connection failed to %s:%d", self.broker_host, self.broker_port)
        self._fatal("connection failed")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback de desconexión."""
        self._connected = False
        metrics.MQTT_CONNECTED.set(0)
        logger.warning("[MQTT] Disconnected (%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje - delega al handler."""
        if self._message_handler:
            self._message_handler(msg.topic, msg.payload)

    def _fatal(self, reason: str) -> None:
        if self._fatal_handler:
            self._fatal_handler(reason)

    @property
    def is_connected(self) -> bool:
        return self._connected

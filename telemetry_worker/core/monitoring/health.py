"""Health checks del sistema."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from common.db import check_connection

from ..broker.publisher import DocumentPublisher
from ..buffer.store import FragmentStore


@dataclass
class HealthStatus:
    """Estado de salud del sistema."""
    healthy: bool
    mqtt_connected: bool
    db_connected: bool
    buffer_connected: bool
    broker_connected: bool
    messages_processed: int
    messages_failed: int

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "mqtt_connected": self.mqtt_connected,
            "db_connected": self.db_connected,
            "buffer_connected": self.buffer_connected,
            "broker_connected": self.broker_connected,
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
        }


class HealthChecker:
    """Verifica el estado de salud del sistema."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        store: Optional[FragmentStore] = None,
        publisher: Optional[DocumentPublisher] = None,
    ):
        self._engine = engine
        self._store = store
        self._publisher = publisher

    async def check_database(self) -> bool:
        """Verifica conexión a BD."""
        if not self._engine:
            return False
        return await asyncio.get_running_loop().run_in_executor(None, check_connection, self._engine)

    async def get_status(
        self,
        mqtt_connected: bool,
        processed: int,
        failed: int,
    ) -> HealthStatus:
        """Obtiene estado de salud completo."""
        db_ok = await self.check_database()
        buffer_ok = await self._store.ping() if self._store else False
        broker_ok = await self._publisher.ping() if self._publisher else False

        return HealthStatus(
            healthy=mqtt_connected and db_ok and buffer_ok and broker_ok,
            mqtt_connected=mqtt_connected,
            db_connected=db_ok,
            buffer_connected=buffer_ok,
            broker_connected=broker_ok,
            messages_processed=processed,
            messages_failed=failed,
        )

"""Resolución de metadata: source_id → device → asset → location, tipo → sensor.

Mantiene un caché en memoria con TTL y límite LRU para el hot path; las
queries se ejecutan en el executor por defecto para no bloquear el loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Protocol, TypeVar

import orjson
from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..domain.errors import MetadataNotFoundError
from ..domain.metadata import Asset, Client, Device, EnrichmentContext, Location, Sensor

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 10000

T = TypeVar("T")


class MetadataResolver(Protocol):
    """Búsquedas de solo lectura que usa el pipeline, en este orden."""

    async def get_device(self, source_id: str) -> Device:
        ...

    async def get_asset(self, asset_id: str) -> Asset:
        ...

    async def get_sensor(self, sensor_type: int) -> Sensor:
        ...


class MetadataWriter(Protocol):
    async def update_geolocation(self, source_id: str, latitude: float, longitude: float) -> None:
        ...

    async def append_reset_log(self, source_id: str, timestamp_us: int, payload: Any) -> None:
        ...


async def resolve_context(resolver: MetadataResolver, source_id: str, sensor_type: int) -> EnrichmentContext:
    """device → asset → sensor. Cualquier búsqueda vacía aborta con MetadataNotFoundError."""
    device = await resolver.get_device(source_id)
    if not device.asset_id:
        raise MetadataNotFoundError("asset", f"device {device.id} has no asset")
    asset = await resolver.get_asset(device.asset_id)
    sensor = await resolver.get_sensor(sensor_type)
    return EnrichmentContext(device=device, asset=asset, sensor=sensor)


class _TTLCache(Generic[T]):
    """Caché LRU con TTL por entrada."""

    def __init__(self, ttl_seconds: int, max_size: int = MAX_CACHE_SIZE):
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._data: "OrderedDict[Hashable, tuple[T, float]]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[T]:
        cached = self._data.get(key)
        if cached is None:
            return None
        value, expires_at = cached
        if expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        self._data.move_to_end(key)
        return value

    def put(self, key: Hashable, value: T) -> None:
        if self._ttl <= 0:
            return
        # Evitar memory leak: eliminar entradas más antiguas si excede límite
        while len(self._data) >= self._max_size:
            self._data.popitem(last=False)
        self._data[key] = (value, time.monotonic() + self._ttl)

    def pop(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class SqlMetadataResolver:
    """Resolver + writer sobre el metadata store SQL (SQLAlchemy Core).

    Tablas: clients, locations, assets, devices, sensors, device_resets.
    """

    def __init__(self, engine: Engine, cache_ttl_seconds: int = 300):
        self._engine = engine
        self._devices: _TTLCache[Device] = _TTLCache(cache_ttl_seconds)
        self._assets: _TTLCache[Asset] = _TTLCache(cache_ttl_seconds)
        self._sensors: _TTLCache[Sensor] = _TTLCache(cache_ttl_seconds)

    async def _run(self, fn: Callable[..., T], *args) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, fn, *args)

    # ------------------------------------------------------------------
    # Lecturas
    # ------------------------------------------------------------------

    async def get_device(self, source_id: str) -> Device:
        device = self._devices.get(source_id)
        if device is None:
            device = await self._run(self._query_device, source_id)
            self._devices.put(source_id, device)
        return device

    async def get_asset(self, asset_id: str) -> Asset:
        asset = self._assets.get(asset_id)
        if asset is None:
            asset = await self._run(self._query_asset, asset_id)
            self._assets.put(asset_id, asset)
        return asset

    async def get_sensor(self, sensor_type: int) -> Sensor:
        sensor = self._sensors.get(sensor_type)
        if sensor is None:
            sensor = await self._run(self._query_sensor, sensor_type)
            self._sensors.put(sensor_type, sensor)
        return sensor

    def _query_device(self, source_id: str) -> Device:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    "SELECT d.id, d.topic_id, d.serial_number, d.type, d.description, d.asset_id, "
                    "c.id AS client_id, c.tag_code AS client_tag_code, c.name AS client_name "
                    "FROM devices d "
                    "JOIN clients c ON c.id = d.client_id "
                    "WHERE d.topic_id = :topic_id"
                ),
                {"topic_id": source_id},
            ).mappings().first()

        if row is None:
            raise MetadataNotFoundError("device", source_id)

        return Device(
            id=str(row["id"]),
            topic_id=str(row["topic_id"]),
            client=Client(
                id=str(row["client_id"]),
                tag_code=row["client_tag_code"],
                name=row["client_name"],
            ),
            asset_id=str(row["asset_id"]) if row["asset_id"] is not None else None,
            serial_number=row["serial_number"],
            type=row["type"],
            description=row["description"],
        )

    def _query_asset(self, asset_id: str) -> Asset:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    "SELECT a.id, a.tag_code, a.name, a.description, "
                    "l.id AS location_id, l.tag_code AS location_tag_code, "
                    "l.description AS location_description, l.latitude, l.longitude "
                    "FROM assets a "
                    "JOIN locations l ON l.id = a.location_id "
                    "WHERE a.id = :asset_id"
                ),
                {"asset_id": asset_id},
            ).mappings().first()

        if row is None:
            raise MetadataNotFoundError("asset", asset_id)

        geolocation = None
        if row["latitude"] is not None and row["longitude"] is not None:
            geolocation = (float(row["latitude"]), float(row["longitude"]))

        return Asset(
            id=str(row["id"]),
            tag_code=row["tag_code"],
            name=row["name"],
            description=row["description"],
            location=Location(
                id=str(row["location_id"]),
                tag_code=row["location_tag_code"],
                description=row["location_description"],
                geolocation=geolocation,
            ),
        )

    def _query_sensor(self, sensor_type: int) -> Sensor:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(
                    "SELECT id, type, type_string, tag_code, description, unit "
                    "FROM sensors WHERE type = :sensor_type"
                ),
                {"sensor_type": int(sensor_type)},
            ).mappings().first()

        if row is None:
            raise MetadataNotFoundError("sensor", sensor_type)

        return Sensor(
            id=str(row["id"]),
            type=int(row["type"]),
            tag_code=row["tag_code"],
            type_string=row["type_string"],
            unit=row["unit"],
            description=row["description"],
        )

    # ------------------------------------------------------------------
    # Escrituras (canales location y reset-log)
    # ------------------------------------------------------------------

    async def update_geolocation(self, source_id: str, latitude: float, longitude: float) -> None:
        asset_id = await self._run(self._update_geolocation, source_id, latitude, longitude)
        if asset_id is not None:
            self._assets.pop(asset_id)

    def _update_geolocation(self, source_id: str, latitude: float, longitude: float) -> Optional[str]:
        now = datetime.now(timezone.utc)
        params = {"topic_id": source_id, "lat": latitude, "lon": longitude, "now": now}

        with self._engine.begin() as conn:
            device = conn.execute(
                text("SELECT id, asset_id FROM devices WHERE topic_id = :topic_id"),
                {"topic_id": source_id},
            ).mappings().first()
            if device is None:
                raise MetadataNotFoundError("device", source_id)

            conn.execute(
                text(
                    "UPDATE devices SET latitude = :lat, longitude = :lon, updated_at = :now "
                    "WHERE topic_id = :topic_id"
                ),
                params,
            )

            if device["asset_id"] is None:
                return None

            conn.execute(
                text(
                    "UPDATE locations SET latitude = :lat, longitude = :lon, updated_at = :now "
                    "WHERE id = (SELECT location_id FROM assets WHERE id = :asset_id)"
                ),
                {**params, "asset_id": device["asset_id"]},
            )

        logger.debug("[METADATA] Geolocation updated device=%s", source_id)
        return str(device["asset_id"])

    async def append_reset_log(self, source_id: str, timestamp_us: int, payload: Any) -> None:
        await self._run(self._append_reset_log, source_id, timestamp_us, payload)

    def _append_reset_log(self, source_id: str, timestamp_us: int, payload: Any) -> None:
        body = orjson.dumps(payload, default=_json_default).decode()

        with self._engine.begin() as conn:
            device = conn.execute(
                text("SELECT id FROM devices WHERE topic_id = :topic_id"),
                {"topic_id": source_id},
            ).first()
            if device is None:
                raise MetadataNotFoundError("device", source_id)

            conn.execute(
                text(
                    "INSERT INTO device_resets (device_id, reset_timestamp_us, payload, created_at) "
                    "VALUES (:device_id, :ts, :payload, :now)"
                ),
                {
                    "device_id": device[0],
                    "ts": int(timestamp_us),
                    "payload": body,
                    "now": datetime.now(timezone.utc),
                },
            )
            conn.execute(
                text("UPDATE devices SET updated_at = :now WHERE id = :device_id"),
                {"device_id": device[0], "now": datetime.now(timezone.utc)},
            )

        logger.debug("[METADATA] Reset log saved device=%s", source_id)

    def clear_cache(self) -> None:
        """Limpia los cachés (útil para testing)."""
        self._devices.clear()
        self._assets.clear()
        self._sensors.clear()

    @property
    def cache_stats(self) -> Dict[str, int]:
        return {
            "devices": len(self._devices),
            "assets": len(self._assets),
            "sensors": len(self._sensors),
        }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    return str(obj)

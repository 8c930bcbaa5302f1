"""Tests del resolver SQL de metadata (SQLite en memoria)."""

import orjson
import pytest
from sqlalchemy import text

from telemetry_worker.core.domain import MetadataNotFoundError
from telemetry_worker.core.metadata import SqlMetadataResolver, resolve_context

from conftest import BASE_US


@pytest.fixture
def resolver(engine) -> SqlMetadataResolver:
    return SqlMetadataResolver(engine, cache_ttl_seconds=300)


# =============================================================================
# LECTURAS
# =============================================================================

class TestLookups:

    @pytest.mark.asyncio
    async def test_device(self, resolver):
        device = await resolver.get_device("dev-1")
        assert device.id == "30"
        assert device.asset_id == "20"
        assert device.client.tag_code == "CLI"

    @pytest.mark.asyncio
    async def test_asset_with_location(self, resolver):
        asset = await resolver.get_asset("20")
        assert asset.tag_code == "AST"
        assert asset.location.tag_code == "LOC"
        assert asset.location.geolocation == (40.4, -3.7)

    @pytest.mark.asyncio
    async def test_sensor_by_type(self, resolver):
        sensor = await resolver.get_sensor(11)
        assert sensor.type_string == "acoustic"
        assert sensor.unit == "dB"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("call, arg, kind", [
        ("get_device", "unknown", "device"),
        ("get_asset", "999", "asset"),
        ("get_sensor", 99, "sensor"),
    ])
    async def test_not_found(self, resolver, call, arg, kind):
        with pytest.raises(MetadataNotFoundError) as exc_info:
            await getattr(resolver, call)(arg)
        assert exc_info.value.kind == kind

    @pytest.mark.asyncio
    async def test_cache_hit(self, resolver, engine):
        await resolver.get_device("dev-1")
        with engine.begin() as conn:
            conn.execute(text("DELETE FROM devices WHERE topic_id = 'dev-1'"))

        assert (await resolver.get_device("dev-1")).id == "30"
        assert resolver.cache_stats["devices"] == 1

        resolver.clear_cache()
        with pytest.raises(MetadataNotFoundError):
            await resolver.get_device("dev-1")

    @pytest.mark.asyncio
    async def test_cache_disabled(self, engine):
        resolver = SqlMetadataResolver(engine, cache_ttl_seconds=0)
        await resolver.get_sensor(1)
        assert resolver.cache_stats["sensors"] == 0


class TestResolveContext:

    @pytest.mark.asyncio
    async def test_full_chain(self, resolver):
        context = await resolve_context(resolver, "dev-1", 1)
        assert context.client.id == "1"
        assert context.location.tag_code == "LOC"
        assert context.sensor.tag_code == "PRS"

    @pytest.mark.asyncio
    async def test_device_without_asset(self, resolver):
        with pytest.raises(MetadataNotFoundError) as exc_info:
            await resolve_context(resolver, "dev-orphan", 1)
        assert exc_info.value.kind == "asset"


# =============================================================================
# ESCRITURAS
# =============================================================================

class TestWrites:

    @pytest.mark.asyncio
    async def test_update_geolocation(self, resolver, engine):
        await resolver.get_asset("20")
        await resolver.update_geolocation("dev-1", 41.5, 2.25)

        with engine.connect() as conn:
            device = conn.execute(text("SELECT latitude, longitude FROM devices WHERE id = 30")).one()
            location = conn.execute(text("SELECT latitude, longitude FROM locations WHERE id = 10")).one()
        assert tuple(device) == (41.5, 2.25)
        assert tuple(location) == (41.5, 2.25)

        # el asset cacheado se invalida
        assert (await resolver.get_asset("20")).location.geolocation == (41.5, 2.25)

    @pytest.mark.asyncio
    async def test_update_geolocation_without_asset(self, resolver, engine):
        await resolver.update_geolocation("dev-orphan", 1.0, 2.0)
        with engine.connect() as conn:
            location = conn.execute(text("SELECT latitude FROM locations WHERE id = 10")).scalar_one()
        assert location == 40.4

    @pytest.mark.asyncio
    async def test_update_geolocation_unknown_device(self, resolver):
        with pytest.raises(MetadataNotFoundError):
            await resolver.update_geolocation("unknown", 1.0, 2.0)

    @pytest.mark.asyncio
    async def test_append_reset_log(self, resolver, engine):
        await resolver.append_reset_log("dev-1", BASE_US, {"reason": "watchdog", "raw": b"\x01\x02"})

        with engine.connect() as conn:
            row = conn.execute(
                text("SELECT device_id, reset_timestamp_us, payload FROM device_resets")
            ).one()
        assert row.device_id == 30
        assert row.reset_timestamp_us == BASE_US
        assert orjson.loads(row.payload) == {"reason": "watchdog", "raw": "0102"}

    @pytest.mark.asyncio
    async def test_append_reset_log_unknown_device(self, resolver):
        with pytest.raises(MetadataNotFoundError):
            await resolver.append_reset_log("unknown", BASE_US, {})

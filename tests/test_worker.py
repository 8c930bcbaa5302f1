"""Tests del worker, la CLI y la app HTTP (sin conexiones reales)."""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from common.config import get_settings
from telemetry_worker import cli
from telemetry_worker import main as http_app
from telemetry_worker.core.buffer import InMemoryFragmentStore
from telemetry_worker.core.domain import TransportError
from telemetry_worker.core.monitoring import HealthChecker
from telemetry_worker.core.worker import TelemetryWorker
from telemetry_worker.main import app


@pytest.fixture
def settings(monkeypatch, tmp_path):
    monkeypatch.setenv("WORKER_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("MQTT_SHARE_GROUP", "group-a")
    monkeypatch.setenv("FRAGMENT_TTL_SECONDS", "120")
    monkeypatch.setenv("CLEAR_AFTER_PUBLISH", "false")
    return get_settings()


# =============================================================================
# CONFIG
# =============================================================================

class TestSettings:

    def test_env_overrides(self, settings):
        assert settings.mqtt_share_group == "group-a"
        assert settings.fragment_ttl_seconds == 120
        assert settings.clear_after_publish is False

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WORKER_ENV_FILE", str(tmp_path / "missing.env"))
        for name in ("MQTT_SHARE_GROUP", "FRAGMENT_TTL_SECONDS", "CLEAR_AFTER_PUBLISH",
                     "DEFAULT_SAMPLE_INTERVAL_US", "REDIS_URL", "BROKER_REDIS_URL"):
            monkeypatch.delenv(name, raising=False)

        s = get_settings()
        assert s.mqtt_share_group == "telemetry-workers"
        assert s.fragment_ttl_seconds == 3600
        assert s.default_sample_interval_us == 1000
        assert s.clear_after_publish is True
        assert s.broker_redis_url == s.redis_url

    def test_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / "worker.env"
        env_file.write_text("MQTT_TOPIC_PREFIX=/plant/\n")
        monkeypatch.setenv("WORKER_ENV_FILE", str(env_file))
        # setenv + delenv: monkeypatch restaura el valor original aunque dotenv lo escriba
        monkeypatch.setenv("MQTT_TOPIC_PREFIX", "placeholder")
        monkeypatch.delenv("MQTT_TOPIC_PREFIX")

        assert get_settings().mqtt_topic_prefix == "plant"


# =============================================================================
# WORKER
# =============================================================================

class TestWorker:

    @pytest.mark.asyncio
    async def test_start_failure_raises_transport_error(self, settings):
        worker = TelemetryWorker(settings)
        worker.start = AsyncMock(return_value=False)

        with pytest.raises(TransportError):
            await worker.run_forever()

    @pytest.mark.asyncio
    async def test_transport_failure_stops_run(self, settings):
        worker = TelemetryWorker(settings)

        async def fake_start():
            worker._loop = asyncio.get_running_loop()
            worker._stop_event = asyncio.Event()
            worker._loop.call_later(0.01, worker._on_transport_failure, "connection refused")
            return True

        worker.start = fake_start
        with pytest.raises(TransportError, match="connection refused"):
            await worker.run_forever()
        assert worker.fatal_reason == "connection refused"

    @pytest.mark.asyncio
    async def test_request_stop_ends_cleanly(self, settings):
        worker = TelemetryWorker(settings)

        async def fake_start():
            worker._stop_event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, worker.request_stop)
            return True

        worker.start = fake_start
        await worker.run_forever()
        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_health_before_start(self, settings):
        worker = TelemetryWorker(settings)
        assert await worker.health_check() == {"healthy": False, "reason": "Not initialized"}
        assert worker.stats["running"] is False


# =============================================================================
# CLI
# =============================================================================

class TestCli:

    def test_transport_error_exits_1(self, settings):
        worker = MagicMock()
        worker.run_forever = AsyncMock(side_effect=TransportError("refused"))

        with patch.object(cli, "TelemetryWorker", return_value=worker):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--log-level", "WARNING"])
        assert exc_info.value.code == 1

    def test_clean_stop(self, settings):
        worker = MagicMock()
        worker.run_forever = AsyncMock(return_value=None)

        with patch.object(cli, "TelemetryWorker", return_value=worker):
            cli.main([])
        worker.run_forever.assert_awaited_once()

    def test_serve_exits_1_on_transport_failure(self, settings, monkeypatch):
        monkeypatch.setattr(http_app, "_fatal_error", None)

        def fake_run():
            # el worker embebido muere mientras uvicorn sirve
            http_app._fatal_error = "refused"
            for handler in list(http_app._fatal_handlers):
                handler(TransportError("refused"))

        with patch("uvicorn.Server") as server_cls:
            server = server_cls.return_value
            server.should_exit = False
            server.run.side_effect = fake_run
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--serve"])

        assert exc_info.value.code == 1
        assert server.should_exit is True
        assert http_app._fatal_handlers == []

    def test_serve_clean_shutdown(self, settings, monkeypatch):
        monkeypatch.setattr(http_app, "_fatal_error", None)
        with patch("uvicorn.Server") as server_cls:
            cli.main(["--serve", "--port", "9000"])
        server_cls.return_value.run.assert_called_once()


# =============================================================================
# HTTP
# =============================================================================

class TestApi:

    @pytest.fixture
    def client(self):
        # Sin context manager: el lifespan (y el worker real) no arranca
        return TestClient(app)

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready_without_worker(self, client):
        with patch("telemetry_worker.main.get_worker", return_value=None):
            assert client.get("/ready").status_code == 503

    def test_ready(self, client):
        worker = MagicMock()
        worker.health_check = AsyncMock(return_value={"healthy": True, "mqtt_connected": True})
        with patch("telemetry_worker.main.get_worker", return_value=worker):
            response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready(self, client):
        worker = MagicMock()
        worker.health_check = AsyncMock(return_value={"healthy": False})
        with patch("telemetry_worker.main.get_worker", return_value=worker):
            assert client.get("/ready").status_code == 503

    def test_stats(self, client):
        worker = MagicMock()
        worker.stats = {"running": True, "processed": 5}
        with patch("telemetry_worker.main.get_worker", return_value=worker):
            assert client.get("/stats").json() == {"running": True, "processed": 5}

    def test_transport_failure_fails_liveness(self, monkeypatch):
        monkeypatch.setattr(http_app, "_fatal_error", None)
        worker = MagicMock()
        worker.run_forever = AsyncMock(side_effect=TransportError("connection refused: Not authorized"))
        stopped = threading.Event()

        def on_fatal(_error):
            stopped.set()

        http_app.add_fatal_handler(on_fatal)
        try:
            with patch("telemetry_worker.main.create_worker", return_value=worker), \
                    patch("telemetry_worker.main.stop_worker", AsyncMock()):
                with TestClient(app) as client:
                    assert stopped.wait(timeout=2)
                    response = client.get("/health")
        finally:
            http_app.remove_fatal_handler(on_fatal)

        assert response.status_code == 503
        assert http_app.fatal_error() == "connection refused: Not authorized"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "telemetry_worker_messages_total" in response.text


# =============================================================================
# HEALTH
# =============================================================================

class TestHealthChecker:

    @pytest.mark.asyncio
    async def test_all_ok(self, engine, publisher):
        checker = HealthChecker(engine, InMemoryFragmentStore(), publisher)
        status = await checker.get_status(mqtt_connected=True, processed=3, failed=1)

        assert status.healthy is True
        assert status.to_dict()["messages_processed"] == 3

    @pytest.mark.asyncio
    async def test_mqtt_down(self, engine, publisher):
        checker = HealthChecker(engine, InMemoryFragmentStore(), publisher)
        status = await checker.get_status(mqtt_connected=False, processed=0, failed=0)
        assert status.healthy is False
        assert status.db_connected is True

    @pytest.mark.asyncio
    async def test_missing_components(self):
        status = await HealthChecker().get_status(mqtt_connected=True, processed=0, failed=0)
        assert status.healthy is False
        assert status.buffer_connected is False

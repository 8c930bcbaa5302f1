"""CLI entry point for the telemetry worker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional, Sequence

from common.config import get_settings

from .core.domain.errors import TransportError
from .core.worker import TelemetryWorker

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


async def _run(worker: TelemetryWorker) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.request_stop)
        except NotImplementedError:
            # Windows: KeyboardInterrupt cubre SIGINT
            pass
    await worker.run_forever()


def _serve(host: str, port: int, log_level: str) -> None:
    """uvicorn con el worker embebido; sale con 1 si el transporte cae."""
    import uvicorn

    from . import main as http_app

    server = uvicorn.Server(uvicorn.Config(http_app.app, host=host, port=port, log_level=log_level.lower()))

    def _shutdown(_error: TransportError) -> None:
        server.should_exit = True

    http_app.add_fatal_handler(_shutdown)
    try:
        server.run()
    finally:
        http_app.remove_fatal_handler(_shutdown)

    reason = http_app.fatal_error()
    if reason is not None:
        logger.error("Transport failure, exiting: %s", reason)
        sys.exit(1)


def main(argv: Optional[Sequence[str]] = None) -> None:
    p = argparse.ArgumentParser(description="Telemetry worker (MQTT → Redis Streams)")
    p.add_argument("--env-file", help="dotenv file to load (default: .env at repo root)")
    p.add_argument("--log-level", help="overrides LOG_LEVEL")
    p.add_argument("--serve", action="store_true", help="run the HTTP app (health/metrics) with the worker embedded")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8080)
    args = p.parse_args(argv)

    if args.env_file:
        os.environ["WORKER_ENV_FILE"] = args.env_file

    settings = get_settings()
    _configure_logging(args.log_level or settings.log_level)

    logger.info(
        "Telemetry worker started mqtt=%s:%d prefix=%s group=%s",
        settings.mqtt_host, settings.mqtt_port, settings.mqtt_topic_prefix, settings.mqtt_share_group,
    )

    if args.serve:
        _serve(args.host, args.port, settings.log_level)
        return

    worker = TelemetryWorker(settings)
    try:
        asyncio.run(_run(worker))
    except TransportError as e:
        logger.error("Transport failure, exiting: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()

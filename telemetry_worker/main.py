from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .core.domain.errors import TransportError
from .core.worker import create_worker, get_worker, stop_worker

logger = logging.getLogger(__name__)

_worker_task: Optional[asyncio.Task] = None
_fatal_error: Optional[str] = None
_fatal_handlers: List[Callable[[TransportError], None]] = []


def add_fatal_handler(handler: Callable[[TransportError], None]) -> None:
    """Registra un callback para cuando el worker muere por fallo de transporte.

    El servidor HTTP lo usa para apagarse: el proceso debe terminar y
    dejar que el supervisor lo reinicie.
    """
    _fatal_handlers.append(handler)


def remove_fatal_handler(handler: Callable[[TransportError], None]) -> None:
    if handler in _fatal_handlers:
        _fatal_handlers.remove(handler)


def fatal_error() -> Optional[str]:
    return _fatal_error


def _on_worker_exit(task: asyncio.Task) -> None:
    global _fatal_error

    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, TransportError):
        logger.critical("[APP] Worker stopped on transport failure: %s", exc)
        _fatal_error = str(exc)
        for handler in list(_fatal_handlers):
            handler(exc)
    elif exc is not None:
        logger.error("[APP] Worker crashed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _worker_task, _fatal_error

    _fatal_error = None
    worker = create_worker()
    _worker_task = asyncio.create_task(worker.run_forever())
    _worker_task.add_done_callback(_on_worker_exit)
    try:
        yield
    finally:
        await stop_worker()
        if _worker_task is not None:
            try:
                await _worker_task
            except TransportError:  # ya logueado en _on_worker_exit
                pass
            _worker_task = None


app = FastAPI(title="Telemetry Worker", version="0.1.0", lifespan=lifespan)


@app.get("/health")
def health():
    """Liveness probe: ok mientras el worker no haya muerto por transporte."""
    if _fatal_error is not None:
        raise HTTPException(status_code=503, detail=f"transport failure: {_fatal_error}")
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    """Readiness probe: MQTT, BD, buffer y broker."""
    worker = get_worker()
    if worker is None:
        raise HTTPException(status_code=503, detail="not ready")
    status = await worker.health_check()
    if not status.get("healthy"):
        raise HTTPException(status_code=503, detail="not ready")
    return {"status": "ready", **status}


@app.get("/stats")
def stats():
    worker = get_worker()
    if worker is None:
        return {"running": False}
    return worker.stats


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

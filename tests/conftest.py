"""Fixtures compartidas: metadata store SQLite en memoria y broker de prueba."""

from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import msgpack
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from telemetry_worker.core.broker.publisher import DocumentPublisher
from telemetry_worker.core.domain import (
    Asset,
    Client,
    Device,
    EnrichmentContext,
    EventSummaryDocument,
    Location,
    PublishError,
    Sensor,
    TelemetryDocument,
)
from telemetry_worker.core.timecodec import datetime_to_fixed_point


SCHEMA = [
    """
    CREATE TABLE clients (
        id INTEGER PRIMARY KEY,
        tag_code TEXT NOT NULL,
        name TEXT
    )
    """,
    """
    CREATE TABLE locations (
        id INTEGER PRIMARY KEY,
        tag_code TEXT NOT NULL,
        description TEXT,
        latitude REAL,
        longitude REAL,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE assets (
        id INTEGER PRIMARY KEY,
        tag_code TEXT NOT NULL,
        name TEXT,
        description TEXT,
        location_id INTEGER NOT NULL REFERENCES locations(id)
    )
    """,
    """
    CREATE TABLE devices (
        id INTEGER PRIMARY KEY,
        topic_id TEXT NOT NULL UNIQUE,
        serial_number TEXT,
        type TEXT,
        description TEXT,
        client_id INTEGER NOT NULL REFERENCES clients(id),
        asset_id INTEGER REFERENCES assets(id),
        latitude REAL,
        longitude REAL,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE sensors (
        id INTEGER PRIMARY KEY,
        type INTEGER NOT NULL UNIQUE,
        type_string TEXT NOT NULL,
        tag_code TEXT NOT NULL,
        description TEXT,
        unit TEXT
    )
    """,
    """
    CREATE TABLE device_resets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id INTEGER NOT NULL REFERENCES devices(id),
        reset_timestamp_us INTEGER NOT NULL,
        payload TEXT,
        created_at TIMESTAMP
    )
    """,
]

SEED = [
    "INSERT INTO clients (id, tag_code, name) VALUES (1, 'CLI', 'Client One')",
    "INSERT INTO locations (id, tag_code, description, latitude, longitude) "
    "VALUES (10, 'LOC', 'Plant A', 40.4, -3.7)",
    "INSERT INTO assets (id, tag_code, name, description, location_id) "
    "VALUES (20, 'AST', 'Pump', 'Main pump', 10)",
    "INSERT INTO devices (id, topic_id, serial_number, type, description, client_id, asset_id) "
    "VALUES (30, 'dev-1', 'SN-001', 'gateway', 'Pump gateway', 1, 20)",
    "INSERT INTO devices (id, topic_id, serial_number, type, description, client_id, asset_id) "
    "VALUES (31, 'dev-orphan', 'SN-002', 'gateway', 'Unassigned', 1, NULL)",
    "INSERT INTO sensors (id, type, type_string, tag_code, description, unit) "
    "VALUES (40, 1, 'pressure', 'PRS', 'Pressure sensor', 'bar')",
    "INSERT INTO sensors (id, type, type_string, tag_code, description, unit) "
    "VALUES (41, 2, 'temperature', 'TMP', 'Temperature sensor', 'C')",
    "INSERT INTO sensors (id, type, type_string, tag_code, description, unit) "
    "VALUES (42, 11, 'acoustic', 'ACU', 'Acoustic sensor', 'dB')",
]

BASE_TS = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
BASE_US = datetime_to_fixed_point(BASE_TS)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Metadata store SQLite compartido entre hilos (el resolver usa el executor)."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with eng.begin() as conn:
        for ddl in SCHEMA:
            conn.execute(text(ddl))
        for stmt in SEED:
            conn.execute(text(stmt))
    yield eng
    eng.dispose()


@pytest.fixture
def context() -> EnrichmentContext:
    """Contexto enriquecido equivalente al seed de la BD."""
    client = Client(id="1", tag_code="CLI", name="Client One")
    location = Location(id="10", tag_code="LOC", description="Plant A", geolocation=(40.4, -3.7))
    return EnrichmentContext(
        device=Device(
            id="30",
            topic_id="dev-1",
            client=client,
            asset_id="20",
            serial_number="SN-001",
            type="gateway",
            description="Pump gateway",
        ),
        asset=Asset(id="20", tag_code="AST", location=location, name="Pump", description="Main pump"),
        sensor=Sensor(id="40", type=1, tag_code="PRS", type_string="pressure", unit="bar"),
    )


def pack(envelope: dict) -> bytes:
    """Serializa un envelope como lo haría el dispositivo."""
    return msgpack.packb(envelope, use_bin_type=True, datetime=True)


def burst_envelope(index: int, total: int, values: Sequence[float],
                   date: str = "2024-03-01T10:00:00.000Z",
                   sample_rate: Optional[Tuple[int, int]] = (2, 1)) -> dict:
    envelope = {"date": date, "part": [index, total], "value": list(values)}
    if sample_rate is not None:
        envelope["sample-rate"] = list(sample_rate)
    return envelope


class RecordingPublisher(DocumentPublisher):
    """Broker en memoria que registra lo publicado, en orden."""

    def __init__(self):
        self.calls: List[Tuple[str, object]] = []
        self.fail = False

    @property
    def documents(self) -> List[TelemetryDocument]:
        return [doc for kind, doc in self.calls if kind == "telemetry"]

    @property
    def summaries(self) -> List[EventSummaryDocument]:
        return [doc for kind, doc in self.calls if kind == "event"]

    async def publish_documents(self, documents):
        if self.fail:
            raise PublishError("broker unavailable")
        self.calls.extend(("telemetry", doc) for doc in documents)

    async def publish_batch(self, documents, summary):
        await self.publish_documents(documents)
        self.calls.append(("event", summary))


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()

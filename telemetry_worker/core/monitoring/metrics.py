"""Métricas Prometheus del worker."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MESSAGES_RECEIVED = Counter(
    "telemetry_worker_messages_total",
    "MQTT messages handled by the worker",
    ["status"],  # processed, failed, ignored, decode_error
)

FRAGMENTS_STORED = Counter(
    "telemetry_worker_fragments_stored_total",
    "Burst fragments appended to the reassembly buffer",
)

BURSTS_COMPLETED = Counter(
    "telemetry_worker_bursts_completed_total",
    "Bursts that completed and were claimed by this process",
)

DOCUMENTS_PUBLISHED = Counter(
    "telemetry_worker_documents_published_total",
    "Documents published to the broker",
    ["routing_key"],
)

PIPELINE_FAILURES = Counter(
    "telemetry_worker_pipeline_failures_total",
    "Pipeline aborts by reason",
    ["reason"],  # metadata_not_found, publish_error, fragment_rejected, error
)

PIPELINE_LATENCY = Histogram(
    "telemetry_worker_pipeline_seconds",
    "Resolve + compose + publish latency per record or burst",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

MQTT_CONNECTED = Gauge(
    "telemetry_worker_mqtt_connected",
    "MQTT connection status",
)

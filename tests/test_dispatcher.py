"""Tests de decodificación de envelopes y clasificación por canal."""

from datetime import datetime, timezone

import msgpack
import pytest

from telemetry_worker.core.adapters import (
    CHANNEL_SENSOR_TYPES,
    FragmentDispatcher,
    decode_envelope,
    parse_topic,
)
from telemetry_worker.core.domain import (
    AggregatedRecord,
    BurstRecord,
    EnvelopeDecodeError,
    LocationRecord,
    ResetRecord,
    ScalarRecord,
)

from conftest import BASE_US, burst_envelope, pack


@pytest.fixture
def dispatcher() -> FragmentDispatcher:
    return FragmentDispatcher()


# =============================================================================
# TOPICS
# =============================================================================

class TestParseTopic:

    def test_source_and_channel(self):
        assert parse_topic("telemetry/dev-1/pressure") == ("dev-1", "pressure")

    def test_custom_prefix(self):
        assert parse_topic("plant/a/dev-1/battery", prefix="plant/a") == ("dev-1", "battery")

    @pytest.mark.parametrize("topic", [
        "other/dev-1/pressure",
        "telemetry/dev-1",
        "telemetry/dev-1/pressure/extra",
        "telemetry//pressure",
    ])
    def test_rejected(self, topic):
        assert parse_topic(topic) is None


# =============================================================================
# DECODE
# =============================================================================

class TestDecodeEnvelope:

    def test_map(self):
        assert decode_envelope(pack({"date": "x", "value": 1})) == {"date": "x", "value": 1}

    def test_msgpack_timestamp_becomes_datetime(self):
        dt = datetime(2024, 3, 1, 10, 0, 0, 250000, tzinfo=timezone.utc)
        decoded = decode_envelope(pack({"date": dt}))
        assert decoded["date"] == dt

    @pytest.mark.parametrize("payload", [b"", b"\xc1", msgpack.packb([1, 2, 3])])
    def test_invalid(self, payload):
        with pytest.raises(EnvelopeDecodeError):
            decode_envelope(payload)


# =============================================================================
# DISPATCH
# =============================================================================

class TestDispatch:

    def test_unknown_channel(self, dispatcher):
        assert dispatcher.is_known("humidity") is False
        assert dispatcher.dispatch("dev-1", "humidity", {"date": "2024-03-01T10:00:00Z"}) is None

    def test_scalar(self, dispatcher):
        record = dispatcher.dispatch("dev-1", "temperature", {"date": "2024-03-01T10:00:00Z", "value": 21.5})
        assert isinstance(record, ScalarRecord)
        assert record.sensor_type == CHANNEL_SENSOR_TYPES["temperature"]
        assert record.value == 21.5
        assert record.timestamp_us == BASE_US

    def test_aggregated(self, dispatcher):
        record = dispatcher.dispatch(
            "dev-1", "acoustic-summary",
            {"date": "2024-03-01T10:00:00Z", "min": 1.0, "max": 3.0, "avg": 2.0, "n": 10},
        )
        assert isinstance(record, AggregatedRecord)
        assert record.sensor_type == 12
        assert record.to_values() == {"min": 1.0, "max": 3.0, "average": 2.0, "point": None, "samples": 10}

    def test_measurement_without_value(self, dispatcher):
        with pytest.raises(EnvelopeDecodeError):
            dispatcher.dispatch("dev-1", "pressure", {"date": "2024-03-01T10:00:00Z"})

    def test_nan_rejected(self, dispatcher):
        with pytest.raises(EnvelopeDecodeError):
            dispatcher.dispatch("dev-1", "pressure", {"date": "2024-03-01T10:00:00Z", "value": float("nan")})

    def test_burst(self, dispatcher):
        envelope = burst_envelope(2, 3, [0.1, 0.2], date="2024-03-01T10:00:00.0005Z")
        record = dispatcher.dispatch("dev-1", "acoustic-burst", envelope)

        assert isinstance(record, BurstRecord)
        assert record.sensor_type == 11
        assert (record.part_index, record.part_total) == (2, 3)
        assert record.values == (0.1, 0.2)
        assert record.sample_rate == (2, 1)
        # sub-milisegundo conservado en el header, truncado en la clave
        assert record.timestamp_us == BASE_US + 500
        assert record.key.bucket_ms == BASE_US // 1000
        assert record.key.redis_key() == f"fragments:acoustic-burst:dev-1:{BASE_US // 1000}"

    def test_burst_sample_rate_aliases(self, dispatcher):
        envelope = {"date": "2024-03-01T10:00:00Z", "part": [1, 1], "value": [1.0], "sample_rate": [4, 1]}
        assert dispatcher.dispatch("dev-1", "burst-event", envelope).sample_rate == (4, 1)

    def test_burst_without_sample_rate(self, dispatcher):
        envelope = burst_envelope(1, 1, [1.0], sample_rate=None)
        assert dispatcher.dispatch("dev-1", "burst-event", envelope).sample_rate is None

    @pytest.mark.parametrize("rate", [[2000], [2000, 1, 1], "2000/1", [2000.5, 1], [True, 1]])
    def test_malformed_sample_rate_falls_back(self, dispatcher, rate):
        """El fragmento se acepta; el composer aplicará el intervalo por defecto."""
        envelope = {"date": "2024-03-01T10:00:00Z", "part": [1, 2], "value": [1.0], "sample-rate": rate}
        record = dispatcher.dispatch("dev-1", "burst-event", envelope)
        assert record.sample_rate is None
        assert record.part_index == 1

    def test_integral_float_sample_rate(self, dispatcher):
        envelope = {"date": "2024-03-01T10:00:00Z", "part": [1, 1], "value": [1.0], "sample-rate": [2000.0, 1]}
        assert dispatcher.dispatch("dev-1", "burst-event", envelope).sample_rate == (2000, 1)

    @pytest.mark.parametrize("part", [[0, 3], [4, 3], [1, 0]])
    def test_burst_part_out_of_range(self, dispatcher, part):
        envelope = {"date": "2024-03-01T10:00:00Z", "part": part, "value": [1.0]}
        with pytest.raises(EnvelopeDecodeError):
            dispatcher.dispatch("dev-1", "burst-event", envelope)

    def test_bad_timestamp(self, dispatcher):
        with pytest.raises(EnvelopeDecodeError):
            dispatcher.dispatch("dev-1", "pressure", {"date": "yesterday", "value": 1.0})

    def test_datetime_timestamp(self, dispatcher):
        dt = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
        envelope = decode_envelope(pack({"date": dt, "value": 2.0}))
        assert dispatcher.dispatch("dev-1", "battery", envelope).timestamp_us == BASE_US

    def test_location(self, dispatcher):
        record = dispatcher.dispatch(
            "dev-1", "location",
            {"date": "2024-03-01T10:00:00Z", "latitude": 41.0, "longitude": 2.1},
        )
        assert isinstance(record, LocationRecord)
        assert (record.latitude, record.longitude) == (41.0, 2.1)

    def test_location_out_of_range(self, dispatcher):
        with pytest.raises(EnvelopeDecodeError):
            dispatcher.dispatch("dev-1", "location", {"date": "2024-03-01T10:00:00Z", "latitude": 100, "longitude": 0})

    def test_reset_log_keeps_opaque_payload(self, dispatcher):
        record = dispatcher.dispatch(
            "dev-1", "reset-log",
            {"date": "2024-03-01T10:00:00Z", "reason": "watchdog", "count": 3},
        )
        assert isinstance(record, ResetRecord)
        assert record.payload == {"reason": "watchdog", "count": 3}

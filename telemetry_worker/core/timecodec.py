"""Codec de timestamps con precisión de microsegundos.

Los dispositivos envían timestamps ISO-8601 con milisegundos y, a veces,
1-3 dígitos extra de sub-milisegundo. Internamente todo el pipeline usa
un entero: microsegundos desde epoch (UTC).

    parse_to_fixed_point("2024-03-01T10:00:00.1234Z")  -> ...000123400
    format_from_fixed_point(1709287200123400)          -> "2024-03-01T10:00:00.123400Z"
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_SECOND_US = 1_000_000
ONE_MILLISECOND_US = 1_000

_ISO_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)

_MAX_FRACTION_DIGITS = 6


def parse_to_fixed_point(text: str) -> int:
    """Parsea un timestamp ISO a microsegundos desde epoch.

    Los 3 primeros dígitos de la fracción son milisegundos; los 1-3
    siguientes se escalan a microsegundos (".1234" -> 123400 µs).

    Raises:
        ValueError: formato no reconocido o fracción de más de 6 dígitos
    """
    match = _ISO_RE.match(text.strip())
    if match is None:
        raise ValueError(f"Unrecognized timestamp: {text!r}")

    frac = match.group("frac") or ""
    if len(frac) > _MAX_FRACTION_DIGITS:
        raise ValueError(
            f"Unsupported fractional precision ({len(frac)} digits): {text!r}"
        )

    base = datetime.strptime(match.group("base").replace(" ", "T"), "%Y-%m-%dT%H:%M:%S")
    base = base.replace(tzinfo=_parse_tz(match.group("tz")))

    whole_seconds = (base - EPOCH) // timedelta(seconds=1)
    return whole_seconds * ONE_SECOND_US + int(frac.ljust(_MAX_FRACTION_DIGITS, "0"))


def format_from_fixed_point(micros: int) -> str:
    """Formatea microsegundos desde epoch como ISO UTC con 6 decimales."""
    seconds, fraction = divmod(int(micros), ONE_SECOND_US)
    dt = EPOCH + timedelta(seconds=seconds)
    return f"{dt.strftime('%Y-%m-%dT%H:%M:%S')}.{fraction:06d}Z"


def datetime_to_fixed_point(value: datetime) -> int:
    """Convierte un datetime (naive = UTC) a microsegundos desde epoch."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(microseconds=1)


def fixed_point_to_datetime(micros: int) -> datetime:
    return EPOCH + timedelta(microseconds=int(micros))


def to_millisecond_bucket(micros: int) -> int:
    """Trunca a milisegundos; se usa como bucket de la clave de fragmentos."""
    return int(micros) // ONE_MILLISECOND_US


def _parse_tz(tz: str | None) -> timezone:
    if not tz or tz == "Z":
        return timezone.utc
    sign = 1 if tz[0] == "+" else -1
    digits = tz[1:].replace(":", "")
    offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    return timezone(sign * offset)

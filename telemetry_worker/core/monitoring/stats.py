"""Estadísticas de procesamiento."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class Stats:
    """Contadores del worker (por proceso)."""

    received: int = 0
    processed: int = 0
    failed: int = 0
    ignored: int = 0
    fragments_stored: int = 0
    bursts_completed: int = 0
    documents_published: int = 0
    events_published: int = 0
    metadata_missing: int = 0
    last_message_at: float = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"failed={self.failed} bursts={self.bursts_completed} docs={self.documents_published}"
        )

    def to_dict(self) -> dict:
        """Convierte a diccionario."""
        return {
            "received": self.received,
            "processed": self.processed,
            "failed": self.failed,
            "ignored": self.ignored,
            "fragments_stored": self.fragments_stored,
            "bursts_completed": self.bursts_completed,
            "documents_published": self.documents_published,
            "events_published": self.events_published,
            "metadata_missing": self.metadata_missing,
            "last_message_at": self.last_message_at,
            "started_at": self.started_at.isoformat(),
            "success_rate": self._success_rate(),
        }

    def _success_rate(self) -> float:
        """Calcula tasa de éxito."""
        total = self.processed + self.failed
        if total == 0:
            return 1.0
        return self.processed / total

    def reset(self):
        """Reinicia estadísticas."""
        self.received = 0
        self.processed = 0
        self.failed = 0
        self.ignored = 0
        self.fragments_stored = 0
        self.bursts_completed = 0
        self.documents_published = 0
        self.events_published = 0
        self.metadata_missing = 0
        self.last_message_at = 0
        self.started_at = datetime.now(timezone.utc)

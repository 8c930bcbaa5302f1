"""Abstract interface for the fragment store.

The reassembly buffer only depends on this interface. Production uses
RedisFragmentStore (shared between worker processes); InMemoryFragmentStore
is a single-process implementation for tests and local runs.

Store shape per key (one hash in Redis):
    header     -> JSON {"samplerate": [num, den], "timestamp": µs}
    total      -> expected part count, fixed by the first fragment
    field_<i>  -> JSON list of values of part i
    claimed    -> token of the worker that completed the set (transient)
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

FIELD_PREFIX = "field_"


@dataclass(frozen=True)
class AppendResult:
    """Resultado atómico de añadir un fragmento."""
    stored: int
    expected: int
    claimed: bool = False

    @property
    def rejected(self) -> bool:
        return self.stored < 0

    @property
    def complete(self) -> bool:
        return not self.rejected and self.stored == self.expected


@dataclass(frozen=True)
class RawFragmentSet:
    """Contenido crudo de una clave del store."""
    header: str
    total: int
    fields: Dict[int, str]
    claimed: Optional[str] = None

    @property
    def complete(self) -> bool:
        return len(self.fields) == self.total

    @classmethod
    def from_hash(cls, data: Dict[str, str]) -> Optional["RawFragmentSet"]:
        if not data or "header" not in data or "total" not in data:
            return None
        fields = {
            int(name[len(FIELD_PREFIX):]): value
            for name, value in data.items()
            if name.startswith(FIELD_PREFIX)
        }
        return cls(
            header=data["header"],
            total=int(data["total"]),
            fields=fields,
            claimed=data.get("claimed"),
        )


class FragmentStore(ABC):
    """Store compartido con upsert atómico por campo."""

    @abstractmethod
    async def append(
        self,
        key: str,
        part_index: int,
        part_total: int,
        header: str,
        values: str,
        ttl_ms: int,
        claim_token: str,
    ) -> AppendResult:
        """Guarda header/total si la clave es nueva y el slot field_<part_index>.

        Si el set queda completo, intenta reclamarlo con claim_token; solo
        una llamada en todo el cluster obtiene claimed=True.
        """

    @abstractmethod
    async def is_complete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def read(self, key: str) -> Optional[RawFragmentSet]:
        """Lectura no destructiva."""

    @abstractmethod
    async def drain(self, key: str) -> Optional[RawFragmentSet]:
        """Lee y elimina atómicamente un set completo. None si no existe o está incompleto."""

    @abstractmethod
    async def clear(self, key: str, claim_token: str) -> bool:
        """Elimina la clave solo si claim_token sigue siendo el dueño."""

    @abstractmethod
    async def release(self, key: str, claim_token: str) -> bool:
        """Suelta el claim para que un fragmento reentregado vuelva a disparar la ráfaga."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    header: str
    total: int
    fields: Dict[int, str] = field(default_factory=dict)
    claimed: Optional[str] = None
    expires_at: Optional[float] = None


class InMemoryFragmentStore(FragmentStore):
    """Implementación en memoria, un solo proceso.

    Mismas reglas que el script Lua de Redis; el lock hace atómica cada operación.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _get(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at is not None and entry.expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return entry

    async def append(self, key, part_index, part_total, header, values, ttl_ms, claim_token) -> AppendResult:
        async with self._lock:
            entry = self._get(key)
            if entry is None:
                entry = _Entry(header=header, total=part_total)
                self._entries[key] = entry

            if not 1 <= part_index <= entry.total:
                return AppendResult(stored=-1, expected=entry.total)

            entry.fields[part_index] = values
            if ttl_ms > 0:
                entry.expires_at = time.monotonic() + ttl_ms / 1000.0

            stored = len(entry.fields)
            claimed = False
            if stored == entry.total and entry.claimed is None:
                entry.claimed = claim_token
                claimed = True
            return AppendResult(stored=stored, expected=entry.total, claimed=claimed)

    async def is_complete(self, key: str) -> bool:
        async with self._lock:
            entry = self._get(key)
            return entry is not None and len(entry.fields) == entry.total

    async def read(self, key: str) -> Optional[RawFragmentSet]:
        async with self._lock:
            entry = self._get(key)
            if entry is None:
                return None
            return RawFragmentSet(entry.header, entry.total, dict(entry.fields), entry.claimed)

    async def drain(self, key: str) -> Optional[RawFragmentSet]:
        async with self._lock:
            entry = self._get(key)
            if entry is None or len(entry.fields) != entry.total:
                return None
            del self._entries[key]
            return RawFragmentSet(entry.header, entry.total, dict(entry.fields), entry.claimed)

    async def clear(self, key: str, claim_token: str) -> bool:
        async with self._lock:
            entry = self._get(key)
            if entry is None or entry.claimed != claim_token:
                return False
            del self._entries[key]
            return True

    async def release(self, key: str, claim_token: str) -> bool:
        async with self._lock:
            entry = self._get(key)
            if entry is None or entry.claimed != claim_token:
                return False
            entry.claimed = None
            return True

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

"""Buffer de reensamblado de ráfagas multi-parte.

Estados de un FragmentSet:
    CREATED -> ACCUMULATING -> COMPLETE -> DRAINED

Los fragmentos se guardan por índice de parte (no por orden de llegada),
así que pueden llegar desordenados. El drain concatena por índice.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

import orjson

from ..domain.errors import FragmentRejectedError
from ..domain.records import BurstRecord, FragmentHeader, FragmentKey
from .store import AppendResult, FragmentStore, RawFragmentSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrainedBurst:
    """Valores ordenados por índice de parte + cabecera de la ráfaga."""
    key: FragmentKey
    header: FragmentHeader
    values: List[float]
    parts: int


class ReassemblyBuffer:
    """Acumula fragmentos por FragmentKey sobre un FragmentStore compartido.

    Args:
        store: backend (Redis en producción)
        ttl_seconds: expiración de sets incompletos; 0 = sin expiración
        claim_token: identidad de este proceso para reclamar ráfagas completas
    """

    def __init__(
        self,
        store: FragmentStore,
        ttl_seconds: int = 0,
        claim_token: Optional[str] = None,
    ):
        self._store = store
        self._ttl_ms = max(0, int(ttl_seconds)) * 1000
        self._claim_token = claim_token or uuid.uuid4().hex

    @property
    def store(self) -> FragmentStore:
        return self._store

    @property
    def claim_token(self) -> str:
        return self._claim_token

    async def append_fragment(
        self,
        key: FragmentKey,
        part_index: int,
        part_total: int,
        header: FragmentHeader,
        values: Iterable[float],
    ) -> AppendResult:
        """Guarda un fragmento en su slot. Repetir (key, part_index) sobrescribe.

        Raises:
            FragmentRejectedError: part_index fuera del total fijado por el primer fragmento
        """
        result = await self._store.append(
            key.redis_key(),
            part_index,
            part_total,
            orjson.dumps(header.to_dict()).decode(),
            orjson.dumps(list(values)).decode(),
            self._ttl_ms,
            self._claim_token,
        )

        if result.rejected:
            raise FragmentRejectedError(str(key), part_index, result.expected)

        if part_total != result.expected:
            logger.warning(
                "[BUFFER] Part total mismatch key=%s got=%d expected=%d (keeping first)",
                key, part_total, result.expected,
            )

        logger.debug(
            "[BUFFER] Stored part %d/%d key=%s stored=%d",
            part_index, result.expected, key, result.stored,
        )
        return result

    async def append_record(self, record: BurstRecord) -> AppendResult:
        return await self.append_fragment(
            record.key,
            record.part_index,
            record.part_total,
            record.header,
            record.values,
        )

    async def is_complete(self, key: FragmentKey) -> bool:
        return await self._store.is_complete(key.redis_key())

    async def snapshot(self, key: FragmentKey) -> Optional[DrainedBurst]:
        """Valores ordenados sin borrar la clave (se borra tras publicar)."""
        raw = await self._store.read(key.redis_key())
        if raw is None or not raw.complete:
            return None
        return self._decode(key, raw)

    async def drain(self, key: FragmentKey) -> Optional[DrainedBurst]:
        """Lee y elimina la ráfaga completa. Solo una llamada tiene éxito por clave."""
        raw = await self._store.drain(key.redis_key())
        if raw is None:
            return None
        logger.debug("[BUFFER] Drained key=%s parts=%d", key, raw.total)
        return self._decode(key, raw)

    async def clear(self, key: FragmentKey) -> bool:
        cleared = await self._store.clear(key.redis_key(), self._claim_token)
        if not cleared:
            logger.warning("[BUFFER] Clear skipped, claim not held key=%s", key)
        return cleared

    async def release(self, key: FragmentKey) -> bool:
        return await self._store.release(key.redis_key(), self._claim_token)

    async def exists(self, key: FragmentKey) -> bool:
        return await self._store.exists(key.redis_key())

    @staticmethod
    def _decode(key: FragmentKey, raw: RawFragmentSet) -> DrainedBurst:
        values: List[float] = []
        for index in sorted(raw.fields):
            values.extend(orjson.loads(raw.fields[index]))
        return DrainedBurst(
            key=key,
            header=FragmentHeader.from_dict(orjson.loads(raw.header)),
            values=values,
            parts=raw.total,
        )

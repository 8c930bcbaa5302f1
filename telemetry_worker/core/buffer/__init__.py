"""Buffer layer - Reensamblado de ráfagas en store compartido."""

from .reassembly import DrainedBurst, ReassemblyBuffer
from .redis_store import RedisFragmentStore
from .store import AppendResult, FragmentStore, InMemoryFragmentStore, RawFragmentSet

__all__ = [
    "AppendResult",
    "DrainedBurst",
    "FragmentStore",
    "InMemoryFragmentStore",
    "RawFragmentSet",
    "ReassemblyBuffer",
    "RedisFragmentStore",
]

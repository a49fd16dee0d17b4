"""
Read-only access to user preferences used to bias default entities.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from chatmap.models import MemoryContext


class MemoryStore(ABC):
    """Source of per-user preferences. Never written to by the orchestrator."""

    @abstractmethod
    async def get_context(self, user_id: str) -> Optional[MemoryContext]:
        pass


class InMemoryMemoryStore(MemoryStore):
    """Dictionary-backed store, seeded up front."""

    def __init__(self, contexts: Optional[Dict[str, MemoryContext]] = None):
        self._contexts = dict(contexts or {})

    async def get_context(self, user_id: str) -> Optional[MemoryContext]:
        return self._contexts.get(user_id)

"""
Store Adapter Contract
======================
The persistence interface the memory service depends on. Adapters bind
every value as a parameter and translate driver failures into
StorageError subclasses.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from mcp_memory.core.models import MemoryFilters, MemoryLink, MemoryRecord

# Columns a patch passed to update() may touch.
PATCHABLE_FIELDS = frozenset(
    {"type", "content", "source", "embedding", "tags", "confidence", "metadata", "updated_at"}
)


class StoreAdapter(ABC):
    """Abstract persistence backend for memory records and links."""

    backend: str = "abstract"

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        ...

    @abstractmethod
    async def get_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        ...

    @abstractmethod
    async def update(self, memory_id: str, patch: dict[str, Any]) -> Optional[MemoryRecord]:
        """Apply `patch` and return the stored record, or None if absent."""

    @abstractmethod
    async def delete(self, memory_id: str) -> bool:
        """Delete a record and its links. False if it did not exist."""

    @abstractmethod
    async def list_by_filters(
        self,
        filters: MemoryFilters,
        limit: int,
        offset: int,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> List[MemoryRecord]:
        ...

    @abstractmethod
    async def count_by_filters(self, filters: MemoryFilters) -> int:
        ...

    @abstractmethod
    async def count_by_type(self) -> dict[str, int]:
        ...

    @abstractmethod
    async def nearest_by_vector(
        self,
        vector: List[float],
        filters: MemoryFilters,
        k: int,
    ) -> List[Tuple[MemoryRecord, float]]:
        """
        The k records nearest to `vector` by cosine distance among those
        passing `filters`, ordered by distance ascending then created_at
        descending.
        """

    @abstractmethod
    async def upsert_link(self, link: MemoryLink) -> MemoryLink:
        ...

    @abstractmethod
    async def get_links(self, memory_id: str) -> List[MemoryLink]:
        ...

    @abstractmethod
    async def delete_link(self, source_id: str, target_id: str, relationship: str) -> bool:
        ...

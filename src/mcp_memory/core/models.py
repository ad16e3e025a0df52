"""
Memory Models
=============
Data classes for the entities held by the memory store: memory records,
links between them, and the filter set shared by list and search.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Optional, List, Union

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Content = Union[dict, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC string; lexicographic order equals chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """Current time, or one microsecond past `previous` if the clock has not moved."""
    now = utcnow()
    floor = previous + timedelta(microseconds=1)
    return now if now >= floor else floor


@dataclass
class MemoryRecord:
    id: str
    type: str
    content: Content
    created_at: datetime
    updated_at: datetime
    source: Optional[str] = None
    embedding: Optional[List[float]] = None
    tags: List[str] = field(default_factory=list)
    confidence: float = 0.5
    metadata: dict[str, Any] = field(default_factory=dict)
    # Set only on search results
    similarity: Optional[float] = None

    def to_dict(self, include_embedding: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "source": self.source,
            "tags": list(self.tags),
            "confidence": self.confidence,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_embedding:
            data["embedding"] = list(self.embedding) if self.embedding is not None else None
        if self.similarity is not None:
            data["similarity"] = self.similarity
        return data


@dataclass
class MemoryLink:
    id: str
    source_id: str
    target_id: str
    relationship: str
    strength: float = 0.5
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "relationship": self.relationship,
            "strength": self.strength,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class ListResult:
    memories: List[MemoryRecord]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "memories": [m.to_dict() for m in self.memories],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass
class SearchResult:
    memories: List[MemoryRecord]
    query: str
    threshold: float

    @property
    def total(self) -> int:
        return len(self.memories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "memories": [m.to_dict() for m in self.memories],
            "total": self.total,
            "query": self.query,
        }


@dataclass(frozen=True)
class MemoryFilters:
    """Conjunctive filters; tags match when any one of them is present."""
    type: Optional[str] = None
    tags: tuple[str, ...] = ()
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

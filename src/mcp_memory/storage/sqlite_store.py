"""
SQLite Store Adapter
====================
StoreAdapter backed by SQLite through aiosqlite and a bounded
ConnectionPool.

Layout:
  memories      one row per record; content/tags/metadata as JSON text,
                embedding as a float32 blob, timestamps as fixed-width UTC
                strings so they sort lexicographically.
  memory_links  typed edges between records; (source, target, relationship)
                is unique and deleting either endpoint cascades.

Nearest-neighbour search loads the embeddings of the filtered candidates
and ranks them with numpy.
"""

import json
from pathlib import Path
from typing import Any, List, Optional, Tuple

import aiosqlite
import numpy as np
from loguru import logger

from mcp_memory.core.config import SUPPORTED_ORDER_FIELDS
from mcp_memory.core.exceptions import DataCorruptionError, StorageConnectionError, ValidationError
from mcp_memory.core.models import (
    MemoryFilters,
    MemoryLink,
    MemoryRecord,
    format_timestamp,
    parse_timestamp,
)
from mcp_memory.storage.base import PATCHABLE_FIELDS, StoreAdapter
from mcp_memory.storage.pool import ConnectionPool

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL DEFAULT 'general',
    content TEXT NOT NULL,
    source TEXT,
    embedding BLOB,
    tags TEXT NOT NULL DEFAULT '[]',
    confidence REAL NOT NULL DEFAULT 0.5 CHECK (confidence >= 0 AND confidence <= 1),
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type);
CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at DESC);

CREATE TABLE IF NOT EXISTS memory_links (
    id TEXT PRIMARY KEY,
    source_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    relationship TEXT NOT NULL CHECK (length(relationship) BETWEEN 1 AND 50),
    strength REAL NOT NULL DEFAULT 0.5 CHECK (strength >= 0 AND strength <= 1),
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    UNIQUE (source_id, target_id, relationship)
);
CREATE INDEX IF NOT EXISTS idx_memory_links_source ON memory_links(source_id);
CREATE INDEX IF NOT EXISTS idx_memory_links_target ON memory_links(target_id);
"""

_COLUMNS = "id, type, content, source, embedding, tags, confidence, metadata, created_at, updated_at"


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _encode_vector(vector: Optional[List[float]]) -> Optional[bytes]:
    if vector is None:
        return None
    return np.asarray(vector, dtype=np.float32).tobytes()


def _decode_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32)


def _row_to_record(row: aiosqlite.Row, include_embedding: bool = True) -> MemoryRecord:
    try:
        embedding = None
        if include_embedding and row["embedding"] is not None:
            embedding = _decode_vector(row["embedding"]).tolist()
        return MemoryRecord(
            id=row["id"],
            type=row["type"],
            content=json.loads(row["content"]),
            source=row["source"],
            embedding=embedding,
            tags=json.loads(row["tags"]),
            confidence=float(row["confidence"]),
            metadata=json.loads(row["metadata"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
    except (ValueError, TypeError) as e:
        raise DataCorruptionError(row["id"], f"Cannot decode memory row: {e}")


def _row_to_link(row: aiosqlite.Row) -> MemoryLink:
    try:
        return MemoryLink(
            id=row["id"],
            source_id=row["source_id"],
            target_id=row["target_id"],
            relationship=row["relationship"],
            strength=float(row["strength"]),
            metadata=json.loads(row["metadata"]),
            created_at=parse_timestamp(row["created_at"]),
        )
    except (ValueError, TypeError) as e:
        raise DataCorruptionError(row["id"], f"Cannot decode link row: {e}")


def _where(filters: MemoryFilters) -> Tuple[str, list]:
    clauses: List[str] = []
    params: list = []
    if filters.type:
        clauses.append("type = ?")
        params.append(filters.type)
    if filters.tags:
        placeholders = ", ".join("?" for _ in filters.tags)
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(memories.tags) AS t "
            f"WHERE t.value IN ({placeholders}))"
        )
        params.extend(filters.tags)
    if filters.created_after is not None:
        clauses.append("created_at >= ?")
        params.append(format_timestamp(filters.created_after))
    if filters.created_before is not None:
        clauses.append("created_at <= ?")
        params.append(format_timestamp(filters.created_before))
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def cosine_distances(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """1 - cosine similarity per row; rows or queries with zero norm get 1.0."""
    query_norm = float(np.linalg.norm(vector))
    row_norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ vector
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(row_norms > 0, dots / (row_norms * query_norm), 0.0)
    if query_norm == 0:
        sims = np.zeros_like(sims)
    return 1.0 - sims


class SQLiteStore(StoreAdapter):
    """StoreAdapter over a local SQLite database file."""

    backend = "sqlite"

    def __init__(
        self,
        path: str,
        pool_size: int = 5,
        acquire_timeout: float = 2.0,
        statement_timeout: float = 5.0,
    ):
        self.path = path
        self.pool = ConnectionPool(
            path,
            pool_size=pool_size,
            acquire_timeout=acquire_timeout,
            statement_timeout=statement_timeout,
            backend=self.backend,
        )

    @classmethod
    def from_config(cls, db_config) -> "SQLiteStore":
        return cls(
            db_config.path,
            pool_size=db_config.pool_size,
            acquire_timeout=db_config.acquire_timeout_seconds,
            statement_timeout=db_config.statement_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if not self.pool.in_memory:
            try:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageConnectionError(self.backend, f"cannot create directory for {self.path}: {e}")
        await self.pool.open()

        async def _create(conn: aiosqlite.Connection) -> None:
            await conn.executescript(SCHEMA)
            await conn.commit()

        await self.pool.run("initialize", _create)
        logger.info(f"SQLite store ready at {self.path}")

    async def close(self) -> None:
        await self.pool.close()

    async def ping(self) -> bool:
        async def _ping(conn: aiosqlite.Connection) -> bool:
            async with conn.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None and row[0] == 1

        return await self.pool.run("ping", _ping)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        params = (
            record.id,
            record.type,
            _dumps(record.content),
            record.source,
            _encode_vector(record.embedding),
            _dumps(list(record.tags)),
            record.confidence,
            _dumps(record.metadata),
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
        )

        async def _insert(conn: aiosqlite.Connection) -> None:
            await conn.execute(
                f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                params,
            )
            await conn.commit()

        await self.pool.run("insert", _insert)
        return record

    async def get_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        async def _get(conn: aiosqlite.Connection) -> Optional[MemoryRecord]:
            async with conn.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return _row_to_record(row) if row is not None else None

        return await self.pool.run("get_by_id", _get)

    async def update(self, memory_id: str, patch: dict[str, Any]) -> Optional[MemoryRecord]:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError("patch", f"unknown fields: {sorted(unknown)}")

        assignments: List[str] = []
        params: list = []
        for name, value in patch.items():
            if name in ("content", "metadata"):
                value = _dumps(value)
            elif name == "tags":
                value = _dumps(list(value))
            elif name == "embedding":
                value = _encode_vector(value)
            elif name == "updated_at":
                value = format_timestamp(value)
            assignments.append(f"{name} = ?")
            params.append(value)

        async def _update(conn: aiosqlite.Connection) -> Optional[MemoryRecord]:
            if assignments:
                cursor = await conn.execute(
                    f"UPDATE memories SET {', '.join(assignments)} WHERE id = ?",
                    (*params, memory_id),
                )
                changed = cursor.rowcount
                await cursor.close()
                await conn.commit()
                if changed == 0:
                    return None
            async with conn.execute(
                f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return _row_to_record(row) if row is not None else None

        return await self.pool.run("update", _update)

    async def delete(self, memory_id: str) -> bool:
        async def _delete(conn: aiosqlite.Connection) -> bool:
            cursor = await conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            deleted = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
            return deleted

        return await self.pool.run("delete", _delete)

    async def list_by_filters(
        self,
        filters: MemoryFilters,
        limit: int,
        offset: int,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> List[MemoryRecord]:
        if order_by not in SUPPORTED_ORDER_FIELDS:
            raise ValidationError("order_by", f"must be one of {list(SUPPORTED_ORDER_FIELDS)}", order_by)
        direction = "DESC" if descending else "ASC"
        where, params = _where(filters)
        order = f"{order_by} {direction}"
        if order_by != "created_at":
            order += ", created_at DESC"
        sql = (
            f"SELECT {_COLUMNS} FROM memories{where} "
            f"ORDER BY {order}, id ASC LIMIT ? OFFSET ?"
        )

        async def _list(conn: aiosqlite.Connection) -> List[MemoryRecord]:
            async with conn.execute(sql, (*params, limit, offset)) as cursor:
                rows = await cursor.fetchall()
            return [_row_to_record(row, include_embedding=False) for row in rows]

        return await self.pool.run("list", _list)

    async def count_by_filters(self, filters: MemoryFilters) -> int:
        where, params = _where(filters)

        async def _count(conn: aiosqlite.Connection) -> int:
            async with conn.execute(f"SELECT COUNT(*) FROM memories{where}", params) as cursor:
                row = await cursor.fetchone()
            return int(row[0])

        return await self.pool.run("count", _count)

    async def count_by_type(self) -> dict[str, int]:
        async def _count(conn: aiosqlite.Connection) -> dict[str, int]:
            async with conn.execute(
                "SELECT type, COUNT(*) FROM memories GROUP BY type ORDER BY type"
            ) as cursor:
                rows = await cursor.fetchall()
            return {row[0]: int(row[1]) for row in rows}

        return await self.pool.run("count_by_type", _count)

    async def nearest_by_vector(
        self,
        vector: List[float],
        filters: MemoryFilters,
        k: int,
    ) -> List[Tuple[MemoryRecord, float]]:
        if k < 1:
            return []
        where, params = _where(filters)
        where = (where + " AND" if where else " WHERE") + " embedding IS NOT NULL"
        query = np.asarray(vector, dtype=np.float32)

        async def _candidates(conn: aiosqlite.Connection) -> list:
            async with conn.execute(
                f"SELECT {_COLUMNS} FROM memories{where}", params
            ) as cursor:
                return list(await cursor.fetchall())

        rows = await self.pool.run("nearest_by_vector", _candidates)

        usable = []
        vectors = []
        for row in rows:
            vec = _decode_vector(row["embedding"])
            if vec.shape[0] != query.shape[0]:
                logger.warning(
                    f"Skipping memory {row['id']}: embedding dimension {vec.shape[0]} != {query.shape[0]}"
                )
                continue
            usable.append(row)
            vectors.append(vec)
        if not usable:
            return []

        distances = cosine_distances(np.stack(vectors), query)
        order = list(range(len(usable)))
        # Stable passes: id asc, then created_at desc, then distance asc.
        order.sort(key=lambda i: usable[i]["id"])
        order.sort(key=lambda i: usable[i]["created_at"], reverse=True)
        order.sort(key=lambda i: float(distances[i]))

        return [(_row_to_record(usable[i]), float(distances[i])) for i in order[:k]]

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def upsert_link(self, link: MemoryLink) -> MemoryLink:
        params = (
            link.id,
            link.source_id,
            link.target_id,
            link.relationship,
            link.strength,
            _dumps(link.metadata),
            format_timestamp(link.created_at),
        )

        async def _upsert(conn: aiosqlite.Connection) -> MemoryLink:
            await conn.execute(
                "INSERT INTO memory_links "
                "(id, source_id, target_id, relationship, strength, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (source_id, target_id, relationship) DO UPDATE SET "
                "strength = excluded.strength, metadata = excluded.metadata",
                params,
            )
            await conn.commit()
            async with conn.execute(
                "SELECT * FROM memory_links WHERE source_id = ? AND target_id = ? AND relationship = ?",
                (link.source_id, link.target_id, link.relationship),
            ) as cursor:
                row = await cursor.fetchone()
            return _row_to_link(row)

        return await self.pool.run("upsert_link", _upsert)

    async def get_links(self, memory_id: str) -> List[MemoryLink]:
        async def _links(conn: aiosqlite.Connection) -> List[MemoryLink]:
            async with conn.execute(
                "SELECT * FROM memory_links WHERE source_id = ? OR target_id = ? "
                "ORDER BY created_at ASC, id ASC",
                (memory_id, memory_id),
            ) as cursor:
                rows = await cursor.fetchall()
            return [_row_to_link(row) for row in rows]

        return await self.pool.run("get_links", _links)

    async def delete_link(self, source_id: str, target_id: str, relationship: str) -> bool:
        async def _delete(conn: aiosqlite.Connection) -> bool:
            cursor = await conn.execute(
                "DELETE FROM memory_links WHERE source_id = ? AND target_id = ? AND relationship = ?",
                (source_id, target_id, relationship),
            )
            deleted = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
            return deleted

        return await self.pool.run("delete_link", _delete)

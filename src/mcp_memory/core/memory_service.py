"""
Memory Service
==============
Validation, embedding and ranking on top of a StoreAdapter.

Every caller-facing operation validates its input first and raises
ValidationError before touching the embedding provider or the store.
Embeddings are computed inline through the EmbeddingCache, so a record's
embedding always corresponds to its current content.
"""

import json
import math
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, Optional, Sequence, Union

from loguru import logger

from mcp_memory.core.config import MemoryConfig, SUPPORTED_ORDER_FIELDS
from mcp_memory.core.embedding_cache import EmbeddingCache
from mcp_memory.core.embeddings import EmbeddingProvider
from mcp_memory.core.exceptions import (
    LinkNotFoundError,
    MemoryNotFoundError,
    MemoryServerError,
    ValidationError,
)
from mcp_memory.core.metrics import track_operation
from mcp_memory.core.models import (
    ListResult,
    MemoryFilters,
    MemoryLink,
    MemoryRecord,
    SearchResult,
    next_timestamp,
    utcnow,
)
from mcp_memory.storage.base import StoreAdapter

BATCH_OPERATIONS = ("create", "update", "delete")


class MemoryService:
    """
    Semantic memory operations: CRUD, filtered listing, similarity search
    and links between memories.
    """

    def __init__(
        self,
        store: StoreAdapter,
        provider: EmbeddingProvider,
        cache: EmbeddingCache,
        config: Optional[MemoryConfig] = None,
    ):
        self.store = store
        self.provider = provider
        self.cache = cache
        self.config = config or MemoryConfig()

    # ==========================================================================
    # Validation helpers
    # ==========================================================================

    def _require_id(self, value: Any, field: str = "id") -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field, "must be a non-empty string", value)
        return value.strip()

    def _validate_type(self, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("type", "is required and must be a non-empty string", value)
        value = value.strip()
        if len(value) > self.config.max_type_length:
            raise ValidationError("type", f"must be at most {self.config.max_type_length} characters")
        return value

    def _validate_content(self, value: Any) -> Union[dict, str]:
        if value is None:
            raise ValidationError("content", "is required")
        if isinstance(value, str):
            if not value.strip():
                raise ValidationError("content", "must not be blank")
        elif not isinstance(value, dict):
            raise ValidationError("content", "must be an object or a string")
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValidationError("content", f"must be JSON-serializable: {e}")
        return value

    def _validate_source(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError("source", "must be a string", value)
        if len(value) > self.config.max_source_length:
            raise ValidationError("source", f"must be at most {self.config.max_source_length} characters")
        return value

    def _validate_unit_interval(self, value: Any, field: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(field, "must be a number", value)
        value = float(value)
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise ValidationError(field, "must be between 0 and 1", value)
        return value

    def _validate_metadata(self, value: Any) -> dict:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValidationError("metadata", "must be an object", value)
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValidationError("metadata", f"must be JSON-serializable: {e}")
        return dict(value)

    def _normalize_tags(self, value: Any, enforce_limits: bool = True) -> List[str]:
        """Trim, drop blanks and de-duplicate keeping first-seen order."""
        if value is None:
            return []
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise ValidationError("tags", "must be a list of strings")
        seen: dict[str, None] = {}
        for tag in value:
            if not isinstance(tag, str):
                raise ValidationError("tags", "must be a list of strings", tag)
            tag = tag.strip()
            if not tag:
                continue
            if enforce_limits and len(tag) > self.config.max_tag_length:
                raise ValidationError("tags", f"each tag must be at most {self.config.max_tag_length} characters", tag)
            seen.setdefault(tag, None)
        tags = list(seen)
        if enforce_limits and len(tags) > self.config.max_tags:
            raise ValidationError("tags", f"at most {self.config.max_tags} tags are allowed")
        return tags

    def _validate_limit(self, value: Any, default: int) -> int:
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("limit", "must be an integer", value)
        if value < 1:
            raise ValidationError("limit", "must be at least 1", value)
        return min(value, self.config.max_limit)

    @staticmethod
    def _parse_datetime(value: Any, field: str) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, str):
            raw = value.strip()
            if raw.endswith("Z"):
                raw = raw[:-1] + "+00:00"
            try:
                value = datetime.fromisoformat(raw)
            except ValueError:
                raise ValidationError(field, "must be an ISO-8601 timestamp", value)
        if not isinstance(value, datetime):
            raise ValidationError(field, "must be an ISO-8601 timestamp", value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def _build_filters(
        self,
        type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        created_after: Any = None,
        created_before: Any = None,
    ) -> MemoryFilters:
        if type is not None:
            type = self._validate_type(type)
        return MemoryFilters(
            type=type,
            tags=tuple(self._normalize_tags(tags, enforce_limits=False)),
            created_after=self._parse_datetime(created_after, "created_after"),
            created_before=self._parse_datetime(created_before, "created_before"),
        )

    async def _embed(self, content: Any) -> List[float]:
        return await self.cache.get_or_compute(self.provider, content)

    # ==========================================================================
    # Records
    # ==========================================================================

    @track_operation("create")
    async def create(
        self,
        type: str,
        content: Union[dict, str],
        source: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        confidence: Optional[float] = None,
        metadata: Optional[dict] = None,
    ) -> MemoryRecord:
        """
        Store a new memory.

        The embedding is computed before the record is persisted, so a
        returned record is immediately searchable.

        Raises:
            ValidationError: On any invalid field.
            ProviderError: If the embedding cannot be computed.
            StorageError: If the record cannot be persisted.
        """
        memory_type = self._validate_type(type)
        content = self._validate_content(content)
        source = self._validate_source(source)
        tag_list = self._normalize_tags(tags)
        confidence = 0.5 if confidence is None else self._validate_unit_interval(confidence, "confidence")
        metadata = self._validate_metadata(metadata)

        embedding = await self._embed(content)
        now = utcnow()
        record = MemoryRecord(
            id=str(uuid.uuid4()),
            type=memory_type,
            content=content,
            source=source,
            embedding=embedding,
            tags=tag_list,
            confidence=confidence,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(record)
        logger.info(f"Stored memory {record.id} (type={memory_type}, tags={len(tag_list)})")
        return record

    @track_operation("get")
    async def get_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        """Return the record or None. Never raises for a missing id."""
        memory_id = self._require_id(memory_id)
        return await self.store.get_by_id(memory_id)

    @track_operation("update")
    async def update(
        self,
        memory_id: str,
        content: Optional[Union[dict, str]] = None,
        tags: Optional[Sequence[str]] = None,
        type: Optional[str] = None,
        metadata: Optional[dict] = None,
        confidence: Optional[float] = None,
        source: Optional[str] = None,
    ) -> MemoryRecord:
        """
        Patch a memory. Omitted (None) fields are left unchanged.

        A content change recomputes the embedding inline. updated_at always
        advances, even for an empty patch.

        Raises:
            ValidationError: On any invalid field.
            MemoryNotFoundError: If no memory has this id.
        """
        memory_id = self._require_id(memory_id)
        patch: dict[str, Any] = {}
        if type is not None:
            patch["type"] = self._validate_type(type)
        if content is not None:
            patch["content"] = self._validate_content(content)
        if source is not None:
            patch["source"] = self._validate_source(source)
        if tags is not None:
            patch["tags"] = self._normalize_tags(tags)
        if confidence is not None:
            patch["confidence"] = self._validate_unit_interval(confidence, "confidence")
        if metadata is not None:
            patch["metadata"] = self._validate_metadata(metadata)

        existing = await self.store.get_by_id(memory_id)
        if existing is None:
            raise MemoryNotFoundError(memory_id)

        if "content" in patch:
            patch["embedding"] = await self._embed(patch["content"])
        patch["updated_at"] = next_timestamp(existing.updated_at)

        updated = await self.store.update(memory_id, patch)
        if updated is None:
            raise MemoryNotFoundError(memory_id)
        logger.info(f"Updated memory {memory_id} (fields={sorted(k for k in patch if k != 'updated_at')})")
        return updated

    @track_operation("delete")
    async def delete(self, memory_id: str) -> bool:
        """
        Delete a memory and its links.

        Raises:
            MemoryNotFoundError: If the memory does not exist (or is already gone).
        """
        memory_id = self._require_id(memory_id)
        if not await self.store.delete(memory_id):
            raise MemoryNotFoundError(memory_id)
        logger.info(f"Deleted memory {memory_id}")
        return True

    @track_operation("list")
    async def list(
        self,
        type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        created_after: Any = None,
        created_before: Any = None,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: str = "created_at",
        order: str = "desc",
    ) -> ListResult:
        """
        Page through memories matching every given filter.

        `total` counts all matches regardless of limit and offset.
        """
        limit = self._validate_limit(limit, self.config.default_list_limit)
        if offset is None:
            offset = 0
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset", "must be a non-negative integer", offset)
        order_by = order_by or "created_at"
        if order_by not in SUPPORTED_ORDER_FIELDS:
            raise ValidationError("order_by", f"must be one of {list(SUPPORTED_ORDER_FIELDS)}", order_by)
        direction = (order or "desc").lower()
        if direction not in ("asc", "desc"):
            raise ValidationError("order", "must be 'asc' or 'desc'", order)

        filters = self._build_filters(type, tags, created_after, created_before)
        memories = await self.store.list_by_filters(
            filters, limit, offset, order_by=order_by, descending=direction == "desc"
        )
        total = await self.store.count_by_filters(filters)
        return ListResult(memories=memories, total=total, limit=limit, offset=offset)

    def export(
        self,
        type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        created_after: Any = None,
        created_before: Any = None,
    ) -> AsyncIterator[MemoryRecord]:
        """
        Every matching memory, oldest first, fetched one page at a time.

        Filters are validated before the iterator is returned, so a bad
        filter raises ValidationError here rather than mid-stream.
        """
        self._build_filters(type, tags, created_after, created_before)
        return self._export_pages(type, tags, created_after, created_before)

    async def _export_pages(self, type, tags, created_after, created_before) -> AsyncIterator[MemoryRecord]:
        offset = 0
        while True:
            page = await self.list(
                type=type,
                tags=tags,
                created_after=created_after,
                created_before=created_before,
                limit=self.config.max_limit,
                offset=offset,
                order_by="created_at",
                order="asc",
            )
            for record in page.memories:
                yield record
            offset += len(page.memories)
            if not page.memories or offset >= page.total:
                return

    @track_operation("search")
    async def search(
        self,
        query: str,
        type: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> SearchResult:
        """
        Rank memories by similarity to `query`.

        similarity = clamp(1 - cosine distance, 0, 1). Results below the
        threshold are dropped; the rest are ordered by similarity descending
        with ties broken by created_at descending.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query", "must be a non-empty string")
        limit = self._validate_limit(limit, self.config.default_search_limit)
        if threshold is None:
            threshold = self.config.similarity_threshold
        threshold = self._validate_unit_interval(threshold, "threshold")
        filters = self._build_filters(type, tags)

        vector = await self._embed(query)
        neighbours = await self.store.nearest_by_vector(vector, filters, limit)

        results: List[MemoryRecord] = []
        for record, distance in neighbours:
            similarity = min(1.0, max(0.0, 1.0 - distance))
            if similarity < threshold:
                continue
            record.similarity = similarity
            results.append(record)

        results.sort(key=lambda r: r.created_at, reverse=True)
        results.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug(f"Search returned {len(results)}/{len(neighbours)} above threshold {threshold}")
        return SearchResult(memories=results, query=query, threshold=threshold)

    # ==========================================================================
    # Links
    # ==========================================================================

    @track_operation("link")
    async def link(
        self,
        source_id: str,
        target_id: str,
        relationship: str,
        strength: Optional[float] = None,
        metadata: Optional[dict] = None,
    ) -> MemoryLink:
        """Create or update the (source, target, relationship) link."""
        source_id = self._require_id(source_id, "source_id")
        target_id = self._require_id(target_id, "target_id")
        if not isinstance(relationship, str) or not relationship.strip():
            raise ValidationError("relationship", "must be a non-empty string")
        relationship = relationship.strip()
        if len(relationship) > self.config.max_relationship_length:
            raise ValidationError(
                "relationship", f"must be at most {self.config.max_relationship_length} characters"
            )
        strength = 0.5 if strength is None else self._validate_unit_interval(strength, "strength")
        metadata = self._validate_metadata(metadata)

        for memory_id in (source_id, target_id):
            if await self.store.get_by_id(memory_id) is None:
                raise MemoryNotFoundError(memory_id)

        link = await self.store.upsert_link(
            MemoryLink(
                id=str(uuid.uuid4()),
                source_id=source_id,
                target_id=target_id,
                relationship=relationship,
                strength=strength,
                metadata=metadata,
                created_at=utcnow(),
            )
        )
        logger.info(f"Linked {source_id} -[{relationship}]-> {target_id}")
        return link

    @track_operation("links")
    async def links(self, memory_id: str) -> List[MemoryLink]:
        """All links where the memory is either endpoint."""
        memory_id = self._require_id(memory_id)
        if await self.store.get_by_id(memory_id) is None:
            raise MemoryNotFoundError(memory_id)
        return await self.store.get_links(memory_id)

    @track_operation("unlink")
    async def unlink(self, source_id: str, target_id: str, relationship: str) -> bool:
        source_id = self._require_id(source_id, "source_id")
        target_id = self._require_id(target_id, "target_id")
        if not isinstance(relationship, str) or not relationship.strip():
            raise ValidationError("relationship", "must be a non-empty string")
        if not await self.store.delete_link(source_id, target_id, relationship.strip()):
            raise LinkNotFoundError(source_id, target_id, relationship.strip())
        return True

    # ==========================================================================
    # Batch / stats / readiness
    # ==========================================================================

    @track_operation("batch")
    async def batch(self, operations: Sequence[dict]) -> List[dict]:
        """
        Run create/update/delete operations in order.

        Each entry is {"operation": ..., "id": ..., "data": {...}}. A failing
        operation is reported in its own result and does not stop the rest.
        """
        if not isinstance(operations, (list, tuple)):
            raise ValidationError("operations", "must be a list")

        results: List[dict] = []
        for op in operations:
            name = op.get("operation") if isinstance(op, dict) else None
            try:
                if name not in BATCH_OPERATIONS:
                    raise ValidationError("operation", f"must be one of {list(BATCH_OPERATIONS)}", name)
                data = op.get("data") or {}
                if not isinstance(data, dict):
                    raise ValidationError("data", "must be an object")
                if name == "create":
                    fields = _pick(data, _CREATE_FIELDS)
                    record = await self.create(
                        fields.pop("type", None), fields.pop("content", None), **fields
                    )
                    results.append({"success": True, "operation": name, "result": record.to_dict()})
                elif name == "update":
                    record = await self.update(op.get("id"), **_pick(data, _UPDATE_FIELDS))
                    results.append({"success": True, "operation": name, "result": record.to_dict()})
                else:
                    await self.delete(op.get("id"))
                    results.append({"success": True, "operation": name, "id": op.get("id")})
            except MemoryServerError as e:
                logger.warning(f"Batch {name} failed: {e.message}")
                entry = {"success": False, "operation": name, "error": e.message, "code": e.error_code}
                if isinstance(op, dict) and op.get("id") is not None:
                    entry["id"] = op.get("id")
                results.append(entry)
        return results

    def _check_fields(self, fields: dict, partial: bool) -> None:
        if not partial or fields.get("type") is not None:
            self._validate_type(fields.get("type"))
        if not partial or fields.get("content") is not None:
            self._validate_content(fields.get("content"))
        self._validate_source(fields.get("source"))
        self._normalize_tags(fields.get("tags"))
        if fields.get("confidence") is not None:
            self._validate_unit_interval(fields["confidence"], "confidence")
        self._validate_metadata(fields.get("metadata"))

    def validate_batch(self, operations: Sequence[dict]) -> List[dict]:
        """
        Dry run of batch(): apply the same field checks without touching
        storage or computing embeddings.

        Ids are checked for shape only, so an update or delete of an unknown
        id still validates. Returns one {index, operation, field, message}
        entry per rejected operation; an empty list means the batch is valid.
        """
        if not isinstance(operations, (list, tuple)):
            raise ValidationError("operations", "must be a list")

        errors: List[dict] = []
        for index, op in enumerate(operations):
            name = op.get("operation") if isinstance(op, dict) else None
            try:
                if name not in BATCH_OPERATIONS:
                    raise ValidationError("operation", f"must be one of {list(BATCH_OPERATIONS)}", name)
                data = op.get("data") or {}
                if not isinstance(data, dict):
                    raise ValidationError("data", "must be an object")
                if name == "create":
                    self._check_fields(_pick(data, _CREATE_FIELDS), partial=False)
                else:
                    self._require_id(op.get("id"))
                    if name == "update":
                        self._check_fields(_pick(data, _UPDATE_FIELDS), partial=True)
            except ValidationError as e:
                errors.append({"index": index, "operation": name, "field": e.field, "message": e.reason})
        return errors

    async def stats(self) -> dict[str, Any]:
        by_type = await self.store.count_by_type()
        return {
            "total_memories": sum(by_type.values()),
            "by_type": by_type,
            "embedding": {
                "provider": getattr(self.provider, "name", "unknown"),
                "model": self.provider.model_id,
                "dimension": self.provider.dimension,
            },
            "cache": self.cache.stats(),
        }

    async def check_ready(self) -> dict[str, Any]:
        """Check storage and the embedding provider."""
        checks: dict[str, Any] = {"storage": False, "embedding": False}
        try:
            checks["storage"] = await self.store.ping()
        except MemoryServerError as e:
            logger.warning(f"Storage readiness check failed: {e}")
        try:
            vector = await self.provider.embed("health check")
            checks["embedding"] = len(vector) == self.provider.dimension
        except MemoryServerError as e:
            logger.warning(f"Embedding readiness check failed: {e}")
        return checks


_CREATE_FIELDS = ("type", "content", "source", "tags", "confidence", "metadata")
_UPDATE_FIELDS = ("content", "tags", "type", "metadata", "confidence", "source")


def _pick(data: dict, fields: Sequence[str]) -> dict:
    unknown = set(data) - set(fields)
    if unknown:
        raise ValidationError("data", f"unknown fields: {sorted(unknown)}")
    return {k: data[k] for k in fields if k in data}

"""
Memory Service Tests
====================
Validation, CRUD, listing, similarity search, links and batch operations
against a real SQLite store and the hashing provider.
"""

import asyncio

import pytest

from mcp_memory.core.config import MemoryConfig
from mcp_memory.core.embedding_cache import EmbeddingCache
from mcp_memory.core.exceptions import (
    LinkNotFoundError,
    MemoryNotFoundError,
    ProviderError,
    ValidationError,
)
from mcp_memory.core.memory_service import MemoryService
from tests.mocks import CountingProvider, FailingProvider


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"type": "", "content": "x"}, "type"),
            ({"type": "t" * 65, "content": "x"}, "type"),
            ({"type": "fact", "content": "   "}, "content"),
            ({"type": "fact", "content": None}, "content"),
            ({"type": "fact", "content": 42}, "content"),
            ({"type": "fact", "content": "x", "confidence": 1.5}, "confidence"),
            ({"type": "fact", "content": "x", "confidence": True}, "confidence"),
            ({"type": "fact", "content": "x", "tags": "docker"}, "tags"),
            ({"type": "fact", "content": "x", "tags": ["x" * 65]}, "tags"),
            ({"type": "fact", "content": "x", "metadata": ["nope"]}, "metadata"),
            ({"type": "fact", "content": "x", "source": "s" * 256}, "source"),
        ],
    )
    async def test_create_rejects(self, service, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            await service.create(**kwargs)
        assert exc_info.value.context["field"] == field
        assert (await service.list()).total == 0

    @pytest.mark.asyncio
    async def test_too_many_tags(self, store, provider, cache):
        svc = MemoryService(store, provider, cache, MemoryConfig(max_tags=2))
        with pytest.raises(ValidationError):
            await svc.create("fact", "x", tags=["a", "b", "c"])

    @pytest.mark.asyncio
    async def test_validation_precedes_embedding(self, store, cache):
        counting = CountingProvider()
        svc = MemoryService(store, counting, cache)
        with pytest.raises(ValidationError):
            await svc.create("fact", "x", confidence=-0.1)
        with pytest.raises(ValidationError):
            await svc.search("   ")
        assert counting.calls == []

    @pytest.mark.asyncio
    async def test_bad_list_arguments(self, service):
        with pytest.raises(ValidationError):
            await service.list(limit=0)
        with pytest.raises(ValidationError):
            await service.list(offset=-1)
        with pytest.raises(ValidationError):
            await service.list(order_by="content")
        with pytest.raises(ValidationError):
            await service.list(order="sideways")
        with pytest.raises(ValidationError):
            await service.list(created_after="yesterday")


class TestRecords:
    @pytest.mark.asyncio
    async def test_create_and_get(self, service, provider):
        record = await service.create(
            "learning",
            {"topic": "Docker", "details": {"ports": [80, 443]}},
            source="unit-test",
            tags=[" docker ", "test", "docker", ""],
            confidence=0.8,
            metadata={"origin": "pytest"},
        )
        assert record.tags == ["docker", "test"]
        assert len(record.embedding) == provider.dimension

        loaded = await service.get_by_id(record.id)
        assert loaded.content == {"topic": "Docker", "details": {"ports": [80, 443]}}
        assert loaded.type == "learning"
        assert loaded.confidence == 0.8
        assert loaded.metadata == {"origin": "pytest"}
        assert loaded.created_at == loaded.updated_at

    @pytest.mark.asyncio
    async def test_defaults(self, service):
        record = await service.create("note", "plain text")
        assert record.confidence == 0.5
        assert record.tags == []
        assert record.metadata == {}
        assert record.source is None

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, service):
        assert await service.get_by_id("does-not-exist") is None
        with pytest.raises(ValidationError):
            await service.get_by_id("")

    @pytest.mark.asyncio
    async def test_update_fields(self, service):
        record = await service.create("fact", "original", tags=["a"])
        updated = await service.update(record.id, tags=["b", "b"], confidence=0.1, metadata={"k": 1})
        assert updated.tags == ["b"]
        assert updated.confidence == 0.1
        assert updated.metadata == {"k": 1}
        assert updated.content == "original"
        assert updated.created_at == record.created_at
        assert updated.updated_at > record.updated_at

    @pytest.mark.asyncio
    async def test_empty_patch_advances_updated_at(self, service):
        record = await service.create("fact", "x")
        first = await service.update(record.id)
        second = await service.update(record.id)
        assert record.updated_at < first.updated_at < second.updated_at

    @pytest.mark.asyncio
    async def test_content_change_recomputes_embedding(self, service):
        record = await service.create("fact", "apples and pears")
        updated = await service.update(record.id, content="submarine engines")
        assert updated.embedding != record.embedding

        hits = await service.search("submarine engines", threshold=0.99)
        assert [m.id for m in hits.memories] == [record.id]

    @pytest.mark.asyncio
    async def test_update_missing(self, service):
        with pytest.raises(MemoryNotFoundError):
            await service.update("missing", confidence=0.3)

    @pytest.mark.asyncio
    async def test_update_validates_before_lookup(self, service):
        with pytest.raises(ValidationError):
            await service.update("missing", confidence=3)

    @pytest.mark.asyncio
    async def test_delete_twice(self, service):
        record = await service.create("fact", "x")
        assert await service.delete(record.id) is True
        with pytest.raises(MemoryNotFoundError):
            await service.delete(record.id)
        assert await service.get_by_id(record.id) is None

    @pytest.mark.asyncio
    async def test_provider_failure_stores_nothing(self, store, cache):
        svc = MemoryService(store, FailingProvider(), cache)
        with pytest.raises(ProviderError):
            await svc.create("fact", "x")
        assert await store.count_by_type() == {}


class TestListing:
    @pytest.mark.asyncio
    async def test_filters_and_total(self, service):
        await service.create("fact", "one", tags=["x"])
        await service.create("learning", "two", tags=["y"])
        await service.create("fact", "three", tags=["y", "z"])

        result = await service.list(type="fact")
        assert result.total == 2
        assert {m.content for m in result.memories} == {"one", "three"}

        result = await service.list(tags=["z", "x"])
        assert result.total == 2

        result = await service.list(limit=1, offset=0)
        assert len(result.memories) == 1
        assert result.total == 3
        assert result.memories[0].content == "three"

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, store, provider, cache):
        svc = MemoryService(store, provider, cache, MemoryConfig(max_limit=3))
        for i in range(5):
            await svc.create("fact", f"item {i}")
        result = await svc.list(limit=50)
        assert result.limit == 3
        assert len(result.memories) == 3
        assert result.total == 5

    @pytest.mark.asyncio
    async def test_time_window(self, service):
        first = await service.create("fact", "first")
        await asyncio.sleep(0.002)
        second = await service.create("fact", "second")
        result = await service.list(created_after=second.created_at.isoformat())
        assert [m.id for m in result.memories] == [second.id]
        result = await service.list(created_before=first.created_at.isoformat().replace("+00:00", "Z"))
        assert [m.id for m in result.memories] == [first.id]

    @pytest.mark.asyncio
    async def test_order(self, service):
        low = await service.create("fact", "low", confidence=0.1)
        high = await service.create("fact", "high", confidence=0.9)
        result = await service.list(order_by="confidence", order="asc")
        assert [m.id for m in result.memories] == [low.id, high.id]


class TestSearch:
    @pytest.mark.asyncio
    async def test_self_search(self, service):
        record = await service.create("fact", "kubernetes pods restart")
        result = await service.search("kubernetes pods restart")
        assert result.memories[0].id == record.id
        assert result.memories[0].similarity == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.asyncio
    async def test_threshold_drops_unrelated(self, service):
        await service.create("fact", "gamma delta")
        result = await service.search("alpha beta", threshold=0.6)
        assert result.total == 0

        result = await service.search("alpha beta", threshold=0.0)
        assert result.total == 1
        assert 0.0 <= result.memories[0].similarity <= 1.0

    @pytest.mark.asyncio
    async def test_ordering(self, service):
        exact = await service.create("fact", "red green blue")
        partial = await service.create("fact", "red green yellow")
        result = await service.search("red green blue", threshold=0.0)
        ids = [m.id for m in result.memories]
        assert ids.index(exact.id) < ids.index(partial.id)
        sims = [m.similarity for m in result.memories]
        assert sims == sorted(sims, reverse=True)

    @pytest.mark.asyncio
    async def test_ties_prefer_newer(self, service):
        older = await service.create("fact", "same words here")
        await asyncio.sleep(0.002)
        newer = await service.create("fact", "same words here")
        result = await service.search("same words here", threshold=0.9)
        assert [m.id for m in result.memories] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_filters(self, service):
        await service.create("fact", "shared phrase", tags=["a"])
        tagged = await service.create("learning", "shared phrase", tags=["b"])
        result = await service.search("shared phrase", type="learning", threshold=0.5)
        assert [m.id for m in result.memories] == [tagged.id]
        result = await service.search("shared phrase", tags=["b"], threshold=0.5)
        assert [m.id for m in result.memories] == [tagged.id]

    @pytest.mark.asyncio
    async def test_query_embedding_is_cached(self, store):
        counting = CountingProvider()
        svc = MemoryService(store, counting, EmbeddingCache(max_size=16))
        await svc.search("cached query", threshold=0.0)
        await svc.search("cached  query ", threshold=0.0)
        assert counting.calls == ["cached query"]


class TestLinks:
    @pytest.mark.asyncio
    async def test_link_lifecycle(self, service):
        a = await service.create("fact", "a")
        b = await service.create("fact", "b")

        link = await service.link(a.id, b.id, "related_to", strength=0.7)
        assert link.strength == 0.7
        relinked = await service.link(a.id, b.id, "related_to", strength=0.2)
        assert relinked.id == link.id
        assert relinked.strength == 0.2

        assert [l.id for l in await service.links(b.id)] == [link.id]
        assert await service.unlink(a.id, b.id, "related_to") is True
        with pytest.raises(LinkNotFoundError):
            await service.unlink(a.id, b.id, "related_to")

    @pytest.mark.asyncio
    async def test_link_requires_both_memories(self, service):
        a = await service.create("fact", "a")
        with pytest.raises(MemoryNotFoundError):
            await service.link(a.id, "missing", "related_to")
        with pytest.raises(MemoryNotFoundError):
            await service.links("missing")
        with pytest.raises(ValidationError):
            await service.link(a.id, a.id, "r" * 51)

    @pytest.mark.asyncio
    async def test_delete_removes_links(self, service):
        a = await service.create("fact", "a")
        b = await service.create("fact", "b")
        await service.link(a.id, b.id, "depends_on")
        await service.delete(a.id)
        assert await service.links(b.id) == []


class TestBatchAndStats:
    @pytest.mark.asyncio
    async def test_batch_continues_after_failure(self, service):
        existing = await service.create("fact", "existing")
        results = await service.batch([
            {"operation": "create", "data": {"type": "fact", "content": "new"}},
            {"operation": "update", "id": existing.id, "data": {"confidence": 0.9}},
            {"operation": "delete", "id": "missing"},
            {"operation": "explode"},
            {"operation": "create", "data": {"type": "fact", "content": "x", "bogus": 1}},
            {"operation": "delete", "id": existing.id},
        ])
        assert [r["success"] for r in results] == [True, True, False, False, False, True]
        assert results[1]["result"]["confidence"] == 0.9
        assert results[2]["code"] == "MEMORY_NOT_FOUND_ERROR"
        assert results[2]["id"] == "missing"
        assert results[3]["code"] == "VALIDATION_ERROR"
        assert (await service.list()).total == 1

    @pytest.mark.asyncio
    async def test_stats(self, service, provider):
        await service.create("fact", "a")
        await service.create("fact", "b")
        await service.create("learning", "c")
        stats = await service.stats()
        assert stats["total_memories"] == 3
        assert stats["by_type"] == {"fact": 2, "learning": 1}
        assert stats["embedding"] == {
            "provider": "hashing",
            "model": provider.model_id,
            "dimension": provider.dimension,
        }
        assert stats["cache"]["size"] == 3

    @pytest.mark.asyncio
    async def test_check_ready(self, service, store, cache):
        assert await service.check_ready() == {"storage": True, "embedding": True}
        broken = MemoryService(store, FailingProvider(), cache)
        assert await broken.check_ready() == {"storage": True, "embedding": False}

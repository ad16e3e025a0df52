"""
Memory tool catalog
===================
Binds the memory service operations to named, schema-validated tools.
"""

from typing import Any, Dict, Iterable, Optional

from mcp_memory.core.exceptions import MemoryNotFoundError
from mcp_memory.core.memory_service import MemoryService
from mcp_memory.mcp.registry import ToolRegistry
from mcp_memory.mcp.schemas import (
    CreateMemoryInput,
    EmptyInput,
    LinkMemoryInput,
    ListMemoryInput,
    MemoryIdInput,
    SearchMemoryInput,
    UnlinkMemoryInput,
    UpdateMemoryInput,
)


def build_registry(service: MemoryService, allow_tools: Optional[Iterable[str]] = None) -> ToolRegistry:
    registry = ToolRegistry(allow=allow_tools)

    @registry.tool(
        "memory_create",
        "Store a new memory. Content may be a JSON object or plain text; an embedding "
        "is computed so the memory is immediately searchable.",
        CreateMemoryInput,
    )
    async def memory_create(args: CreateMemoryInput) -> Dict[str, Any]:
        record = await service.create(
            args.type,
            args.content,
            source=args.source,
            tags=args.tags,
            confidence=args.confidence,
            metadata=args.metadata,
        )
        return record.to_dict()

    @registry.tool(
        "memory_search",
        "Semantic search over stored memories. Returns memories whose similarity to the "
        "query is at least `threshold`, best match first.",
        SearchMemoryInput,
    )
    async def memory_search(args: SearchMemoryInput) -> Dict[str, Any]:
        result = await service.search(
            args.query,
            type=args.type,
            tags=args.tags,
            limit=args.limit,
            threshold=args.threshold,
        )
        return result.to_dict()

    @registry.tool(
        "memory_list",
        "List memories with optional type, tag and creation-time filters, newest first by default.",
        ListMemoryInput,
    )
    async def memory_list(args: ListMemoryInput) -> Dict[str, Any]:
        result = await service.list(
            type=args.type,
            tags=args.tags,
            created_after=args.created_after,
            created_before=args.created_before,
            limit=args.limit,
            offset=args.offset,
            order_by=args.order_by,
            order=args.order,
        )
        return result.to_dict()

    @registry.tool("memory_get", "Fetch one memory by id.", MemoryIdInput)
    async def memory_get(args: MemoryIdInput) -> Dict[str, Any]:
        record = await service.get_by_id(args.id)
        if record is None:
            raise MemoryNotFoundError(args.id)
        return record.to_dict()

    @registry.tool(
        "memory_update",
        "Update fields of a memory. Changing content recomputes its embedding.",
        UpdateMemoryInput,
    )
    async def memory_update(args: UpdateMemoryInput) -> Dict[str, Any]:
        record = await service.update(
            args.id,
            content=args.content,
            tags=args.tags,
            type=args.type,
            metadata=args.metadata,
            confidence=args.confidence,
            source=args.source,
        )
        return record.to_dict()

    @registry.tool("memory_delete", "Delete a memory and all of its links.", MemoryIdInput)
    async def memory_delete(args: MemoryIdInput) -> Dict[str, Any]:
        await service.delete(args.id)
        return {"deleted": True, "id": args.id}

    @registry.tool(
        "memory_link",
        "Create or update a typed relationship between two memories.",
        LinkMemoryInput,
    )
    async def memory_link(args: LinkMemoryInput) -> Dict[str, Any]:
        link = await service.link(
            args.source_id,
            args.target_id,
            args.relationship,
            strength=args.strength,
            metadata=args.metadata,
        )
        return link.to_dict()

    @registry.tool("memory_links", "List every link touching a memory.", MemoryIdInput)
    async def memory_links(args: MemoryIdInput) -> Dict[str, Any]:
        links = await service.links(args.id)
        return {"links": [link.to_dict() for link in links], "total": len(links)}

    @registry.tool(
        "memory_unlink",
        "Remove the link of the given relationship from source to target.",
        UnlinkMemoryInput,
    )
    async def memory_unlink(args: UnlinkMemoryInput) -> Dict[str, Any]:
        await service.unlink(args.source_id, args.target_id, args.relationship)
        return {
            "deleted": True,
            "source_id": args.source_id,
            "target_id": args.target_id,
            "relationship": args.relationship,
        }

    @registry.tool("memory_stats", "Memory counts by type plus embedding and cache statistics.", EmptyInput)
    async def memory_stats(args: EmptyInput) -> Dict[str, Any]:
        return await service.stats()

    return registry

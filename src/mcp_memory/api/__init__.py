"""
MCP Memory API Package
======================
FastAPI-based REST wrapper over the memory service.

Endpoints:
    - GET /health: Storage and embedding readiness
    - GET /stats: Counts by type, embedding, cache and pool statistics
    - POST /memories: Store a new memory
    - GET /memories: Filtered, paginated listing
    - POST /memories/search: Semantic similarity search
    - POST /memories/batch: Create/update/delete in one request
    - GET|PATCH|DELETE /memories/{id}: Single-record operations
    - GET|POST /memories/{id}/links: Relationships between memories

Configuration:
    API settings live in config.yaml under 'mcp_memory.api'.

Example:
    import httpx

    async with httpx.AsyncClient() as client:
        response = await client.post(
            "http://localhost:8100/memories",
            json={"type": "learning", "content": {"topic": "Docker"}},
        )
"""

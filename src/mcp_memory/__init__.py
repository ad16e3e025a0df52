"""
MCP Memory Server - Semantic Memory for Tool-Invoking Agents
============================================================

A semantic memory store exposed to AI agents over a line-delimited JSON-RPC
stream (stdio) and to HTTP clients over a thin REST wrapper.

Main Packages:
    - core: Configuration, errors, embeddings, embedding cache, memory service
    - storage: Store adapter contract, connection pool, SQLite adapter
    - mcp: JSON-RPC protocol engine, tool registry and memory tool catalog
    - api: FastAPI REST endpoints
    - cli: Command-line interface

Quick Start:
    from mcp_memory.core.config import load_config
    from mcp_memory.core.container import build_container

    container = build_container(load_config())
    await container.start()
    record = await container.memory_service.create("fact", {"topic": "Docker"})
    results = await container.memory_service.search("Docker", threshold=0.5)
"""

__version__ = "2.0.0"

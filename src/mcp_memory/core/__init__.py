"""
MCP Memory Core Module
======================
Configuration, error taxonomy, embeddings and the memory service.

Embeddings:
    - EmbeddingProvider: Pluggable text-to-vector provider (hashing, sentence-transformers)
    - EmbeddingCache: Bounded LRU keyed by normalized content fingerprint

Memory Service:
    - MemoryService: Validation, embedding and ranking over a StoreAdapter
    - MemoryRecord / MemoryLink: Domain models

Wiring:
    - build_container(): Explicit dependency construction from config

Example:
    from mcp_memory.core.config import load_config
    from mcp_memory.core.container import build_container
"""

"""
MCP Memory JSON-RPC Module
==========================
Line-delimited JSON-RPC 2.0 server exposing the memory service as tools.

Available Tools:
    - memory_create: Store a new memory
    - memory_search: Semantic similarity search
    - memory_list: Filtered, paginated listing
    - memory_get / memory_update / memory_delete: Single-record operations
    - memory_link / memory_links / memory_unlink: Relationships between memories
    - memory_stats: Counts and embedding/cache statistics

Configuration:
    Settings live in config.yaml under 'mcp_memory.protocol':
    - best_effort: Accept requests before the initialize handshake
    - shutdown_grace_seconds: How long in-flight calls may run while draining
    - max_concurrent_requests: Bound on concurrently executing tool calls
    - allow_tools: List of permitted tools

Usage:
    mcp-memory serve
"""

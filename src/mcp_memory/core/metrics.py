"""
Observability Metrics
=====================
Central definition of Prometheus metrics and utility decorators.

Metrics live in the default prometheus_client registry and are served by
the REST API under /metrics.
"""

import functools
import time

from prometheus_client import Counter, Gauge, Histogram

# --- Metrics Definitions ---
# Memory service
MEMORY_OPERATION_COUNT = Counter(
    "mcp_memory_operations_total",
    "Memory service operations",
    ["operation", "status"]
)
MEMORY_OPERATION_LATENCY = Histogram(
    "mcp_memory_operation_seconds",
    "Memory service operation latency",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5)
)

# Embeddings
EMBEDDING_COUNT = Counter(
    "mcp_memory_embeddings_total",
    "Embedding computations",
    ["provider", "status"]
)
EMBEDDING_LATENCY = Histogram(
    "mcp_memory_embedding_seconds",
    "Embedding computation latency",
    ["provider"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10)
)
EMBEDDING_CACHE_REQUESTS = Counter(
    "mcp_memory_embedding_cache_requests_total",
    "Embedding cache lookups",
    ["result"]
)

# Storage
STORAGE_OPERATION_COUNT = Counter(
    "mcp_memory_storage_ops_total",
    "Storage operations",
    ["backend", "operation", "status"]
)
STORAGE_LATENCY = Histogram(
    "mcp_memory_storage_latency_seconds",
    "Storage operation latency",
    ["backend", "operation"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1)
)
POOL_CONNECTIONS = Gauge(
    "mcp_memory_pool_connections",
    "Pooled database connections",
    ["backend", "state"]
)


# --- Decorators ---

def track_operation(operation: str):
    """
    Decorator for async memory service methods.

    Counts each call under `status="success"` or `status="failure"` and
    observes its duration.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            status = "failure"
            try:
                result = await func(*args, **kwargs)
                status = "success"
                return result
            finally:
                MEMORY_OPERATION_COUNT.labels(operation=operation, status=status).inc()
                MEMORY_OPERATION_LATENCY.labels(operation=operation).observe(
                    time.perf_counter() - start_time
                )
        return wrapper
    return decorator

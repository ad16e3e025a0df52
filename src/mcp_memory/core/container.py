"""
Dependency Injection Container
==============================
Builds and wires all application dependencies.
Components receive their collaborators explicitly; nothing here is global.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .config import MemoryServerConfig
from .embedding_cache import EmbeddingCache
from .embeddings import EmbeddingProvider, create_provider
from .memory_service import MemoryService
from mcp_memory.storage.base import StoreAdapter
from mcp_memory.storage.sqlite_store import SQLiteStore


@dataclass
class Container:
    """
    Container holding all wired application dependencies.

    Ownership: the container owns the store and the provider; the memory
    service only references them.
    """
    config: MemoryServerConfig
    store: Optional[StoreAdapter] = None
    provider: Optional[EmbeddingProvider] = None
    cache: Optional[EmbeddingCache] = None
    memory_service: Optional[MemoryService] = None
    started: bool = False

    async def start(self) -> None:
        """
        Open the store. Failure here is fatal for entry points.

        Raises:
            StorageError: If the connection pool cannot be established.
        """
        await self.store.initialize()
        self.started = True
        logger.info(
            f"Memory server ready (store={self.store.backend}, "
            f"embedding={self.provider.model_id}, dim={self.provider.dimension})"
        )

    async def stop(self) -> None:
        if self.store is not None:
            await self.store.close()
        if self.provider is not None:
            await self.provider.close()
        self.started = False


def build_container(
    config: MemoryServerConfig,
    store: Optional[StoreAdapter] = None,
    provider: Optional[EmbeddingProvider] = None,
) -> Container:
    """
    Build and wire all application dependencies.

    Args:
        config: Validated MemoryServerConfig instance.
        store: Optional store override (tests); defaults to SQLiteStore.
        provider: Optional provider override (tests); defaults to the
            configured embedding provider.

    Returns:
        Container with all dependencies constructed but not started.
    """
    container = Container(config=config)
    container.store = store or SQLiteStore.from_config(config.database)
    container.provider = provider or create_provider(config.embedding)
    container.cache = EmbeddingCache(
        max_size=config.cache.max_size,
        enabled=config.cache.enabled,
    )
    container.memory_service = MemoryService(
        store=container.store,
        provider=container.provider,
        cache=container.cache,
        config=config.memory,
    )
    return container

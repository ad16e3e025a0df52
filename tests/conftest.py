import sys
from pathlib import Path

import pytest
import pytest_asyncio


# Ensure local src/ package imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (SRC, ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use --run-slow to include)"
    )
    config.addinivalue_line(
        "markers",
        "requires_model: mark test as needing a downloadable sentence-transformers model"
    )


def pytest_addoption(parser):
    """Add custom command-line options for pytest."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests"
    )
    parser.addoption(
        "--run-model",
        action="store_true",
        default=False,
        help="Run tests that load a sentence-transformers model"
    )


def pytest_collection_modifyitems(config, items):
    skip_slow = pytest.mark.skip(reason="Slow test skipped. Use --run-slow to run.")
    skip_model = pytest.mark.skip(reason="Model test skipped. Use --run-model to run.")
    for item in items:
        if "slow" in item.keywords and not config.getoption("--run-slow"):
            item.add_marker(skip_slow)
        if "requires_model" in item.keywords and not config.getoption("--run-model"):
            item.add_marker(skip_model)


# =============================================================================
# Config
# =============================================================================

@pytest.fixture(autouse=True)
def clean_config():
    """Reset config state between tests."""
    from mcp_memory.core.config import reset_config
    reset_config()
    yield
    reset_config()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "data" / "memory.db")


@pytest.fixture
def memory_config():
    from mcp_memory.core.config import MemoryConfig
    return MemoryConfig()


@pytest.fixture
def server_config(db_path):
    """Full config pointing at a temporary database with a small embedding dimension."""
    from mcp_memory.core.config import (
        DatabaseConfig,
        EmbeddingConfig,
        MemoryServerConfig,
    )
    return MemoryServerConfig(
        database=DatabaseConfig(path=db_path, pool_size=3),
        embedding=EmbeddingConfig(provider="hashing", dimension=64),
    )


# =============================================================================
# Components
# =============================================================================

@pytest.fixture
def provider():
    """Deterministic hashing provider; small dimension keeps tests fast."""
    from mcp_memory.core.embeddings import HashingEmbeddingProvider
    return HashingEmbeddingProvider(dimension=64, timeout_seconds=5.0)


@pytest.fixture
def cache():
    from mcp_memory.core.embedding_cache import EmbeddingCache
    return EmbeddingCache(max_size=128)


@pytest_asyncio.fixture
async def store(db_path):
    """Initialized SQLite store on a temporary file."""
    from mcp_memory.storage.sqlite_store import SQLiteStore

    sqlite_store = SQLiteStore(db_path, pool_size=3, acquire_timeout=1.0, statement_timeout=5.0)
    await sqlite_store.initialize()
    yield sqlite_store
    await sqlite_store.close()


@pytest_asyncio.fixture
async def service(store, provider, cache, memory_config):
    from mcp_memory.core.memory_service import MemoryService
    return MemoryService(store=store, provider=provider, cache=cache, config=memory_config)


@pytest_asyncio.fixture
async def container(server_config):
    """Started container wired from server_config."""
    from mcp_memory.core.container import build_container

    built = build_container(server_config)
    await built.start()
    yield built
    await built.stop()

"""
MCP Memory Configuration System
===============================
Centralized, validated configuration with environment variable overrides.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field

import yaml

from mcp_memory.core.exceptions import ConfigurationError


DEFAULT_TOOLS = [
    "memory_create",
    "memory_search",
    "memory_list",
    "memory_get",
    "memory_update",
    "memory_delete",
    "memory_link",
    "memory_links",
    "memory_unlink",
    "memory_stats",
]

SUPPORTED_ORDER_FIELDS = ("created_at", "updated_at", "confidence", "type")


@dataclass(frozen=True)
class ServerConfig:
    name: str = "mcp-memory-server"
    version: str = "2.0.0"
    description: str = "Semantic memory store for AI agents"
    protocol_version: str = "2024-11-05"


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "./data/memory.db"
    pool_size: int = 5
    acquire_timeout_seconds: float = 2.0
    statement_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class EmbeddingConfig:
    provider: str = "hashing"  # "hashing" | "sentence-transformers"
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    dimension: int = 384
    timeout_seconds: float = 30.0
    device: Optional[str] = None


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = True
    max_size: int = 1000


@dataclass(frozen=True)
class MemoryConfig:
    """Limits and defaults applied by the memory service."""
    default_list_limit: int = 20
    max_limit: int = 100
    default_search_limit: int = 10
    similarity_threshold: float = 0.7
    max_tags: int = 32
    max_tag_length: int = 64
    max_type_length: int = 64
    max_source_length: int = 255
    max_relationship_length: int = 50


@dataclass(frozen=True)
class ProtocolConfig:
    best_effort: bool = False
    shutdown_grace_seconds: float = 5.0
    max_concurrent_requests: int = 16
    allow_tools: list[str] = field(default_factory=lambda: list(DEFAULT_TOOLS))


@dataclass(frozen=True)
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 8100
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    log_format: str = "text"  # "text" | "json"


@dataclass(frozen=True)
class MemoryServerConfig:
    """Root configuration for the memory server."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    api: APIConfig = field(default_factory=APIConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _env_override(key: str, default):
    """Check for MCP_MEMORY_<KEY> environment variable override."""
    env_key = f"MCP_MEMORY_{key.upper()}"
    val = os.environ.get(env_key)
    if val is None:
        return default
    # Type coercion based on the default's type
    try:
        if isinstance(default, bool):
            return val.lower() in ("true", "1", "yes")
        if isinstance(default, int):
            return int(val)
        if isinstance(default, float):
            return float(val)
    except ValueError:
        raise ConfigurationError(
            config_key=key.lower(),
            reason=f"{env_key}={val!r} is not a valid {type(default).__name__}",
        )
    return val


def _env_list(key: str, default: list[str]) -> list[str]:
    """Comma-separated list override."""
    val = os.environ.get(f"MCP_MEMORY_{key.upper()}")
    if val is None:
        return list(default)
    return [item.strip() for item in val.split(",") if item.strip()]


def _require(condition: bool, key: str, reason: str) -> None:
    if not condition:
        raise ConfigurationError(config_key=key, reason=reason)


def _validate(config: MemoryServerConfig) -> None:
    db = config.database
    _require(bool(db.path), "database.path", "must not be empty")
    _require(db.pool_size >= 1, "database.pool_size", f"must be >= 1, got {db.pool_size}")
    _require(db.acquire_timeout_seconds > 0, "database.acquire_timeout_seconds", "must be positive")
    _require(db.statement_timeout_seconds > 0, "database.statement_timeout_seconds", "must be positive")

    emb = config.embedding
    _require(emb.dimension >= 1, "embedding.dimension", f"must be >= 1, got {emb.dimension}")
    _require(emb.timeout_seconds > 0, "embedding.timeout_seconds", "must be positive")

    _require(config.cache.max_size >= 1, "cache.max_size", f"must be >= 1, got {config.cache.max_size}")

    mem = config.memory
    _require(mem.max_limit >= 1, "memory.max_limit", f"must be >= 1, got {mem.max_limit}")
    _require(1 <= mem.default_list_limit, "memory.default_list_limit", "must be >= 1")
    _require(1 <= mem.default_search_limit, "memory.default_search_limit", "must be >= 1")
    _require(
        0.0 <= mem.similarity_threshold <= 1.0,
        "memory.similarity_threshold",
        f"must be within [0, 1], got {mem.similarity_threshold}",
    )

    proto = config.protocol
    _require(proto.shutdown_grace_seconds >= 0, "protocol.shutdown_grace_seconds", "must be >= 0")
    _require(proto.max_concurrent_requests >= 1, "protocol.max_concurrent_requests", "must be >= 1")

    obs = config.observability
    _require(
        obs.log_format in ("text", "json"),
        "observability.log_format",
        f"must be 'text' or 'json', got {obs.log_format!r}",
    )


def load_config(path: Optional[Path] = None) -> MemoryServerConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Priority: ENV > YAML > defaults.

    Args:
        path: Path to config.yaml. If None, searches ./config.yaml and the
            project root.

    Returns:
        Validated MemoryServerConfig instance.

    Raises:
        ConfigurationError: If a value is out of range or has the wrong type.
    """
    if path is None:
        env_path = os.environ.get("MCP_MEMORY_CONFIG")
        candidates = [Path(env_path)] if env_path else []
        candidates += [
            Path("config.yaml"),
            Path(__file__).parent.parent.parent.parent / "config.yaml",
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break
    else:
        path = Path(path)

    raw = {}
    if path is not None and path.exists():
        with open(path) as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(config_key=str(path), reason=f"invalid YAML: {e}")
            raw = loaded.get("mcp_memory") or {}

    server_raw = raw.get("server") or {}
    server = ServerConfig(
        name=server_raw.get("name", "mcp-memory-server"),
        version=server_raw.get("version", "2.0.0"),
        description=server_raw.get("description", "Semantic memory store for AI agents"),
        protocol_version=server_raw.get("protocol_version", "2024-11-05"),
    )

    db_raw = raw.get("database") or {}
    database = DatabaseConfig(
        path=_env_override("DB_PATH", db_raw.get("path", "./data/memory.db")),
        pool_size=_env_override("DB_POOL_SIZE", db_raw.get("pool_size", 5)),
        acquire_timeout_seconds=_env_override(
            "DB_ACQUIRE_TIMEOUT_SECONDS", float(db_raw.get("acquire_timeout_seconds", 2.0))
        ),
        statement_timeout_seconds=_env_override(
            "DB_STATEMENT_TIMEOUT_SECONDS", float(db_raw.get("statement_timeout_seconds", 5.0))
        ),
    )

    emb_raw = raw.get("embedding") or {}
    embedding = EmbeddingConfig(
        provider=_env_override("EMBEDDING_PROVIDER", emb_raw.get("provider", "hashing")),
        model=_env_override("EMBEDDING_MODEL", emb_raw.get("model", "sentence-transformers/all-MiniLM-L6-v2")),
        dimension=_env_override("EMBEDDING_DIMENSION", emb_raw.get("dimension", 384)),
        timeout_seconds=_env_override("EMBEDDING_TIMEOUT_SECONDS", float(emb_raw.get("timeout_seconds", 30.0))),
        device=_env_override("EMBEDDING_DEVICE", emb_raw.get("device")),
    )

    cache_raw = raw.get("cache") or {}
    cache = CacheConfig(
        enabled=_env_override("CACHE_ENABLED", cache_raw.get("enabled", True)),
        max_size=_env_override("CACHE_MAX_SIZE", cache_raw.get("max_size", 1000)),
    )

    mem_raw = raw.get("memory") or {}
    memory = MemoryConfig(
        default_list_limit=_env_override("DEFAULT_LIST_LIMIT", mem_raw.get("default_list_limit", 20)),
        max_limit=_env_override("MAX_LIMIT", mem_raw.get("max_limit", 100)),
        default_search_limit=_env_override("DEFAULT_SEARCH_LIMIT", mem_raw.get("default_search_limit", 10)),
        similarity_threshold=_env_override(
            "SIMILARITY_THRESHOLD", float(mem_raw.get("similarity_threshold", 0.7))
        ),
        max_tags=mem_raw.get("max_tags", 32),
        max_tag_length=mem_raw.get("max_tag_length", 64),
        max_type_length=mem_raw.get("max_type_length", 64),
        max_source_length=mem_raw.get("max_source_length", 255),
        max_relationship_length=mem_raw.get("max_relationship_length", 50),
    )

    proto_raw = raw.get("protocol") or {}
    protocol = ProtocolConfig(
        best_effort=_env_override("BEST_EFFORT", proto_raw.get("best_effort", False)),
        shutdown_grace_seconds=_env_override(
            "SHUTDOWN_GRACE_SECONDS", float(proto_raw.get("shutdown_grace_seconds", 5.0))
        ),
        max_concurrent_requests=_env_override(
            "MAX_CONCURRENT_REQUESTS", proto_raw.get("max_concurrent_requests", 16)
        ),
        allow_tools=_env_list("ALLOW_TOOLS", proto_raw.get("allow_tools", DEFAULT_TOOLS)),
    )

    api_raw = raw.get("api") or {}
    api = APIConfig(
        host=_env_override("API_HOST", api_raw.get("host", "127.0.0.1")),
        port=_env_override("API_PORT", api_raw.get("port", 8100)),
        cors_origins=_env_list("CORS_ORIGINS", api_raw.get("cors_origins", ["*"])),
    )

    obs_raw = raw.get("observability") or {}
    log_format = os.environ.get("LOG_FORMAT") or obs_raw.get("log_format", "text")
    observability = ObservabilityConfig(
        log_level=_env_override("LOG_LEVEL", obs_raw.get("log_level", "INFO")),
        log_format=_env_override("LOG_FORMAT", log_format).lower(),
    )

    config = MemoryServerConfig(
        server=server,
        database=database,
        embedding=embedding,
        cache=cache,
        memory=memory,
        protocol=protocol,
        api=api,
        observability=observability,
    )
    _validate(config)
    return config


# Module-level singleton (lazy-loaded)
_CONFIG: Optional[MemoryServerConfig] = None


def get_config() -> MemoryServerConfig:
    """Get or initialize the global config singleton."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def reset_config():
    """Reset the global config singleton (useful for testing)."""
    global _CONFIG
    _CONFIG = None

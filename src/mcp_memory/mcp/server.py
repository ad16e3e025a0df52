"""
MCP Memory stdio Server
=======================
Runs the protocol engine over stdin/stdout. Logs go to stderr.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from mcp_memory.core.config import MemoryServerConfig, get_config, load_config
from mcp_memory.core.container import Container, build_container
from mcp_memory.core.exceptions import MemoryServerError
from mcp_memory.core.logging_config import configure_logging
from mcp_memory.mcp.engine import ProtocolEngine
from mcp_memory.mcp.tools import build_registry

# Tool arguments can carry large documents.
STREAM_LIMIT = 16 * 1024 * 1024


def build_engine(container: Container, config: Optional[MemoryServerConfig] = None) -> ProtocolEngine:
    cfg = config or container.config
    registry = build_registry(container.memory_service, cfg.protocol.allow_tools)
    logger.info(f"Registered MCP tools: {', '.join(registry.names())}")
    return ProtocolEngine(registry, cfg.server, cfg.protocol)


async def connect_stdio() -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


def _install_signal_handlers(engine: ProtocolEngine) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.begin_shutdown, f"signal {sig.name}")
        except NotImplementedError:
            logger.debug(f"Signal handlers not supported on this platform ({sig.name})")


async def run_stdio_server(config: MemoryServerConfig, container: Optional[Container] = None) -> int:
    """Serve one stdio connection. Returns the process exit code."""
    container = container or build_container(config)
    try:
        await container.start()
    except MemoryServerError as e:
        logger.critical(f"Cannot start memory server: {e}")
        return 1

    try:
        engine = build_engine(container, config)
        _install_signal_handlers(engine)
        reader, writer = await connect_stdio()
        await engine.serve(reader, writer)
    finally:
        await container.stop()
    return 0


def main(config_path: Optional[Path] = None) -> None:
    cfg = load_config(config_path) if config_path else get_config()
    configure_logging(
        level=cfg.observability.log_level,
        json_format=cfg.observability.log_format == "json",
    )
    sys.exit(asyncio.run(run_stdio_server(cfg)))


if __name__ == "__main__":
    main()

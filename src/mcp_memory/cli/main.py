"""
MCP Memory CLI - Main Entry Point

Command-line interface for the memory server.

Usage:
    mcp-memory serve                                  # stdio JSON-RPC server
    mcp-memory serve-http --port 8100                 # REST API
    mcp-memory store "Docker uses layers" -T learning # Store a memory
    mcp-memory search "container images"              # Semantic search
    mcp-memory list --type learning --json            # List memories
    mcp-memory stats                                  # Show store statistics
"""

import asyncio
import dataclasses
import json
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import Callable, Optional

import click

from mcp_memory.core.config import MemoryServerConfig, get_config, load_config
from mcp_memory.core.exceptions import MemoryServerError
from mcp_memory.core.logging_config import configure_logging


# ============================================================================
# Service Lifecycle
# ============================================================================

def _resolve_config(ctx: click.Context) -> MemoryServerConfig:
    config_path = ctx.obj.get("config_path")
    cfg = load_config(Path(config_path)) if config_path else get_config()
    if ctx.obj.get("db_path"):
        cfg = dataclasses.replace(
            cfg, database=dataclasses.replace(cfg.database, path=ctx.obj["db_path"])
        )
    return cfg


@asynccontextmanager
async def service_context(config: MemoryServerConfig):
    """
    Async context manager for the container lifecycle.

    Usage:
        async with service_context(cfg) as service:
            record = await service.get_by_id(memory_id)
    """
    from mcp_memory.core.container import build_container

    container = build_container(config)
    await container.start()
    try:
        yield container.memory_service
    finally:
        await container.stop()


def with_service(func: Callable) -> Callable:
    """
    Run an async command body with a started memory service.

    The decorated function must be async and accept (ctx, service, ...).
    Domain errors are reported on stderr and exit with status 1.
    """
    @wraps(func)
    def wrapper(ctx, *args, **kwargs):
        async def run():
            async with service_context(_resolve_config(ctx)) as service:
                return await func(ctx, service, *args, **kwargs)

        try:
            return asyncio.run(run())
        except MemoryServerError as e:
            if ctx.obj.get("output_json"):
                click.echo(json.dumps({"success": False, **e.to_dict()}, indent=2))
            else:
                click.echo(f"Error: {e}", err=True)
            ctx.exit(1)

    return wrapper


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _preview(content, width: int = 80) -> str:
    text = content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)
    return text[:width] + "..." if len(text) > width else text


def _echo_record(record, index: Optional[int] = None) -> None:
    prefix = f"{index}. " if index is not None else ""
    score = f" (similarity: {record.similarity:.2f})" if record.similarity is not None else ""
    click.echo(f"{prefix}[{record.id}] {record.type}{score}")
    click.echo(f"   {_preview(record.content)}")
    if record.tags:
        click.echo(f"   Tags: {', '.join(record.tags)}")


def _parse_json_option(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint=name)


# ============================================================================
# CLI Group and Main Entry
# ============================================================================

@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to config.yaml file",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(),
    help="Override the SQLite database path",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.pass_context
def cli(ctx, config: Optional[str], db_path: Optional[str], verbose: bool):
    """
    MCP Memory - semantic memory store for AI agents.

    Stores typed, tagged memories with embeddings and serves them over
    line-delimited JSON-RPC (stdio) or a REST API.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["db_path"] = db_path
    ctx.obj["verbose"] = verbose

    configure_logging(level="DEBUG" if verbose else "WARNING", json_format=False)


# ============================================================================
# Servers
# ============================================================================

@cli.command()
@click.pass_context
def serve(ctx):
    """
    Run the JSON-RPC server on stdin/stdout.

    Logs are written to stderr so stdout carries protocol frames only.
    """
    from mcp_memory.mcp.server import run_stdio_server

    cfg = _resolve_config(ctx)
    configure_logging(
        level="DEBUG" if ctx.obj["verbose"] else cfg.observability.log_level,
        json_format=cfg.observability.log_format == "json",
    )
    ctx.exit(asyncio.run(run_stdio_server(cfg)))


@cli.command("serve-http")
@click.option("--host", help="Bind address (default: api.host)")
@click.option("--port", type=int, help="Port (default: api.port)")
@click.pass_context
def serve_http(ctx, host: Optional[str], port: Optional[int]):
    """Run the REST API with uvicorn."""
    from mcp_memory.api.main import run

    cfg = _resolve_config(ctx)
    configure_logging(
        level="DEBUG" if ctx.obj["verbose"] else cfg.observability.log_level,
        json_format=cfg.observability.log_format == "json",
    )
    run(cfg, host=host, port=port)


# ============================================================================
# Memory Commands
# ============================================================================

@cli.command()
@click.argument("content", required=True)
@click.option("--type", "-T", "memory_type", default="note", show_default=True, help="Memory type")
@click.option("--tags", "-t", multiple=True, help="Tags to attach (can use multiple times)")
@click.option("--source", "-s", help="Where the memory came from")
@click.option("--confidence", type=float, help="Confidence score (0.0-1.0)")
@click.option("--metadata", "-m", help="JSON metadata as string")
@click.option("--json-content", is_flag=True, help="Parse CONTENT as a JSON object")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def store(ctx, content: str, memory_type: str, tags: tuple, source: Optional[str],
          confidence: Optional[float], metadata: Optional[str], json_content: bool, output_json: bool):
    """
    Store a new memory.

    Example:
        mcp-memory store '{"topic": "Docker"}' --json-content -T learning -t docker
    """
    ctx.obj["output_json"] = output_json
    body = _parse_json_option(content, "CONTENT") if json_content else content
    meta = _parse_json_option(metadata, "--metadata")

    @with_service
    async def _store(ctx, service):
        record = await service.create(
            memory_type,
            body,
            source=source,
            tags=list(tags),
            confidence=confidence,
            metadata=meta,
        )
        if output_json:
            _echo_json({"success": True, **record.to_dict()})
        else:
            click.echo(f"Stored memory: {record.id}")
            click.echo(f"Content: {_preview(record.content, 100)}")
            if record.tags:
                click.echo(f"Tags: {', '.join(record.tags)}")

    return _store(ctx)


@cli.command()
@click.argument("query", required=True)
@click.option("--type", "-T", "memory_type", help="Only search this type")
@click.option("--tags", "-t", multiple=True, help="Require these tags")
@click.option("--limit", "-k", type=int, help="Number of results to return")
@click.option("--threshold", "-s", type=float, help="Minimum similarity (0.0-1.0)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search(ctx, query: str, memory_type: Optional[str], tags: tuple, limit: Optional[int],
           threshold: Optional[float], output_json: bool):
    """
    Semantic search over memories.

    Example:
        mcp-memory search "container images" -k 5 -s 0.3
    """
    ctx.obj["output_json"] = output_json

    @with_service
    async def _search(ctx, service):
        result = await service.search(
            query, type=memory_type, tags=list(tags) or None, limit=limit, threshold=threshold
        )
        if output_json:
            _echo_json(result.to_dict())
            return
        if not result.memories:
            click.echo(f"No memories found matching: {query}")
            return
        click.echo(f"Found {result.total} memories for: {query}")
        click.echo()
        for i, record in enumerate(result.memories, 1):
            _echo_record(record, i)

    return _search(ctx)


@cli.command("list")
@click.option("--type", "-T", "memory_type", help="Only list this type")
@click.option("--tags", "-t", multiple=True, help="Require these tags")
@click.option("--after", "created_after", help="Created at or after (ISO-8601)")
@click.option("--before", "created_before", help="Created at or before (ISO-8601)")
@click.option("--limit", "-n", type=int, help="Page size")
@click.option("--offset", type=int, default=0, help="Records to skip")
@click.option("--order-by", default="created_at", show_default=True)
@click.option("--order", type=click.Choice(["asc", "desc"]), default="desc", show_default=True)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_memories(ctx, memory_type, tags, created_after, created_before, limit, offset,
                  order_by, order, output_json):
    """List memories, newest first."""
    ctx.obj["output_json"] = output_json

    @with_service
    async def _list(ctx, service):
        result = await service.list(
            type=memory_type,
            tags=list(tags) or None,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order=order,
        )
        if output_json:
            _echo_json(result.to_dict())
            return
        click.echo(f"Showing {len(result.memories)} of {result.total} memories")
        for i, record in enumerate(result.memories, result.offset + 1):
            _echo_record(record, i)

    return _list(ctx)


@cli.command()
@click.argument("memory_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def get(ctx, memory_id: str, output_json: bool):
    """Show one memory."""
    ctx.obj["output_json"] = output_json

    @with_service
    async def _get(ctx, service):
        record = await service.get_by_id(memory_id)
        if record is None:
            if output_json:
                _echo_json({"success": False, "error": f"Memory not found: {memory_id}"})
            else:
                click.echo(f"Memory not found: {memory_id}", err=True)
            ctx.exit(1)
        if output_json:
            _echo_json(record.to_dict())
        else:
            _echo_record(record)
            click.echo(f"   Created: {record.created_at.isoformat()}")
            click.echo(f"   Updated: {record.updated_at.isoformat()}")
            click.echo(f"   Confidence: {record.confidence:.2f}")

    return _get(ctx)


@cli.command()
@click.argument("memory_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx, memory_id: str, yes: bool):
    """Delete a memory and its links."""
    if not yes:
        click.confirm(f"Delete memory {memory_id}?", abort=True)

    @with_service
    async def _delete(ctx, service):
        await service.delete(memory_id)
        click.echo(f"Deleted memory: {memory_id}")

    return _delete(ctx)


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.argument("relationship")
@click.option("--strength", type=float, help="Link strength (0.0-1.0)")
@click.pass_context
def link(ctx, source_id: str, target_id: str, relationship: str, strength: Optional[float]):
    """Link SOURCE_ID to TARGET_ID with RELATIONSHIP."""

    @with_service
    async def _link(ctx, service):
        created = await service.link(source_id, target_id, relationship, strength=strength)
        click.echo(f"Linked {created.source_id} -[{created.relationship}]-> {created.target_id}")

    return _link(ctx)


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.argument("relationship")
@click.pass_context
def unlink(ctx, source_id: str, target_id: str, relationship: str):
    """Remove the RELATIONSHIP link from SOURCE_ID to TARGET_ID."""

    @with_service
    async def _unlink(ctx, service):
        await service.unlink(source_id, target_id, relationship)
        click.echo(f"Unlinked {source_id} -[{relationship}]-> {target_id}")

    return _unlink(ctx)


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx, output_json: bool):
    """Show store statistics."""
    ctx.obj["output_json"] = output_json

    @with_service
    async def _stats(ctx, service):
        data = await service.stats()
        if output_json:
            _echo_json(data)
            return
        click.echo(f"Total memories: {data['total_memories']}")
        for memory_type, count in sorted(data["by_type"].items()):
            click.echo(f"  {memory_type}: {count}")
        emb = data["embedding"]
        click.echo(f"Embedding: {emb['provider']} ({emb['model']}, dim={emb['dimension']})")
        cache = data["cache"]
        click.echo(f"Cache: {cache['size']}/{cache['max_size']} (hits={cache['hits']}, misses={cache['misses']})")

    return _stats(ctx)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

"""
MCP Memory CLI - Command Line Interface for the memory server

Provides terminal commands for:
- Running the stdio JSON-RPC server and the REST API
- Storing, searching and listing memories
- Inspecting, linking and deleting single memories
- Viewing store statistics
"""

from .main import cli

__all__ = ["cli"]

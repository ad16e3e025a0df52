"""
MCP Memory Logging Configuration
================================
Centralized logging configuration using loguru.

Provides:
  - configure_logging(): Setup function called by entry points at startup
  - JSON log lines when LOG_FORMAT=json environment variable is set
  - Standard library logging routed into loguru

Logs always go to stderr: stdout carries the JSON-RPC stream when the
server runs over stdio.

Usage:
    from mcp_memory.core.logging_config import configure_logging

    configure_logging(level="INFO", json_format=False)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from loguru import logger

_CONFIGURED = False


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            log_level = logger.level(record.levelname).name
        except ValueError:
            log_level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            log_level, record.getMessage()
        )


def configure_logging(
    level: Optional[str] = "INFO",
    json_format: Optional[bool] = None,
    *,
    sink=None,
) -> None:
    """
    Configure loguru logging for the memory server.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: If True, emit JSON lines. If None, check LOG_FORMAT env var.
        sink: Optional file path or stream. Defaults to stderr.

    Environment:
        LOG_FORMAT: Set to "json" to enable JSON formatted logs.
        LOG_LEVEL: Used when level is None.
    """
    global _CONFIGURED

    if json_format is None:
        json_format = os.environ.get("LOG_FORMAT", "").lower() == "json"

    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")

    logger.remove()

    log_sink = sink if sink is not None else sys.stderr

    if json_format:
        logger.add(
            log_sink,
            level=level.upper(),
            serialize=True,
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            log_sink,
            level=level.upper(),
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
            ),
            colorize=sink is None and sys.stderr.isatty(),
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access", "aiosqlite"]:
        logging.getLogger(logger_name).setLevel(level.upper())

    _CONFIGURED = True
    logger.debug(f"Logging configured: level={level}, json_format={json_format}")


def is_configured() -> bool:
    return _CONFIGURED


__all__ = ["configure_logging", "is_configured", "InterceptHandler", "logger"]

"""
Shared utility functions for the memory server modules.
"""

import asyncio
import functools
import hashlib
from typing import Callable, Optional, TypeVar, ParamSpec

import numpy as np
from loguru import logger

P = ParamSpec('P')
T = TypeVar('T')


# =============================================================================
# Thread Pool Executor Helper
# =============================================================================

async def run_in_thread(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """
    Run a blocking function in a thread pool executor.

    Example:
        result = await run_in_thread(some_blocking_func, arg1, arg2, kwarg=value)
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


# =============================================================================
# Token Vector Generation
# =============================================================================

def get_token_vector(token: str, dimension: int) -> np.ndarray:
    """
    Deterministic Gaussian vector for a token, seeded from its SHA-256 digest.

    Args:
        token: The token string to generate a vector for.
        dimension: The dimensionality of the output vector.

    Returns:
        A float64 numpy array of shape (dimension,).
    """
    seed = int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:8], "little")
    return np.random.default_rng(seed).standard_normal(dimension)


# =============================================================================
# Async Task Exception Handling
# =============================================================================

def log_task_exception(task: asyncio.Task) -> None:
    """
    Callback to log exceptions from fire-and-forget asyncio tasks.

        task = asyncio.ensure_future(some_coro())
        task.add_done_callback(log_task_exception)
    """
    if task.cancelled():
        logger.debug(f"Async task {task.get_name()} was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error(
            f"Async task {task.get_name()} failed with exception: {exc}"
        )


def safe_ensure_future(coro, *, name: Optional[str] = None) -> asyncio.Task:
    """
    Create an asyncio.Task with automatic exception logging.

    Example:
        safe_ensure_future(some_background_operation(), name="bg_op")
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    task.add_done_callback(log_task_exception)
    return task

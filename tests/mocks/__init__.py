"""
Test doubles for the memory server
==================================
Embedding providers with controllable behaviour, for exercising the
provider error paths and the embedding cache without a real model.

Usage:
    from tests.mocks import CountingProvider, FailingProvider
"""

from .providers import (
    CountingProvider,
    FailingProvider,
    SlowProvider,
    WrongDimensionProvider,
)

__all__ = ["CountingProvider", "FailingProvider", "SlowProvider", "WrongDimensionProvider"]

import time
from typing import List

import numpy as np

from mcp_memory.core.embeddings import EmbeddingProvider, HashingEmbeddingProvider


class CountingProvider(HashingEmbeddingProvider):
    """Hashing provider that records every text it was asked to encode."""

    name = "counting"

    def __init__(self, dimension: int = 32, timeout_seconds: float = 5.0):
        super().__init__(dimension, timeout_seconds)
        self.calls: List[str] = []

    def _encode(self, texts: List[str]) -> np.ndarray:
        self.calls.extend(texts)
        return super()._encode(texts)


class FailingProvider(EmbeddingProvider):
    name = "failing"

    def __init__(self, dimension: int = 32):
        super().__init__("failing-v1", dimension, timeout_seconds=5.0)

    def _encode(self, texts: List[str]) -> np.ndarray:
        raise RuntimeError("model backend unavailable")


class SlowProvider(EmbeddingProvider):
    name = "slow"

    def __init__(self, dimension: int = 32, delay: float = 0.5, timeout_seconds: float = 0.05):
        super().__init__("slow-v1", dimension, timeout_seconds)
        self.delay = delay

    def _encode(self, texts: List[str]) -> np.ndarray:
        time.sleep(self.delay)
        return np.ones((len(texts), self.dimension))


class WrongDimensionProvider(EmbeddingProvider):
    name = "wrong-dimension"

    def __init__(self, dimension: int = 32):
        super().__init__("wrong-v1", dimension, timeout_seconds=5.0)

    def _encode(self, texts: List[str]) -> np.ndarray:
        return np.ones((len(texts), self.dimension + 1))

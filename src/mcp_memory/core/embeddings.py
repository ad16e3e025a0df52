"""
Embedding Providers
===================
Pluggable text-to-vector providers.

- hashing: deterministic bag-of-tokens projection (numpy only, default)
- sentence-transformers: lazily loaded SentenceTransformer model

Every provider runs its computation in a worker thread bounded by the
configured timeout and verifies the output dimension.
"""

import asyncio
import json
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import numpy as np
from loguru import logger

from mcp_memory.core._utils import run_in_thread, get_token_vector
from mcp_memory.core.config import EmbeddingConfig
from mcp_memory.core.exceptions import (
    DependencyMissingError,
    DimensionMismatchError,
    ProviderError,
    ProviderTimeoutError,
    UnsupportedProviderError,
)
from mcp_memory.core.metrics import EMBEDDING_COUNT, EMBEDDING_LATENCY

SUPPORTED_PROVIDERS = ["hashing", "sentence-transformers"]

_LABELLED_FIELDS = ("title", "description", "topic", "summary")
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def content_to_text(content: Any) -> str:
    """
    Render memory content as the text that gets embedded.

    Strings are used as-is. For objects the well-known fields title,
    description, topic and summary are labelled ("Title: ..."), `text` is
    used verbatim and any other key is rendered as "key: value".
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, dict):
        return json.dumps(content, separators=(",", ":"), ensure_ascii=False, sort_keys=True)

    parts: List[str] = []
    for name in _LABELLED_FIELDS:
        value = content.get(name)
        if value is not None and value != "":
            parts.append(f"{name.capitalize()}: {_render(value)}")
    text = content.get("text")
    if text is not None and text != "":
        parts.append(_render(text))
    for key, value in content.items():
        if key in _LABELLED_FIELDS or key == "text":
            continue
        parts.append(f"{key}: {_render(value)}")
    return "\n".join(parts)


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


class EmbeddingProvider(ABC):
    """Base class for embedding providers."""

    name: str = "base"

    def __init__(self, model_id: str, dimension: int, timeout_seconds: float = 30.0):
        self.model_id = model_id
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def _encode(self, texts: List[str]) -> np.ndarray:
        """Blocking computation of a (len(texts), dimension) matrix."""

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        start_time = time.perf_counter()
        status = "failure"
        try:
            vectors = await self._compute(texts)
            status = "success"
            return vectors
        finally:
            EMBEDDING_COUNT.labels(provider=self.name, status=status).inc()
            EMBEDDING_LATENCY.labels(provider=self.name).observe(time.perf_counter() - start_time)

    async def _compute(self, texts: List[str]) -> List[List[float]]:
        try:
            matrix = await asyncio.wait_for(
                run_in_thread(self._encode, list(texts)),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"[{self.name}] embedding timed out after {self.timeout_seconds}s")
            raise ProviderTimeoutError(self.name, "embed", self.timeout_seconds)
        except (ProviderError, DependencyMissingError):
            raise
        except Exception as e:
            logger.error(f"[{self.name}] embedding failed: {e}")
            raise ProviderError(
                f"[{self.name}] embedding failed: {e}",
                {"provider": self.name, "model": self.model_id},
            ) from e

        matrix = np.asarray(matrix, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            actual = matrix.shape[-1] if matrix.ndim else 0
            raise DimensionMismatchError(self.dimension, int(actual), f"{self.name}.embed")
        return [row.tolist() for row in matrix]

    async def close(self) -> None:
        return None


class HashingEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic bag-of-tokens projection.

    Each lowercase word token maps to a Gaussian vector seeded from its
    SHA-256 digest; token vectors are summed by term frequency and the sum
    is L2-normalized. Texts without tokens embed to the zero vector.
    """

    name = "hashing"

    def __init__(self, dimension: int = 384, timeout_seconds: float = 30.0):
        super().__init__(f"hashing-v1-{dimension}", dimension, timeout_seconds)
        self._token_cache: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def _token_vector(self, token: str) -> np.ndarray:
        with self._lock:
            vec = self._token_cache.get(token)
        if vec is None:
            vec = get_token_vector(token, self.dimension)
            with self._lock:
                if len(self._token_cache) < 50_000:
                    self._token_cache[token] = vec
        return vec

    def _encode_one(self, text: str) -> np.ndarray:
        acc = np.zeros(self.dimension, dtype=np.float64)
        for token in _TOKEN_RE.findall(text.lower()):
            acc += self._token_vector(token)
        norm = np.linalg.norm(acc)
        if norm > 0:
            acc /= norm
        return acc

    def _encode(self, texts: List[str]) -> np.ndarray:
        return np.stack([self._encode_one(t) for t in texts])


class SentenceTransformerProvider(EmbeddingProvider):
    """Lazily loaded sentence-transformers model with normalized output."""

    name = "sentence-transformers"

    def __init__(
        self,
        model: str,
        dimension: int,
        timeout_seconds: float = 30.0,
        device: Optional[str] = None,
    ):
        super().__init__(model, dimension, timeout_seconds)
        self.device = device
        self._model = None
        self._load_lock = threading.Lock()

    def _ensure_model(self):
        if self._model is not None:
            return self._model
        with self._load_lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError:
                    raise DependencyMissingError(
                        "sentence-transformers",
                        "Install with: pip install mcp-memory-server[embeddings]",
                    )
                logger.info(f"Loading SentenceTransformer model {self.model_id}")
                self._model = SentenceTransformer(self.model_id, device=self.device)
        return self._model

    def _encode(self, texts: List[str]) -> np.ndarray:
        model = self._ensure_model()
        return model.encode(texts, normalize_embeddings=True, convert_to_numpy=True)

    async def close(self) -> None:
        self._model = None


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    Build the configured provider.

    Raises:
        UnsupportedProviderError: If config.provider is not a known name.
    """
    if config.provider == "hashing":
        return HashingEmbeddingProvider(config.dimension, config.timeout_seconds)
    if config.provider == "sentence-transformers":
        return SentenceTransformerProvider(
            config.model, config.dimension, config.timeout_seconds, config.device
        )
    raise UnsupportedProviderError(config.provider, SUPPORTED_PROVIDERS)


__all__ = [
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
    "SentenceTransformerProvider",
    "content_to_text",
    "create_provider",
    "SUPPORTED_PROVIDERS",
]

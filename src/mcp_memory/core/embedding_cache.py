"""
Embedding Cache
===============
Bounded LRU cache mapping a content fingerprint to its embedding vector.

The fingerprint is the SHA-256 of the provider model id plus the
canonical JSON of the normalized content (string leaves and keys with
whitespace collapsed, keys sorted). The text handed to the provider is
rendered from the same normalized content, so a cache hit always returns
the vector a miss would have computed.
"""

import hashlib
import json
import re
import threading
from collections import OrderedDict
from typing import Any, List, Optional

from loguru import logger

from mcp_memory.core.embeddings import EmbeddingProvider, content_to_text
from mcp_memory.core.metrics import EMBEDDING_CACHE_REQUESTS

_WS_RE = re.compile(r"\s+")


def normalize_content(content: Any) -> Any:
    """Collapse runs of whitespace and trim every string key and leaf."""
    if isinstance(content, str):
        return _WS_RE.sub(" ", content).strip()
    if isinstance(content, dict):
        return {
            _WS_RE.sub(" ", str(k)).strip(): normalize_content(v)
            for k, v in content.items()
        }
    if isinstance(content, (list, tuple)):
        return [normalize_content(v) for v in content]
    return content


def fingerprint(model_id: str, content: Any) -> str:
    canonical = json.dumps(
        normalize_content(content),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256()
    digest.update(model_id.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(canonical.encode("utf-8"))
    return digest.hexdigest()


class EmbeddingCache:
    """
    Thread-safe fixed-capacity LRU of fingerprint -> vector.

    Two concurrent misses on the same key may both compute; the second
    write simply refreshes the entry.
    """

    def __init__(self, max_size: int = 1000, enabled: bool = True):
        self.max_size = max_size
        self.enabled = enabled
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[List[float]]:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                EMBEDDING_CACHE_REQUESTS.labels(result="miss").inc()
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        EMBEDDING_CACHE_REQUESTS.labels(result="hit").inc()
        return value

    def put(self, key: str, value: List[float]) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = value
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    async def get_or_compute(self, provider: EmbeddingProvider, content: Any) -> List[float]:
        """Embedding of `content`, computed through `provider` on a miss."""
        normalized = normalize_content(content)
        text = content_to_text(normalized)
        if not self.enabled:
            return await provider.embed(text)

        key = fingerprint(provider.model_id, normalized)
        cached = self.get(key)
        if cached is not None:
            return cached

        vector = await provider.embed(text)
        self.put(key, vector)
        logger.debug(f"Embedding cache miss stored ({len(self)}/{self.max_size})")
        return vector

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "enabled": self.enabled,
            }

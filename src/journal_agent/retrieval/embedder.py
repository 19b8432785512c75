"""Embedding abstractions, a deterministic offline embedder and provider adapters."""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any


class Embedder(ABC):
    """Embedder interface used by retrieval."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""

    async def aembed_query(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed_query, text)


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and the offline API mode. Production deployments use
    `LangChainEmbedder` around a provider embedding model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapter over a `langchain_core.embeddings.Embeddings` implementation."""

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self._embeddings.embed_documents(texts)]

    def embed_query(self, text: str) -> list[float]:
        return list(self._embeddings.embed_query(text))

    async def aembed_query(self, text: str) -> list[float]:
        return list(await self._embeddings.aembed_query(text))


class MemoizingEmbedder(Embedder):
    """Process-scoped memo of query embeddings keyed by exact query text."""

    def __init__(self, inner: Embedder) -> None:
        self.inner = inner
        self._memo: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.inner.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        cached = self._lookup(text)
        if cached is not None:
            return cached
        return self._remember(text, self.inner.embed_query(text))

    async def aembed_query(self, text: str) -> list[float]:
        cached = self._lookup(text)
        if cached is not None:
            return cached
        return self._remember(text, await self.inner.aembed_query(text))

    def _lookup(self, text: str) -> list[float] | None:
        with self._lock:
            cached = self._memo.get(text)
        return list(cached) if cached is not None else None

    def _remember(self, text: str, vector: list[float]) -> list[float]:
        with self._lock:
            self._memo[text] = list(vector)
        return vector

    def __len__(self) -> int:
        with self._lock:
            return len(self._memo)

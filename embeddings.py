"""
Embedding providers for my-mem-mcp.

- Ollama (local model server, default bge-m3, 1024-dim)
- Google GenAI (gemini-embedding-001 with output_dimensionality)
- Deterministic hash embedding for offline runs (no semantic meaning)

Providers never retry and never fall back to one another: a failed call raises
EmbeddingUnavailableError and the caller decides what to do.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
import requests

from config import Config
from errors import DimensionMismatchError, EmbeddingUnavailableError

if TYPE_CHECKING:
    from google.genai import Client as GenAIClient


class EmbeddingProvider(Protocol):
    """What the memory store needs from an embedding backend."""

    model: str
    host: str

    async def embed(self, text: str) -> list[float]: ...

    async def health(self) -> bool: ...


def _check_dimension(embedding: list[float], expected: int | None) -> list[float]:
    if not embedding:
        raise EmbeddingUnavailableError("Embedding provider returned an empty vector")
    if expected is not None and len(embedding) != expected:
        raise DimensionMismatchError(expected, len(embedding))
    return embedding


# =============================================================================
# Ollama
# =============================================================================


class OllamaEmbedder:
    """Embeddings from an Ollama server over HTTP."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "bge-m3",
        dimension: int | None = None,
        timeout: float = 30,
    ) -> None:
        self.host = host.rstrip("/")
        self.model = model
        self.dimension = dimension
        self.timeout = timeout

    def _embed_sync(self, text: str) -> list[float]:
        try:
            response = requests.post(
                f"{self.host}/api/embeddings",
                json={"model": self.model, "prompt": text},
                timeout=self.timeout,
            )
            response.raise_for_status()
            embedding = response.json().get("embedding") or []
        except (requests.RequestException, ValueError) as e:
            raise EmbeddingUnavailableError(f"Ollama embedding failed: {e}") from e
        return _check_dimension([float(v) for v in embedding], self.dimension)

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)

    def _health_sync(self) -> bool:
        try:
            response = requests.get(f"{self.host}/api/tags", timeout=5)
            response.raise_for_status()
        except requests.RequestException:
            return False
        return True

    async def health(self) -> bool:
        return await asyncio.to_thread(self._health_sync)


# =============================================================================
# Google GenAI
# =============================================================================


def _get_api_key() -> str:
    """Get API key from environment or secrets file."""
    key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
    if key:
        return key
    secrets_path = Path.home() / ".secrets" / "GOOGLE_API_KEY"
    if secrets_path.exists():
        return secrets_path.read_text().strip()
    raise EmbeddingUnavailableError(
        "GOOGLE_API_KEY not found. Set environment variable or create ~/.secrets/GOOGLE_API_KEY"
    )


class GoogleEmbedder:
    """Embeddings from the Google GenAI API."""

    host = "generativelanguage.googleapis.com"

    def __init__(self, model: str = "gemini-embedding-001", dimension: int = 1024) -> None:
        self.model = model
        self.dimension = dimension
        self._client: GenAIClient | None = None

    def _get_client(self) -> GenAIClient:
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=_get_api_key())
        return self._client

    def _embed_sync(self, text: str) -> list[float]:
        from google.genai import types

        try:
            response = self._get_client().models.embed_content(
                model=self.model,
                contents=text,
                config=types.EmbedContentConfig(
                    task_type="SEMANTIC_SIMILARITY", output_dimensionality=self.dimension
                ),
            )
            embedding = list(response.embeddings[0].values)
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            raise EmbeddingUnavailableError(f"Google embedding failed: {e}") from e
        return _check_dimension(embedding, self.dimension)

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)

    async def health(self) -> bool:
        try:
            _get_api_key()
        except EmbeddingUnavailableError:
            return False
        return True


# =============================================================================
# Hash (offline)
# =============================================================================


class HashEmbedder:
    """
    Deterministic hash-based embedding.
    Not real semantic meaning: identical texts match, anything else is noise.
    """

    host = "local"

    def __init__(self, dimension: int = 1024) -> None:
        self.model = f"sha256-hash-{dimension}"
        self.dimension = dimension

    def embed_sync(self, text: str) -> list[float]:
        data = bytearray()
        counter = 0
        while len(data) < self.dimension:
            data.extend(hashlib.sha256(f"{counter}:{text}".encode()).digest())
            counter += 1
        values = (np.frombuffer(bytes(data[: self.dimension]), dtype=np.uint8) - 128.0) / 128.0
        norm = np.linalg.norm(values)
        return (values / norm).tolist() if norm > 0 else values.tolist()

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    async def health(self) -> bool:
        return True


def create_embedder(config: Config) -> EmbeddingProvider:
    """Build the embedding provider selected by EMBEDDING_PROVIDER."""
    provider = config.embedding_provider.lower()
    if provider == "ollama":
        return OllamaEmbedder(
            host=config.ollama_host,
            model=config.embedding_model,
            dimension=config.embedding_dim,
            timeout=config.embedding_timeout,
        )
    if provider == "google":
        model = config.embedding_model if config.embedding_model != "bge-m3" else "gemini-embedding-001"
        return GoogleEmbedder(model=model, dimension=config.embedding_dim)
    if provider == "hash":
        print("[my-mem-mcp] Using hash embedding (no semantic quality)", file=sys.stderr)
        return HashEmbedder(dimension=config.embedding_dim)
    raise ValueError(f"Unknown EMBEDDING_PROVIDER '{config.embedding_provider}'. Valid: ollama, google, hash")

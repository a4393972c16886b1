"""Shared fixtures: an in-process embedding provider and isolated stores."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from call_log import CallLogger
from errors import EmbeddingUnavailableError
from memory_store import MemoryStore, compose_text
from storage import CollectionStorage

DIM = 4
DEFAULT_VECTOR = [0.0, 0.0, 0.0, 1.0]


class FakeEmbedder:
    """Returns preset vectors per text and records every call."""

    model = "fake-embedding"
    host = "memory://fake"

    def __init__(self) -> None:
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[str] = []
        self.fail = False
        self.healthy = True

    def set(self, text: str, vector: list[float]) -> None:
        self.vectors[text] = vector

    def set_pair(self, question: str, answer: str, vector: list[float]) -> None:
        self.vectors[compose_text(question, answer)] = vector

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        await asyncio.sleep(0)  # Suspension point, like a real network call
        if self.fail:
            raise EmbeddingUnavailableError("fake provider is down")
        return list(self.vectors.get(text, DEFAULT_VECTOR))

    async def health(self) -> bool:
        return self.healthy


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def store(data_dir: Path, embedder: FakeEmbedder) -> MemoryStore:
    return MemoryStore(CollectionStorage(data_dir), embedder)


@pytest.fixture
def call_logger(tmp_path: Path) -> CallLogger:
    return CallLogger(tmp_path / "logs" / "calls.log")


def write_legacy_file(data_dir: Path, stem: str, memory_user_id: str) -> None:
    """A collection file as written before the envelope recorded its userId."""
    data_dir.mkdir(parents=True, exist_ok=True)
    legacy = {
        "memories": [
            {
                "id": "legacy-1",
                "userId": memory_user_id,
                "question": "old q",
                "answer": "old a",
                "embedding": [1.0, 0.0, 0.0, 0.0],
                "createdAt": "2025-01-01T00:00:00.000Z",
                "updatedAt": "2025-01-01T00:00:00.000Z",
            }
        ],
        "version": 1,
        "lastUpdated": "2025-01-01T00:00:00.000Z",
    }
    (data_dir / f"{stem}.json").write_text(json.dumps(legacy), encoding="utf-8")

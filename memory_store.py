"""
Per-user semantic memory store.

The in-process cache (user id -> list of memories) is the source of truth while
the server runs; collection files are a write-through mirror.

Writes for one user are serialized with a per-user asyncio.Lock (FIFO waiters),
writes for different users run concurrently, and reads never wait. Writes are
copy-on-write: the new collection is persisted first and only then swapped into
the cache, so a failed save leaves the cache exactly as it was and readers never
see a record that is not on disk.
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from pathlib import Path

from config import Config
from embeddings import EmbeddingProvider
from models import Memory, MemoryView, SearchResult
from storage import CollectionStorage
from utils import now_iso, sanitize_user_id
from vector_search import DEFAULT_MIN_SCORE, filter_by_threshold, rank


def compose_text(question: str, answer: str) -> str:
    """Text embedded for a question/answer pair."""
    return f"question: {question}\nanswer: {answer}"


class MemoryStore:
    """Sole reader and writer of user memory collections."""

    def __init__(
        self,
        storage: CollectionStorage,
        embedder: EmbeddingProvider,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.min_score = min_score
        self._cache: dict[str, list[Memory]] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._unowned: dict[str, str] = {}  # file stem -> cache key, for files without a recorded userId
        self._load_all_users()

    @classmethod
    def from_config(cls, config: Config, embedder: EmbeddingProvider) -> MemoryStore:
        return cls(CollectionStorage(Path(config.data_dir)), embedder, min_score=config.min_score)

    # ── Cache ───────────────────────────────────────────────

    def _load_all_users(self) -> None:
        total = 0
        for user_id, memories, recorded in self.storage.discover():
            self._cache[user_id] = memories
            if not recorded:
                self._unowned[sanitize_user_id(user_id)] = user_id
            total += len(memories)
        print(
            f"[my-mem-mcp] Loaded {len(self._cache)} users, {total} memories "
            f"from {self.storage.data_dir}",
            file=sys.stderr,
        )

    def _memories_for(self, user_id: str) -> list[Memory]:
        """Cached memories for a user, loading them from storage on first access."""
        stem = sanitize_user_id(user_id)
        key = self._unowned.get(stem)
        if key is not None and key != user_id:
            # A file without a recorded owner is cached under a guessed id
            self._cache[user_id] = self._cache.pop(key)
            self._unowned[stem] = user_id

        memories = self._cache.get(user_id)
        if memories is None:
            loaded = self.storage.load_collection(user_id)
            if loaded is None:
                return []
            memories = self._cache.setdefault(user_id, loaded)
        return memories

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        # Never reclaimed; grows with the number of distinct users written to
        return self._write_locks.setdefault(user_id, asyncio.Lock())

    async def _commit(self, user_id: str, memories: list[Memory]) -> None:
        await asyncio.to_thread(self.storage.save_collection, user_id, memories)
        # The saved file now records its owner
        key = self._unowned.pop(sanitize_user_id(user_id), None)
        if key is not None and key != user_id:
            self._cache.pop(key, None)
        self._cache[user_id] = memories

    # ── Writes ──────────────────────────────────────────────

    async def add(self, user_id: str, question: str, answer: str) -> Memory:
        """Embed and store a question/answer pair for a user."""
        # Embedding runs outside the per-user lock
        embedding = await self.embedder.embed(compose_text(question, answer))

        timestamp = now_iso()
        memory = Memory(
            id=uuid.uuid4().hex,
            user_id=user_id,
            question=question,
            answer=answer,
            embedding=embedding,
            created_at=timestamp,
            updated_at=timestamp,
        )

        async with self._lock_for(user_id):
            await self._commit(user_id, [*self._memories_for(user_id), memory])

        print(f"[my-mem-mcp] Added memory {memory.id} (user: {user_id})", file=sys.stderr)
        return memory

    async def delete(self, user_id: str, memory_id: str) -> bool:
        """Remove one of a user's memories. False if the user has no such memory."""
        async with self._lock_for(user_id):
            memories = self._memories_for(user_id)
            remaining = [m for m in memories if m.id != memory_id]
            if len(remaining) == len(memories):
                print(f"[my-mem-mcp] Memory {memory_id} not found (user: {user_id})", file=sys.stderr)
                return False
            await self._commit(user_id, remaining)

        print(f"[my-mem-mcp] Deleted memory {memory_id} (user: {user_id})", file=sys.stderr)
        return True

    # ── Reads ───────────────────────────────────────────────

    async def search(self, user_id: str, query: str, limit: int = 5) -> list[SearchResult]:
        """Memories most similar to `query`, best first, scoring at least min_score."""
        memories = self._memories_for(user_id)
        if not memories:
            return []

        embedding = await self.embedder.embed(query)
        # Re-read after the await so records committed meanwhile are included
        candidates = rank(embedding, self._memories_for(user_id), limit * 2)
        results = filter_by_threshold(candidates, self.min_score)[:limit]

        print(
            f"[my-mem-mcp] Search '{query[:50]}' (user: {user_id}) found {len(results)} memories",
            file=sys.stderr,
        )
        return results

    def get(self, user_id: str, memory_id: str) -> Memory | None:
        return next((m for m in self._memories_for(user_id) if m.id == memory_id), None)

    def list(self, user_id: str) -> list[MemoryView]:
        """A user's memories in insertion order, without embeddings."""
        return [m.view() for m in self._memories_for(user_id)]

    def count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._memories_for(user_id))
        return sum(len(memories) for memories in self._cache.values())

    def list_users(self) -> list[str]:
        return list(self._cache)

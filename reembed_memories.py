#!/usr/bin/env python3
"""
Re-embed stored memories with the currently configured embedding provider.

Run this after changing EMBEDDING_MODEL or EMBEDDING_DIM: vectors from the old
model cannot be compared with new ones, and searches over a mixed collection
fail with a dimension mismatch.

Stop the MCP server first - this script writes collection files directly.

Usage:
    python reembed_memories.py --dry-run          # Preview changes
    python reembed_memories.py                    # Re-embed every user
    python reembed_memories.py --user-id alice    # Re-embed one user
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections import Counter
from pathlib import Path

from config import CONFIG
from embeddings import EmbeddingProvider, create_embedder
from errors import MemoryStoreError
from memory_store import compose_text
from storage import CollectionStorage
from utils import now_iso


async def reembed_memories(
    storage: CollectionStorage,
    embedder: EmbeddingProvider,
    dry_run: bool = True,
    user_id: str | None = None,
) -> int:
    """Re-embed every stored memory (optionally for one user). Returns memories updated."""
    collections = [c for c in storage.discover() if user_id in (None, c.user_id)]
    if not collections:
        print("No collections found")
        return 0

    print("=" * 70)
    print("RE-EMBEDDING PLAN")
    print("=" * 70)
    print(f"Provider: {embedder.model} @ {embedder.host}\n")
    for uid, memories, _ in collections:
        dims = Counter(len(m.embedding) for m in memories)
        dims_text = ", ".join(f"{dim}d x{count}" for dim, count in sorted(dims.items())) or "empty"
        print(f"  {len(memories):4d} memories: {uid} ({dims_text})")
    print("\n" + "=" * 70)

    if dry_run:
        print("\n⚠ DRY RUN MODE - No changes applied")
        print("Run without --dry-run to apply")
        return 0

    updated = 0
    for uid, memories, recorded in collections:
        timestamp = now_iso()
        refreshed = []
        for memory in memories:
            embedding = await embedder.embed(compose_text(memory.question, memory.answer))
            refreshed.append(memory.model_copy(update={"embedding": embedding, "updated_at": timestamp}))
        storage.save_collection(uid, refreshed, record_owner=recorded)
        updated += len(refreshed)
        print(f"✓ {uid}: {len(refreshed)} memories re-embedded")

    print(f"\n✓ Re-embedding complete! Updated {updated} memories")
    return updated


def main():
    parser = argparse.ArgumentParser(
        description="Re-embed stored memories with the configured embedding provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python reembed_memories.py --dry-run  # Preview changes
  python reembed_memories.py            # Apply
        """,
    )
    parser.add_argument("--dry-run", action="store_true", help="Preview without writing")
    parser.add_argument("--user-id", help="Only re-embed this user's memories")
    parser.add_argument("--data-dir", type=Path, default=CONFIG.data_dir, help="Collections directory")
    args = parser.parse_args()

    storage = CollectionStorage(args.data_dir)
    try:
        asyncio.run(reembed_memories(storage, create_embedder(CONFIG), args.dry_run, args.user_id))
    except MemoryStoreError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nRe-embedding cancelled")
        sys.exit(1)


if __name__ == "__main__":
    main()

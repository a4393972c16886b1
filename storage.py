"""Per-user JSON collection files.

Each user's memories live in `<data_dir>/<sanitized user id>.json` as one
MemoryData envelope. Every save rewrites the whole file atomically.

Files written before the envelope carried a `userId` have no recorded owner.
They belong to whichever user id sanitizes to their file name.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import NamedTuple

from pydantic import ValidationError

from errors import PersistenceError
from models import SCHEMA_VERSION, Memory, MemoryData
from utils import now_iso, sanitize_user_id

COLLECTION_SUFFIX = ".json"


class StoredCollection(NamedTuple):
    user_id: str
    memories: list[Memory]
    recorded: bool  # False: user_id is inferred, the file has no userId


def _infer_owner(stem: str, memories: list[Memory]) -> str:
    """Best guess at the owner of a file without a recorded userId."""
    owners = {m.user_id for m in memories}
    if len(owners) == 1:
        (owner,) = owners
        if sanitize_user_id(owner) == stem:
            return owner
    return stem


class CollectionStorage:
    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, user_id: str) -> Path:
        return self.data_dir / f"{sanitize_user_id(user_id)}{COLLECTION_SUFFIX}"

    def _read(self, path: Path) -> MemoryData:
        try:
            return MemoryData.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"Cannot read {path.name}: {e}") from e

    def discover(self) -> Iterator[StoredCollection]:
        """Yield every readable collection file."""
        for path in sorted(self.data_dir.glob(f"*{COLLECTION_SUFFIX}")):
            try:
                data = self._read(path)
            except PersistenceError as e:
                print(f"[my-mem-mcp] Skipping unreadable collection: {e}", file=sys.stderr)
                continue
            if data.user_id is None:
                yield StoredCollection(_infer_owner(path.stem, data.memories), data.memories, False)
            else:
                yield StoredCollection(data.user_id, data.memories, True)

    def load_collection(self, user_id: str) -> list[Memory] | None:
        """Load one user's memories, or None if the user has never been written."""
        path = self.path_for(user_id)
        if not path.exists():
            return None
        data = self._read(path)
        if data.user_id is not None and data.user_id != user_id:
            raise PersistenceError(
                f"Storage file {path.name} belongs to user '{data.user_id}', not '{user_id}'"
            )
        return data.memories

    def save_collection(self, user_id: str, memories: list[Memory], record_owner: bool = True) -> None:
        """Overwrite one user's collection file."""
        path = self.path_for(user_id)
        data = MemoryData(
            memories=memories,
            version=SCHEMA_VERSION,
            last_updated=now_iso(),
            user_id=user_id if record_owner else None,
        )
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            tmp_path.write_text(
                data.model_dump_json(by_alias=True, exclude_none=True, indent=2), encoding="utf-8"
            )
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write {path.name}: {e}") from e

"""Shared data models for my-mem-mcp."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

SCHEMA_VERSION = 1


class MemoryView(BaseModel):
    """A stored question/answer pair without its embedding (safe to display)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str  # uuid4 hex, assigned at creation and never changed
    user_id: str = Field(alias="userId")
    question: str
    answer: str
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")


class Memory(MemoryView):
    """A stored question/answer pair with its embedding vector.

    IMPORTANT: On disk the field names are camelCase (userId, createdAt, ...).
    Always serialize with by_alias=True when writing collection files.
    """

    embedding: list[float]

    def view(self) -> MemoryView:
        return MemoryView.model_validate(self.model_dump(exclude={"embedding"}))


class MemoryData(BaseModel):
    """Envelope persisted as one JSON file per user."""

    model_config = ConfigDict(populate_by_name=True)

    memories: list[Memory] = Field(default_factory=list)
    version: int = SCHEMA_VERSION
    last_updated: str = Field(alias="lastUpdated")
    user_id: str | None = Field(default=None, alias="userId")


@dataclass(frozen=True, slots=True)
class SearchResult:
    memory: Memory
    score: float


# =============================================================================
# Tool requests
# =============================================================================


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _Request(BaseModel):
    user_id: NonEmptyStr


class AddMessageRequest(_Request):
    question: NonEmptyStr
    answer: NonEmptyStr


class SearchMessageRequest(_Request):
    query: NonEmptyStr
    limit: int = Field(default=5, gt=0)


class DeleteMessageRequest(_Request):
    id: NonEmptyStr


class CallRecord(BaseModel):
    """One tool or admin API call, as written to the call log."""

    timestamp: str
    method: str
    request: Any = None
    response: Any = None
    duration_ms: float
    success: bool
    error: str | None = None

"""Server configuration for my-mem-mcp."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class Config:
    """Server configuration with sensible defaults."""

    data_dir: Path = Path(os.environ.get("DATA_DIR", "./data"))
    embedding_provider: str = os.environ.get("EMBEDDING_PROVIDER", "ollama")  # ollama | google | hash
    ollama_host: str = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
    embedding_model: str = os.environ.get("EMBEDDING_MODEL", "bge-m3")
    embedding_dim: int = int(os.environ.get("EMBEDDING_DIM", "1024"))
    embedding_timeout: float = float(os.environ.get("EMBEDDING_TIMEOUT", "30"))
    min_score: float = float(os.environ.get("SIMILARITY_THRESHOLD", "0.5"))
    default_limit: int = 5
    max_limit: int = 50
    transport_mode: str = os.environ.get("TRANSPORT_MODE", "stdio")  # stdio | sse
    sse_port: int = int(os.environ.get("SSE_PORT", "3000"))
    admin_enabled: bool = _env_flag("ADMIN_ENABLED", True)
    admin_port: int = int(os.environ.get("ADMIN_PORT", "9502"))
    log_path: Path = Path(os.environ.get("LOG_PATH", "./data/calls.log"))
    log_enabled: bool = _env_flag("LOG_ENABLED", True)
    default_user_id: str = os.environ.get("DEFAULT_USER_ID", "")


CONFIG = Config()

"""Call records for every tool and admin API call.

Each record is printed to stderr (visible in container logs) and appended as
one JSON line to the call log file, which the admin console reads back.
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from models import CallRecord
from utils import now_iso


class Timer:
    """Milliseconds elapsed since construction."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self._start) * 1000, 1)


def format_record(record: CallRecord) -> str:
    status = "✓" if record.success else "✗"
    error = f" | Error: {record.error}" if record.error else ""
    return (
        f"[{record.timestamp}] {status} {record.method} ({record.duration_ms}ms){error}\n"
        f"  Request: {json.dumps(record.request, ensure_ascii=False, default=str)}\n"
        f"  Response: {json.dumps(record.response, ensure_ascii=False, default=str)}\n"
        f"{'─' * 80}"
    )


class CallLogger:
    def __init__(self, log_path: Path, enabled: bool = True) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled

    def record(
        self,
        method: str,
        request: Any,
        response: Any,
        duration_ms: float,
        success: bool,
        error: str | None = None,
    ) -> CallRecord | None:
        if not self.enabled:
            return None

        record = CallRecord(
            timestamp=now_iso(),
            method=method,
            request=request,
            response=response,
            duration_ms=duration_ms,
            success=success,
            error=error,
        )
        print(format_record(record), file=sys.stderr)

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open("a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
        except OSError as e:
            print(f"[my-mem-mcp] Failed to write call log: {e}", file=sys.stderr)
        return record

    def read_entries(self, limit: int | None = None) -> list[CallRecord]:
        """Logged calls, newest first. Malformed lines are skipped."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(CallRecord.model_validate_json(line))
                except ValidationError:
                    continue
        entries.reverse()
        return entries[:limit] if limit is not None else entries

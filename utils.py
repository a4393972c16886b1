"""Shared utility functions for my-mem-mcp."""

import re
from datetime import datetime, timezone

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_user_id(user_id: str) -> str:
    """Map a user id to a safe storage file stem.

    Every character outside [A-Za-z0-9_-] becomes "_", so a hostile id cannot
    escape the data directory.

    Examples:
        alice -> alice
        ../etc/passwd -> ___etc_passwd
        bob@example.com -> bob_example_com
    """
    return _UNSAFE_CHARS.sub("_", user_id)


def now_iso() -> str:
    """Get current UTC timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()

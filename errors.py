"""Error taxonomy for my-mem-mcp."""


class MemoryStoreError(Exception):
    """Base class for every error raised by the memory store and its collaborators."""


class DimensionMismatchError(MemoryStoreError, ValueError):
    """Two vectors compared (or an embedding and the configured size) differ in length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension mismatch: {expected} vs {actual}")
        self.expected = expected
        self.actual = actual


class EmbeddingUnavailableError(MemoryStoreError):
    """The embedding provider could not be reached or returned an error."""


class PersistenceError(MemoryStoreError):
    """A user's collection could not be read from or written to storage."""


class RequestValidationError(MemoryStoreError, ValueError):
    """A tool or API request failed validation before any I/O was attempted."""


class MissingUserIdError(RequestValidationError):
    def __init__(self) -> None:
        super().__init__(
            "userId is required (it can also be bound by the SSE session URL, "
            "--user-id or DEFAULT_USER_ID)"
        )


class MissingRequiredFieldError(RequestValidationError):
    def __init__(self, *fields: str) -> None:
        super().__init__(f"{', '.join(fields)} {'is' if len(fields) == 1 else 'are'} required")
        self.fields = fields

"""Custom exceptions for embedding generation."""

from __future__ import annotations

_CONTENT_PREVIEW_LIMIT = 100


class EmbeddingError(Exception):
    """Base exception for every embedding failure.

    Batch runners catch this type to record failures against queue items.
    """


class EmbedderAPIError(EmbeddingError):
    """Raised when an embedding endpoint returns an error or is unreachable.

    Attributes
    ----------
    status_code
        HTTP status code from the response, if one was received.

    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise the error with message and optional status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> EmbedderAPIError:
        """Create error for HTTP error responses."""
        return cls(f"Embedding API HTTP error {status_code}", status_code=status_code)

    @classmethod
    def timeout(cls) -> EmbedderAPIError:
        """Create error for request timeouts."""
        return cls("Embedding API request timed out")

    @classmethod
    def network_error(cls, details: str) -> EmbedderAPIError:
        """Create error for transport failures."""
        return cls(f"Embedding API network error: {details}")


class EmbedderResponseShapeError(EmbeddingError):
    """Raised when an embedding response does not have the expected shape."""

    @classmethod
    def missing(cls, field: str) -> EmbedderResponseShapeError:
        """Create error for a missing response field."""
        return cls(f"Embedding response missing field: {field}")

    @classmethod
    def invalid_json(cls, content: str) -> EmbedderResponseShapeError:
        """Create error for a response body that is not valid JSON."""
        preview = content[:_CONTENT_PREVIEW_LIMIT]
        return cls(f"Embedding response is not valid JSON: {preview!r}")

    @classmethod
    def count_mismatch(cls, expected: int, received: int) -> EmbedderResponseShapeError:
        """Create error for a response with the wrong number of vectors."""
        return cls(f"Expected {expected} embeddings, received {received}")


class EmbedderConfigError(EmbeddingError):
    """Raised when embedder configuration is missing or invalid."""

    @classmethod
    def missing_api_key(cls) -> EmbedderConfigError:
        """Create error for a missing API key."""
        return cls("WEIR_OPENAI_API_KEY must be set when WEIR_EMBEDDER=openai")

    @classmethod
    def empty_api_key(cls) -> EmbedderConfigError:
        """Create error for a blank API key."""
        return cls("WEIR_OPENAI_API_KEY must not be empty")

    @classmethod
    def invalid_backend(cls, backend: str) -> EmbedderConfigError:
        """Create error for an unsupported embedder backend."""
        return cls(f"Invalid WEIR_EMBEDDER value {backend!r}; expected 'mock' or 'openai'")

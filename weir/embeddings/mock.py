"""Deterministic embedder for tests and local development."""

from __future__ import annotations

import hashlib

_DEFAULT_DIMENSIONS = 8


class MockEmbedder:
    """Derive a fixed-size vector from the SHA-256 digest of each text.

    Identical text always yields the identical vector, and no network call
    is made.

    Examples
    --------
    >>> import asyncio
    >>> vectors = asyncio.run(MockEmbedder(dimensions=4).embed(["hello"]))
    >>> len(vectors[0])
    4

    """

    def __init__(self, *, dimensions: int = _DEFAULT_DIMENSIONS) -> None:
        """Create an embedder producing ``dimensions``-length vectors."""
        if not 1 <= dimensions <= hashlib.sha256().digest_size:
            msg = f"dimensions must be between 1 and 32, got {dimensions}"
            raise ValueError(msg)
        self._dimensions = dimensions
        self.calls: list[list[str]] = []

    @property
    def model(self) -> str:
        """Return the pseudo model identifier."""
        return f"mock-{self._dimensions}"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one deterministic vector per text."""
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255 for byte in digest[: self._dimensions]]

"""Embedder protocol for vectorising canonical fact text."""

from __future__ import annotations

import typing as typ


@typ.runtime_checkable
class Embedder(typ.Protocol):
    """Turn canonical text into vectors.

    Examples
    --------
    >>> from weir.embeddings import Embedder, MockEmbedder
    >>> isinstance(MockEmbedder(), Embedder)
    True

    """

    @property
    def model(self) -> str:
        """Identifier stored alongside every vector."""
        ...

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order.

        Raises
        ------
        EmbeddingError
            When the provider call fails or returns an unexpected shape.

        """
        ...

"""Factory for creating Embedder implementations from environment configuration."""

from __future__ import annotations

import typing as typ

from weir.embeddings.config import embedder_backend_from_env
from weir.embeddings.errors import EmbedderConfigError
from weir.embeddings.mock import MockEmbedder

if typ.TYPE_CHECKING:
    from weir.embeddings.protocol import Embedder

_VALID_BACKENDS = frozenset({"mock", "openai"})


def create_embedder() -> Embedder:
    """Create the embedder selected by ``WEIR_EMBEDDER``.

    ``mock`` (the default) needs no further configuration. ``openai`` reads
    ``WEIR_OPENAI_API_KEY`` and optionally ``WEIR_OPENAI_ENDPOINT``,
    ``WEIR_OPENAI_EMBEDDING_MODEL`` and ``WEIR_OPENAI_TIMEOUT_S``.

    Raises
    ------
    EmbedderConfigError
        If the backend is unknown or the OpenAI key is missing.

    Examples
    --------
    >>> import os
    >>> os.environ["WEIR_EMBEDDER"] = "mock"
    >>> isinstance(create_embedder(), MockEmbedder)
    True

    """
    backend = embedder_backend_from_env()
    if backend not in _VALID_BACKENDS:
        raise EmbedderConfigError.invalid_backend(backend)

    if backend == "mock":
        return MockEmbedder()

    from weir.embeddings.config import OpenAIEmbedderConfig
    from weir.embeddings.openai_client import OpenAIEmbedder

    return OpenAIEmbedder(OpenAIEmbedderConfig.from_env())

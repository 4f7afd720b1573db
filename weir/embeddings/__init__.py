"""Embedding queue, embedders and the batch runner that drains the queue.

Public API
----------
EmbeddingQueue
    Table-backed queue with one live item per content hash.
EmbeddingBatchRunner
    Claims, embeds and completes queued items in bounded batches.
Embedder
    Protocol for text-to-vector providers.
MockEmbedder
    Deterministic offline embedder.
OpenAIEmbedder
    OpenAI-compatible HTTP embedder.
create_embedder
    Factory selecting an embedder from ``WEIR_EMBEDDER``.

"""

from __future__ import annotations

from weir.embeddings.config import OpenAIEmbedderConfig
from weir.embeddings.errors import (
    EmbedderAPIError,
    EmbedderConfigError,
    EmbedderResponseShapeError,
    EmbeddingError,
)
from weir.embeddings.factory import create_embedder
from weir.embeddings.mock import MockEmbedder
from weir.embeddings.openai_client import OpenAIEmbedder
from weir.embeddings.protocol import Embedder
from weir.embeddings.queue import EmbeddingQueue, EnqueueResult, EnqueueStatus
from weir.embeddings.storage import (
    MAX_ATTEMPTS,
    Embedding,
    EmbeddingQueueItem,
    QueueStatus,
)
from weir.embeddings.worker import (
    DEFAULT_BATCH_SIZE,
    MAX_BATCH_SIZE,
    BatchResult,
    EmbeddingBatchRunner,
    clamp_batch_size,
)

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "MAX_ATTEMPTS",
    "MAX_BATCH_SIZE",
    "BatchResult",
    "Embedder",
    "EmbedderAPIError",
    "EmbedderConfigError",
    "EmbedderResponseShapeError",
    "Embedding",
    "EmbeddingBatchRunner",
    "EmbeddingError",
    "EmbeddingQueue",
    "EmbeddingQueueItem",
    "EnqueueResult",
    "EnqueueStatus",
    "MockEmbedder",
    "OpenAIEmbedder",
    "OpenAIEmbedderConfig",
    "QueueStatus",
    "clamp_batch_size",
    "create_embedder",
]

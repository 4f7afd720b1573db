"""OpenAI-compatible implementation of the Embedder protocol."""

from __future__ import annotations

import typing as typ

import httpx
import msgspec

from weir.embeddings.errors import (
    EmbedderAPIError,
    EmbedderConfigError,
    EmbedderResponseShapeError,
)
from weir.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from weir.embeddings.config import OpenAIEmbedderConfig

logger = get_logger(__name__)

_HTTP_ERROR_STATUS_THRESHOLD = 400


class _EmbeddingDatum(msgspec.Struct, kw_only=True):
    embedding: list[float]
    index: int = 0


class _EmbeddingResponse(msgspec.Struct, kw_only=True):
    data: list[_EmbeddingDatum]
    model: str | None = None


class OpenAIEmbedder:
    """Embed text through an OpenAI-compatible ``/embeddings`` endpoint.

    Parameters
    ----------
    config
        Endpoint, key, model and timeout.
    http_client
        Optional ``httpx.AsyncClient`` for testing. If not provided, the
        instance creates and owns its own client.

    """

    def __init__(
        self,
        config: OpenAIEmbedderConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with configuration."""
        if not config.api_key.strip():
            raise EmbedderConfigError.empty_api_key()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
        )

    @property
    def model(self) -> str:
        """Return the configured model identifier."""
        return self._config.model

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order.

        Raises
        ------
        EmbedderAPIError
            If the request times out, fails in transport, or returns an
            error status.
        EmbedderResponseShapeError
            If the body is not valid JSON or holds the wrong number of
            vectors.

        """
        if not texts:
            return []

        try:
            response = await self._client.post(
                self._config.endpoint,
                json={"model": self._config.model, "input": texts},
            )
        except httpx.TimeoutException as exc:
            raise EmbedderAPIError.timeout() from exc
        except httpx.RequestError as exc:
            raise EmbedderAPIError.network_error(str(exc)) from exc

        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise EmbedderAPIError.http_error(response.status_code)

        try:
            parsed = msgspec.json.decode(response.content, type=_EmbeddingResponse)
        except msgspec.ValidationError as exc:
            raise EmbedderResponseShapeError.missing("data[].embedding") from exc
        except msgspec.DecodeError as exc:
            raise EmbedderResponseShapeError.invalid_json(response.text) from exc

        if len(parsed.data) != len(texts):
            raise EmbedderResponseShapeError.count_mismatch(len(texts), len(parsed.data))

        log_debug(logger, "Embedded %d texts with %s", len(texts), self._config.model)
        ordered = sorted(parsed.data, key=lambda datum: datum.index)
        return [datum.embedding for datum in ordered]

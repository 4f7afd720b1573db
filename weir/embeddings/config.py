"""Configuration for embedder selection and the OpenAI embeddings client."""

from __future__ import annotations

import dataclasses

from weir.common.env import parse_positive_float, read_str
from weir.embeddings.errors import EmbedderConfigError

_DEFAULT_BACKEND = "mock"
_DEFAULT_ENDPOINT = "https://api.openai.com/v1/embeddings"
_DEFAULT_MODEL = "text-embedding-3-small"
_DEFAULT_TIMEOUT_S = 30.0


@dataclasses.dataclass(frozen=True, slots=True)
class OpenAIEmbedderConfig:
    """Configuration for an OpenAI-compatible embeddings endpoint.

    Attributes
    ----------
    api_key
        Bearer token for the endpoint.
    endpoint
        Full embeddings URL.
    model
        Model identifier sent with every request and stored with each vector.
    timeout_s
        Request timeout in seconds.

    """

    api_key: str
    endpoint: str = _DEFAULT_ENDPOINT
    model: str = _DEFAULT_MODEL
    timeout_s: float = _DEFAULT_TIMEOUT_S

    @classmethod
    def from_env(cls) -> OpenAIEmbedderConfig:
        """Build configuration from ``WEIR_OPENAI_*`` variables.

        Raises
        ------
        EmbedderConfigError
            If the API key is unset or blank.

        """
        api_key = read_str("WEIR_OPENAI_API_KEY")
        if api_key is None:
            raise EmbedderConfigError.missing_api_key()

        return cls(
            api_key=api_key,
            endpoint=read_str("WEIR_OPENAI_ENDPOINT") or _DEFAULT_ENDPOINT,
            model=read_str("WEIR_OPENAI_EMBEDDING_MODEL") or _DEFAULT_MODEL,
            timeout_s=parse_positive_float(
                "WEIR_OPENAI_TIMEOUT_S", _DEFAULT_TIMEOUT_S
            ),
        )


def embedder_backend_from_env() -> str:
    """Return the normalised ``WEIR_EMBEDDER`` value, defaulting to ``mock``."""
    return (read_str("WEIR_EMBEDDER") or _DEFAULT_BACKEND).strip().lower()

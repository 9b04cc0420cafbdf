"""Embedding providers: turn email text into fixed-length vectors."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from mailvec.config import Settings
from mailvec.services.errors import ProviderError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Converts text into an embedding vector.

    Implementations raise ProviderError on any transport or quota failure.
    There is no retry here; callers layer their own policy on top.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...

    async def close(self):
        pass


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI REST API (text-embedding-3-small by default)."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=60.0)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": text},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"OpenAI embedding request failed: {e}")
            raise ProviderError(f"Failed to generate embedding: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"OpenAI embedding error {response.status_code}: {message}")
            raise ProviderError(
                f"Failed to generate embedding: {message}",
                status_code=response.status_code,
            )

        try:
            embedding = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Malformed embedding response: {e}") from e
        return _as_vector(embedding)

    async def close(self):
        await self._client.aclose()


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from a local Ollama server."""

    def __init__(
        self,
        url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url.rstrip("/")
        self._model = model
        self._client = client or httpx.AsyncClient(timeout=120.0)

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.post(
                f"{self._url}/api/embeddings",
                json={"model": self._model, "prompt": text},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error("Ollama embedding request timed out")
            raise ProviderError("Ollama embedding request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise ProviderError(
                f"Failed to generate embedding: {_error_message(e.response)}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Ollama embedding call failed: {e}")
            raise ProviderError(f"Failed to generate embedding: {e}") from e

        if not isinstance(data, dict):
            raise ProviderError("Malformed embedding response: expected a JSON object")
        return _as_vector(data.get("embedding"))

    async def close(self):
        await self._client.aclose()


def _as_vector(value) -> list[float]:
    if not isinstance(value, list) or not value:
        raise ProviderError("Embedding response contained no vector")
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError) as e:
        raise ProviderError(f"Embedding response contained non-numeric values: {e}") from e


def _error_message(response: httpx.Response) -> str:
    """Pull the upstream error message out of a JSON error body if there is one."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", response.text))
    if error:
        return str(error)
    return response.text


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Build the provider selected by configuration."""
    if settings.embedding_provider == "ollama":
        return OllamaEmbeddingProvider(
            url=settings.ollama_url,
            model=settings.ollama_embedding_model,
        )
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.openai_base_url,
        )
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")

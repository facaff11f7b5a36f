"""Embedding generation with a remote service and a deterministic local fallback."""
import asyncio
import math
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx
import numpy as np
from loguru import logger

from ..errors import EmbeddingError

DEFAULT_EMBEDDING_DIM = 512


def hash_string(text: str) -> int:
    """32-bit rolling string hash (``h = h * 31 + code_unit``).

    Characters are consumed as UTF-16 code units and the running value is
    wrapped to a signed 32-bit integer after every step.
    """
    data = text.encode("utf-16-le")
    h = 0
    for (unit,) in struct.iter_unpack("<H", data):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return h


def fallback_embedding(text: str, dim: int = DEFAULT_EMBEDDING_DIM) -> np.ndarray:
    """Compute a deterministic bag-of-words embedding for ``text``.

    Each whitespace separated token is hashed into one of ``dim`` buckets and
    contributes ``1 / sqrt(position + 1)`` to it, so earlier tokens weigh more.
    The result is L2-normalized; text without tokens yields the zero vector.

    Args:
        text: Input text
        dim: Output dimension

    Returns:
        float32 vector of length ``dim``
    """
    if not isinstance(text, str):
        raise EmbeddingError(f"Cannot embed non-text value of type {type(text).__name__}")

    vector = np.zeros(dim, dtype=np.float64)
    for i, token in enumerate(text.lower().split()):
        index = abs(hash_string(token)) % dim
        vector[index] += 1.0 / math.sqrt(i + 1)

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector.astype(np.float32)


class GeminiEmbeddingService:
    """Remote embedding service backed by the Generative Language API."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-004",
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        output_dim: Optional[int] = DEFAULT_EMBEDDING_DIM,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the service.

        Args:
            api_key: API key sent with every request
            model: Embedding model name
            endpoint: Base URL of the API
            output_dim: Requested output dimensionality (None for the model default)
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.output_dim = output_dim
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.endpoint}/models/{self.model}:embedContent"

    async def embed_query(self, text: str) -> List[float]:
        """Request an embedding for ``text``.

        Raises:
            httpx.HTTPError: On transport failures or error status codes
            ValueError: If the response does not contain an embedding
        """
        payload = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": "RETRIEVAL_QUERY",
        }
        if self.output_dim:
            payload["outputDimensionality"] = self.output_dim

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        ) as client:
            response = await client.post(
                self.url,
                params={"key": self.api_key},
                json=payload,
            )
            response.raise_for_status()
            data = response.json()

        try:
            values = data["embedding"]["values"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid embedding response from API: missing {e}") from e
        return values


@dataclass(frozen=True)
class EmbeddingResult:
    """An embedding vector and the path that produced it ('remote' or 'fallback')."""
    vector: np.ndarray
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


class EmbeddingGenerator:
    """Turns text into fixed-length vectors.

    The remote service is tried first; any failure there (network, status,
    timeout, malformed or wrongly sized vector) falls back to
    :func:`fallback_embedding`, so embedding never blocks on the remote side.
    """

    def __init__(
        self,
        remote=None,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        timeout: Optional[float] = 10.0,
    ):
        """Initialize the generator.

        Args:
            remote: Object with an async ``embed_query(text)`` method, or None
                to always use the local fallback
            embedding_dim: Dimension of every produced vector
            timeout: Seconds to wait for the remote service (None waits forever)
        """
        if embedding_dim <= 0:
            raise ValueError("Embedding dimension must be positive")
        self.remote = remote
        self._embedding_dim = embedding_dim
        self.timeout = timeout

    @property
    def embedding_dim(self) -> int:
        """Get the dimension of the embeddings."""
        return self._embedding_dim

    async def embed(self, text: str) -> np.ndarray:
        """Embed ``text`` and return the vector."""
        result = await self.embed_with_source(text)
        return result.vector

    async def embed_with_source(self, text: str) -> EmbeddingResult:
        """Embed ``text`` and report whether the fallback path was used.

        Raises:
            EmbeddingError: If ``text`` is not a non-empty string
        """
        if not isinstance(text, str) or not text:
            raise EmbeddingError("Invalid text for embedding generation")

        if self.remote is not None:
            try:
                values = await asyncio.wait_for(self.remote.embed_query(text), self.timeout)
                return EmbeddingResult(self._validate(values), "remote")
            except Exception as e:
                logger.warning(f"Remote embedding generation failed, using fallback: {e!r}")

        return EmbeddingResult(self.fallback(text), "fallback")

    def fallback(self, text: str) -> np.ndarray:
        """Deterministic local embedding with this generator's dimension."""
        return fallback_embedding(text, self._embedding_dim)

    def _validate(self, values: Sequence[float]) -> np.ndarray:
        if values is None or isinstance(values, (str, bytes)):
            raise ValueError("Invalid embedding response from API")
        vector = np.asarray(values, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self._embedding_dim:
            raise ValueError(
                f"Remote embedding has shape {vector.shape}, expected ({self._embedding_dim},)"
            )
        if not np.all(np.isfinite(vector)):
            raise ValueError("Remote embedding contains non-finite values")
        return vector

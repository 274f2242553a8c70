"""Embedding providers: the sentence-transformers model and a retrying wrapper."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Literal, Protocol, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from notefinder.errors import ProviderError

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that turns one text into one vector."""

    @property
    def model_id(self) -> str: ...

    async def embed(self, text: str) -> np.ndarray: ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and chunk embeddings.

    Encoding is CPU bound, so the async :meth:`embed` hands it to a worker
    thread and the event loop stays responsive while notes are indexed.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model = SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded embedding model %s (backend: %s, dimension: %d)",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    @property
    def model_id(self) -> str:
        return self.config.model_name

    def encode(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    async def embed(self, text: str) -> np.ndarray:
        vectors = await asyncio.to_thread(self.encode, [text])
        return vectors[0]


class RetryingProvider:
    """Retries a flaky provider with exponential backoff.

    Attempt ``n`` (0-based) that fails waits ``base_delay * 2**n`` seconds
    before the next one. Once ``attempts`` are exhausted the last failure is
    raised as :class:`ProviderError`. An empty vector counts as a failure.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    @property
    def model_id(self) -> str:
        return self.provider.model_id

    async def embed(self, text: str) -> np.ndarray:
        last_error: Exception | None = None
        for attempt in range(self.attempts):
            try:
                vector = await self.provider.embed(text)
                array = np.asarray(vector, dtype="float32").reshape(-1)
                if array.size == 0:
                    raise ProviderError("provider returned an empty vector")
                return array
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt < self.attempts - 1:
                    delay = self.base_delay * (2**attempt)
                    logger.warning(
                        "Embedding attempt %d/%d failed (%s), retrying in %.1fs",
                        attempt + 1,
                        self.attempts,
                        exc,
                        delay,
                    )
                    await self._sleep(delay)

        raise ProviderError(
            f"embedding failed after {self.attempts} attempts: {last_error}"
        ) from last_error

"""
Embedding Generator Module

Turns chunk texts and query strings into vectors.

Backends:
- OllamaEmbedder: the Ollama HTTP embedding API (default)
- SentenceTransformerEmbedder: a local sentence-transformers model

Both return one vector per input text, in input order, and raise
EmbeddingServiceError instead of letting service failures escape.
"""
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence

import httpx
import numpy as np
from tqdm.auto import tqdm

from .data_models import Chunk, EmbeddedChunk
from .errors import EmbeddingServiceError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _as_vectors(raw, expected: int) -> List[np.ndarray]:
    if not isinstance(raw, list) or len(raw) != expected:
        got = len(raw) if isinstance(raw, list) else type(raw).__name__
        raise EmbeddingServiceError(f"Expected {expected} embeddings, got {got}")
    try:
        vectors = [np.asarray(v, dtype=np.float32) for v in raw]
    except (TypeError, ValueError) as e:
        raise EmbeddingServiceError(f"Malformed embedding in response: {e}") from e

    dims = {v.shape for v in vectors}
    if len(dims) > 1 or any(len(shape) != 1 or shape[0] == 0 for shape in dims):
        raise EmbeddingServiceError(f"Inconsistent embedding shapes in response: {sorted(dims)}")
    return vectors


class BaseEmbedder(ABC):
    """Common interface of all embedding backends."""

    model_name: str = ""

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embed a batch of texts.

        Returns:
            One 1-D vector per text, in input order
        """

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a single query string."""
        return self.embed([query])[0]

    def embed_chunks(
        self,
        chunks: List[Chunk],
        batch_size: int = 32,
        max_workers: int = 4,
        show_progress: bool = False
    ) -> List[EmbeddedChunk]:
        """
        Embed a list of chunks.

        Batches run concurrently on at most ``max_workers`` threads. The
        first failing batch cancels the batches not yet started and its
        error is raised.

        Args:
            chunks: List of Chunk objects
            batch_size: Number of texts per embedding request
            max_workers: Upper bound on concurrent requests
            show_progress: Whether to show a progress bar

        Returns:
            List of EmbeddedChunk objects, in input order
        """
        if not chunks:
            return []

        batches = [chunks[i:i + batch_size] for i in range(0, len(chunks), batch_size)]
        vectors: List[Optional[List[np.ndarray]]] = [None] * len(batches)

        progress = tqdm(total=len(chunks), desc="Embedding chunks", disable=not show_progress)
        executor = ThreadPoolExecutor(max_workers=max_workers)
        try:
            futures = {
                executor.submit(self.embed, [c.text for c in batch]): i
                for i, batch in enumerate(batches)
            }
            try:
                for future in as_completed(futures):
                    i = futures[future]
                    vectors[i] = future.result()
                    progress.update(len(batches[i]))
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        finally:
            executor.shutdown(wait=True)
            progress.close()

        embedded = [
            EmbeddedChunk(chunk=chunk, embedding=emb)
            for batch, batch_vectors in zip(batches, vectors)
            for chunk, emb in zip(batch, batch_vectors)
        ]

        dims = {ec.embedding.shape[0] for ec in embedded}
        if len(dims) > 1:
            raise EmbeddingServiceError(f"Embedding service returned mixed dimensions: {sorted(dims)}")

        logger.info("Embedded %d chunks in %d batches", len(embedded), len(batches))
        return embedded

    def close(self):
        """Release any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class OllamaEmbedder(BaseEmbedder):
    """Embeddings from an Ollama server's ``/api/embed`` endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "granite-embedding:278m",
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.Client] = None
    ):
        """
        Initialize the embedder.

        Args:
            base_url: Base URL of the Ollama server
            model: Embedding model name
            timeout: Per-request timeout in seconds
            retry_policy: Policy for transient failures (default: 3 attempts)
            client: Optional pre-built httpx client
        """
        self.base_url = base_url.rstrip('/')
        self.model_name = model
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def _embed_once(self, texts: List[str]) -> List[np.ndarray]:
        url = f"{self.base_url}/api/embed"
        try:
            response = self._client.post(url, json={"model": self.model_name, "input": texts})
        except httpx.TimeoutException as e:
            raise EmbeddingServiceError(f"Embedding request to {url} timed out", transient=True) from e
        except httpx.TransportError as e:
            raise EmbeddingServiceError(f"Embedding service unreachable at {url}: {e}", transient=True) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise EmbeddingServiceError(
                f"Embedding service error {status}: {response.text[:200]}", transient=True
            )
        if status >= 400:
            raise EmbeddingServiceError(f"Embedding request rejected ({status}): {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as e:
            raise EmbeddingServiceError("Embedding service returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise EmbeddingServiceError("Embedding service returned an unexpected payload")

        return _as_vectors(payload.get("embeddings"), len(texts))

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        texts = list(texts)
        if not texts:
            return []
        return self.retry_policy.call(self._embed_once, texts)

    def close(self):
        if self._owns_client:
            self._client.close()


class SentenceTransformerEmbedder(BaseEmbedder):
    """
    Embeddings from a local sentence-transformers model.

    Supported models include:
    - all-MiniLM-L6-v2 (fast, 384 dimensions)
    - all-mpnet-base-v2 (balanced, 768 dimensions)
    - BAAI/bge-large-en-v1.5 (retrieval quality, 1024 dimensions)
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: Optional[str] = None):
        """
        Initialize the embedding generator.

        Args:
            model_name: Name of the sentence-transformers model
            device: Device to use ('cpu' or 'cuda'). If None, will auto-detect.
        """
        self.model_name = model_name
        self._device = device
        self._model = None

    @property
    def device(self) -> str:
        if self._device is None:
            import torch
            self._device = "cuda" if torch.cuda.is_available() else "cpu"
        return self._device

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s on %s", self.model_name, self.device)
            try:
                self._model = SentenceTransformer(self.model_name, device=self.device)
            except (OSError, ValueError) as e:
                raise EmbeddingServiceError(f"Could not load model {self.model_name}: {e}") from e
        return self._model

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        texts = list(texts)
        if not texts:
            return []
        try:
            embeddings = self.model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        except (RuntimeError, ValueError) as e:
            raise EmbeddingServiceError(f"Local embedding failed: {e}") from e
        return _as_vectors([np.asarray(e) for e in embeddings], len(texts))

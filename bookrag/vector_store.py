"""
Vector Store Module

ChromaDB-backed storage for embedded chunks:
- HTTP server, persistent directory or in-process client
- Idempotent upsert keyed by deterministic chunk ids
- Nearest-neighbour search with a declared distance metric
"""
import logging
import threading
from typing import List, Dict, Any, Optional, Sequence
from urllib.parse import urlparse

import chromadb
import httpx
import numpy as np

from .data_models import Chunk, EmbeddedChunk, RetrievalResult
from .errors import DimensionMismatchError, StoreUnavailableError

logger = logging.getLogger(__name__)

DISTANCE_METRICS = ('cosine', 'l2', 'ip')

# Failures that mean the database could not be reached.
_UNAVAILABLE_ERRORS = (httpx.TransportError, ConnectionError, TimeoutError)

_RESERVED_KEYS = ('source', 'chunk_index', 'start_char', 'end_char')

_collection_locks: Dict[str, threading.Lock] = {}
_collection_locks_guard = threading.Lock()


def _lock_for(collection_name: str) -> threading.Lock:
    with _collection_locks_guard:
        return _collection_locks.setdefault(collection_name, threading.Lock())


def distance_to_score(distance: float, metric: str) -> float:
    """Convert a ChromaDB distance into a similarity (higher is closer)."""
    if metric == 'l2':
        return 1.0 / (1.0 + distance)
    # cosine distance is 1 - cos, ip distance is 1 - dot
    return 1.0 - distance


def _make_client(url: Optional[str], persist_directory: Optional[str]):
    if url:
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ValueError(f"Invalid vector database URL: {url}")
        ssl = parsed.scheme == 'https'
        port = parsed.port or (443 if ssl else 8000)
        return chromadb.HttpClient(host=parsed.hostname, port=port, ssl=ssl)
    if persist_directory:
        return chromadb.PersistentClient(path=persist_directory)
    return chromadb.EphemeralClient()


class VectorStore:
    """
    ChromaDB collection adapter used by both pipelines.

    Writes to one collection are serialised within the process; across
    processes, ``upsert`` keyed by deterministic ids keeps re-ingestion
    free of duplicates.
    """

    def __init__(
        self,
        collection_name: str = "alice_wonderland_book",
        url: Optional[str] = None,
        persist_directory: Optional[str] = None,
        distance: str = "cosine",
        dimension: Optional[int] = None,
        client=None
    ):
        """
        Initialize the vector store and create the collection if needed.

        Args:
            collection_name: Name of the ChromaDB collection
            url: Base URL of a ChromaDB server
            persist_directory: Directory of a local persistent database
            distance: Distance metric ('cosine', 'l2' or 'ip')
            dimension: Expected embedding dimension (learned from the data if None)
            client: Pre-built ChromaDB client (takes precedence over url/persist_directory)

        Raises:
            StoreUnavailableError: If the database cannot be reached
        """
        if distance not in DISTANCE_METRICS:
            raise ValueError(f"Unknown distance metric: {distance}. Choose from {DISTANCE_METRICS}")

        self.collection_name = collection_name
        self.url = url
        self.persist_directory = persist_directory
        self.distance = distance
        self._dimension = dimension
        self._lock = _lock_for(collection_name)

        try:
            self.client = client if client is not None else _make_client(url, persist_directory)
            self.collection = self._get_or_create_collection()
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(self._unavailable_message(e)) from e
        except ValueError as e:
            # chromadb reports a failed connection handshake as ValueError
            if url and "connect" in str(e).lower():
                raise StoreUnavailableError(self._unavailable_message(e)) from e
            raise

        configured = (self.collection.metadata or {}).get("hnsw:space")
        if configured and configured != distance:
            logger.warning(
                "Collection %s uses distance %s, not %s; scores follow the collection",
                collection_name, configured, distance
            )
            self.distance = configured

    def _unavailable_message(self, error: Exception) -> str:
        where = self.url or self.persist_directory or "in-process client"
        return f"Vector database unavailable ({where}): {error}"

    def _get_or_create_collection(self):
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": self.distance},
            embedding_function=None
        )

    def _call(self, operation: str, *args, **kwargs):
        try:
            return getattr(self.collection, operation)(*args, **kwargs)
        except _UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(self._unavailable_message(e)) from e

    @property
    def count(self) -> int:
        """Get the number of items in the collection."""
        return self._call("count")

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension of the collection, if known."""
        if self._dimension is None:
            peek = self._call("get", limit=1, include=["embeddings"])
            embeddings = peek.get("embeddings")
            if embeddings is not None and len(embeddings) > 0:
                self._dimension = len(embeddings[0])
        return self._dimension

    def _check_dimension(self, vector: np.ndarray):
        expected = self.dimension
        if expected is not None and len(vector) != expected:
            raise DimensionMismatchError(expected=expected, actual=len(vector))

    @staticmethod
    def _chunk_metadata(chunk: Chunk) -> Dict[str, Any]:
        metadata = {
            k: v if isinstance(v, (str, int, float, bool)) else str(v)
            for k, v in chunk.metadata.items()
            if v is not None
        }
        metadata.update({
            "source": chunk.source,
            "chunk_index": chunk.chunk_index,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
        })
        return metadata

    def write(self, embedded_chunks: Sequence[EmbeddedChunk], batch_size: int = 500) -> int:
        """
        Upsert embedded chunks into the collection.

        Writing the same chunks twice leaves the collection unchanged.

        Args:
            embedded_chunks: List of EmbeddedChunk objects
            batch_size: Number of chunks per upsert request

        Returns:
            Number of chunks written
        """
        if not embedded_chunks:
            return 0

        with self._lock:
            for ec in embedded_chunks:
                self._check_dimension(ec.embedding)
                if self._dimension is None:
                    self._dimension = len(ec.embedding)

            total = 0
            for i in range(0, len(embedded_chunks), batch_size):
                batch = embedded_chunks[i:i + batch_size]
                self._call(
                    "upsert",
                    ids=[ec.chunk.id for ec in batch],
                    embeddings=[np.asarray(ec.embedding, dtype=float).tolist() for ec in batch],
                    documents=[ec.chunk.text for ec in batch],
                    metadatas=[self._chunk_metadata(ec.chunk) for ec in batch],
                )
                total += len(batch)

        logger.info("Upserted %d chunks into %s", total, self.collection_name)
        return total

    def query(self, query_embedding: np.ndarray, k: int = 5) -> List[RetrievalResult]:
        """
        Find the chunks nearest to a query vector.

        Args:
            query_embedding: Query embedding vector
            k: Maximum number of results

        Returns:
            Up to k RetrievalResult objects, highest score first
        """
        if k <= 0:
            return []
        available = self.count
        if available == 0:
            return []
        self._check_dimension(query_embedding)

        results = self._call(
            "query",
            query_embeddings=[np.asarray(query_embedding, dtype=float).tolist()],
            n_results=min(k, available),
            include=["documents", "metadatas", "distances"],
        )

        rows = []
        for i in range(len(results['ids'][0])):
            metadata = dict(results['metadatas'][0][i] or {})
            chunk = Chunk(
                id=results['ids'][0][i],
                text=results['documents'][0][i],
                source=str(metadata.get('source', 'unknown')),
                chunk_index=int(metadata.get('chunk_index', 0)),
                start_char=int(metadata.get('start_char', 0)),
                end_char=int(metadata.get('end_char', 0)),
                metadata={k: v for k, v in metadata.items() if k not in _RESERVED_KEYS},
            )
            rows.append((chunk, distance_to_score(results['distances'][0][i], self.distance)))

        rows.sort(key=lambda row: row[1], reverse=True)
        return [
            RetrievalResult(chunk=chunk, score=score, rank=rank)
            for rank, (chunk, score) in enumerate(rows[:k], start=1)
        ]

    def ids_for_source(self, source: str) -> List[str]:
        """Ids of all entries that came from one source document."""
        results = self._call("get", where={"source": source}, include=["metadatas"])
        return list(results['ids'])

    def delete(self, ids: List[str]) -> int:
        """
        Delete entries by id.

        Returns:
            Number of ids requested for deletion
        """
        if not ids:
            return 0
        with self._lock:
            self._call("delete", ids=list(ids))
        return len(ids)

    def prune_source(self, source: str, keep_ids: Sequence[str]) -> int:
        """
        Remove entries of a source that are not in ``keep_ids``.

        Used after re-ingesting a document that now yields fewer chunks.
        """
        keep = set(keep_ids)
        stale = [id_ for id_ in self.ids_for_source(source) if id_ not in keep]
        if stale:
            logger.info("Pruning %d stale chunks of %s", len(stale), source)
        return self.delete(stale)

    def clear(self) -> int:
        """
        Drop and recreate the collection.

        Returns:
            Number of items deleted
        """
        with self._lock:
            count = self.count
            try:
                self.client.delete_collection(self.collection_name)
                self.collection = self._get_or_create_collection()
            except _UNAVAILABLE_ERRORS as e:
                raise StoreUnavailableError(self._unavailable_message(e)) from e
            self._dimension = None
        logger.info("Cleared %d entries from %s", count, self.collection_name)
        return count

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about the collection."""
        results = self._call("get", include=["metadatas"])
        sources = sorted(set(
            str((meta or {}).get('source', 'unknown'))
            for meta in results['metadatas']
        ))
        return {
            'collection_name': self.collection_name,
            'distance': self.distance,
            'total_chunks': len(results['ids']),
            'unique_sources': len(sources),
            'sources': sources,
        }

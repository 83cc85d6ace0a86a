"""
Retriever Module

Query embedding followed by nearest-neighbour search. The retriever keeps
no state of its own beyond its configuration.
"""
import logging
from typing import List, Dict, Any, Optional

from .data_models import RetrievalResult
from .embedder import BaseEmbedder
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


class Retriever:
    """Embeds a query and fetches the top-k chunks from the vector store."""

    def __init__(
        self,
        embedder: BaseEmbedder,
        vector_store: VectorStore,
        k: int = 5,
        threshold: Optional[float] = None
    ):
        """
        Initialize the retriever.

        Args:
            embedder: Embedder used for the query (must match the one used at ingestion)
            vector_store: VectorStore to search
            k: Default number of results
            threshold: Optional minimum similarity score
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.k = k
        self.threshold = threshold

    def retrieve(self, query: str, k: Optional[int] = None) -> List[RetrievalResult]:
        """
        Retrieve the chunks most similar to a query.

        Args:
            query: Query text
            k: Number of results (defaults to the configured k)

        Returns:
            List of RetrievalResult objects, highest score first
        """
        k = self.k if k is None else k
        logger.info("Retrieving documents for question: %s", query)

        query_embedding = self.embedder.embed_query(query)
        results = self.vector_store.query(query_embedding, k=k)

        if self.threshold is not None:
            kept = [r for r in results if r.score >= self.threshold]
            results = [
                RetrievalResult(chunk=r.chunk, score=r.score, rank=rank)
                for rank, r in enumerate(kept, start=1)
            ]

        logger.info("Retrieved %d documents", len(results))
        return results

    @staticmethod
    def get_retrieval_statistics(results: List[RetrievalResult]) -> Dict[str, Any]:
        """
        Get statistics about retrieval results.

        Args:
            results: List of retrieval results

        Returns:
            Dictionary with statistics
        """
        if not results:
            return {
                'num_results': 0,
                'avg_score': 0,
                'max_score': 0,
                'min_score': 0,
                'unique_sources': 0,
                'sources': [],
            }

        scores = [r.score for r in results]
        sources = sorted(set(r.source for r in results))

        return {
            'num_results': len(results),
            'avg_score': sum(scores) / len(scores),
            'max_score': max(scores),
            'min_score': min(scores),
            'unique_sources': len(sources),
            'sources': sources,
        }

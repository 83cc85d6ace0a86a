"""
Core data models for the RAG pipelines.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any

import numpy as np


@dataclass(frozen=True)
class Document:
    """Represents a loaded document."""
    content: str
    source: str
    file_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.content)

    def preview(self, max_chars: int = 500) -> str:
        """Return a preview of the document content."""
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars] + "..."


@dataclass
class Chunk:
    """
    A contiguous slice of a document.

    ``text`` is always ``content[start_char:end_char]`` of the parent
    document, and ``id`` is derived from the source and the position, so
    re-chunking an unchanged document yields the same ids.
    """
    id: str
    text: str
    source: str
    chunk_index: int
    start_char: int
    end_char: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.text)

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class EmbeddedChunk:
    """Represents a chunk with its embedding."""
    chunk: Chunk
    embedding: np.ndarray

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source(self) -> str:
        return self.chunk.source


@dataclass
class RetrievalResult:
    """Represents a single retrieval result."""
    chunk: Chunk
    score: float
    rank: int

    @property
    def id(self) -> str:
        return self.chunk.id

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source(self) -> str:
        return self.chunk.source

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'text': self.text,
            'source': self.source,
            'score': self.score,
            'rank': self.rank,
            'chunk_index': self.chunk.chunk_index,
        }


@dataclass
class RAGAnswer:
    """The generated answer together with what it was grounded on."""
    question: str
    answer: str
    prompt: str
    results: List[RetrievalResult]
    model: str

    @property
    def sources(self) -> List[str]:
        """Unique source identifiers, in retrieval order."""
        seen = []
        for result in self.results:
            if result.source not in seen:
                seen.append(result.source)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'question': self.question,
            'answer': self.answer,
            'model': self.model,
            'sources': self.sources,
            'num_context_chunks': len(self.results),
        }


@dataclass
class IngestionReport:
    """Summary of one ingestion run."""
    collection: str
    documents: int = 0
    chunks: int = 0
    written: int = 0
    pruned: int = 0

"""
Text Chunker Module

Splits documents into overlapping chunks that are exact slices of the
source text. Each strategy is an ordered list of preferred break points;
a chunk ends at the last break point of the highest-priority kind that
still fits within the size limit, and falls back to a hard cut when
nothing fits:

- markdown: headings, fences and rules, blank lines, lines, sentences, words
- paragraph: blank lines, lines, sentences, words
- sentence: sentences, lines, words
- fixed: hard cuts only
"""
import logging
import re
from typing import List, Dict, Any

from .data_models import Document, Chunk

logger = logging.getLogger(__name__)

_SENTENCE_END = r'(?<=[.!?])\s+'

SEPARATORS = {
    'markdown': [
        r'\n(?=#{1,6} )',
        r'\n(?=```)',
        r'\n(?=(?:\*\*\*+|---+|___+)[ \t]*\n)',
        r'\n[ \t]*\n',
        r'\n',
        _SENTENCE_END,
        r' ',
    ],
    'paragraph': [r'\n[ \t]*\n', r'\n', _SENTENCE_END, r' '],
    'sentence': [_SENTENCE_END, r'\n', r' '],
    'fixed': [],
}

_WHITESPACE = re.compile(r'\s+')


class TextChunker:
    """
    Splits documents into bounded, overlapping chunks.

    Guarantees, for every document:
    - every character belongs to at least one chunk
    - no chunk is longer than ``chunk_size``
    - consecutive chunks share at most ``overlap`` characters
    - chunks are emitted in position order
    """

    STRATEGIES = list(SEPARATORS)

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 200,
        strategy: str = "markdown"
    ):
        """
        Initialize the chunker.

        Args:
            chunk_size: Maximum size of each chunk in characters
            overlap: Target number of characters shared by consecutive chunks
            strategy: Chunking strategy ('markdown', 'paragraph', 'sentence', 'fixed')
        """
        if strategy not in SEPARATORS:
            raise ValueError(f"Unknown strategy: {strategy}. Choose from {self.STRATEGIES}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(
                f"overlap must be in [0, chunk_size), got overlap={overlap}, chunk_size={chunk_size}"
            )

        self.chunk_size = chunk_size
        self.overlap = overlap
        self.strategy = strategy
        self._patterns = [re.compile(p) for p in SEPARATORS[strategy]]

    def _find_break(self, text: str, start: int, limit: int) -> int:
        # The chunk must extend past the overlap so the next one starts later.
        min_end = start + self.overlap
        for pattern in self._patterns:
            best = None
            for match in pattern.finditer(text, start, limit):
                if match.end() > min_end:
                    best = match.end()
            if best is not None:
                return best
        return limit

    def _next_start(self, text: str, end: int) -> int:
        if self.overlap == 0:
            return end
        candidate = end - self.overlap
        if text[candidate - 1].isspace():
            return candidate
        # Start the overlap on a word boundary when one exists inside it.
        match = _WHITESPACE.search(text, candidate, end)
        if match and match.end() < end:
            return match.end()
        return candidate

    def chunk_document(self, document: Document) -> List[Chunk]:
        """
        Chunk a single document.

        Args:
            document: Document to chunk

        Returns:
            List of Chunk objects in position order
        """
        text = document.content
        if not text.strip():
            return []

        chunks = []
        length = len(text)
        start = 0
        while True:
            limit = min(start + self.chunk_size, length)
            end = length if limit >= length else self._find_break(text, start, limit)

            chunk_index = len(chunks)
            chunks.append(Chunk(
                id=f"{document.source}_{chunk_index}",
                text=text[start:end],
                source=document.source,
                chunk_index=chunk_index,
                start_char=start,
                end_char=end,
                metadata={
                    **document.metadata,
                    'strategy': self.strategy,
                    'document_type': document.file_type,
                }
            ))

            if end >= length:
                break
            start = self._next_start(text, end)

        return chunks

    def chunk_documents(self, documents: List[Document]) -> List[Chunk]:
        """
        Chunk multiple documents, preserving document order.

        Args:
            documents: List of documents to chunk

        Returns:
            List of all Chunk objects
        """
        all_chunks = []
        for doc in documents:
            all_chunks.extend(self.chunk_document(doc))
        logger.info("Split %d documents into %d chunks", len(documents), len(all_chunks))
        return all_chunks

    @staticmethod
    def reconstruct(chunks: List[Chunk]) -> str:
        """
        Rebuild a document's text from its chunks by dropping the overlaps.

        Args:
            chunks: Chunks of one document, in position order
        """
        parts = []
        covered = 0
        for chunk in chunks:
            skip = max(0, covered - chunk.start_char)
            parts.append(chunk.text[skip:])
            covered = max(covered, chunk.end_char)
        return "".join(parts)

    def get_statistics(self, chunks: List[Chunk]) -> Dict[str, Any]:
        """
        Calculate statistics for a list of chunks.

        Args:
            chunks: List of chunks

        Returns:
            Dictionary with statistics
        """
        if not chunks:
            return {
                'total_chunks': 0,
                'avg_length': 0,
                'min_length': 0,
                'max_length': 0,
                'total_chars': 0,
                'avg_words': 0,
                'sources': [],
            }

        lengths = [len(c.text) for c in chunks]
        word_counts = [c.word_count for c in chunks]

        return {
            'total_chunks': len(chunks),
            'avg_length': sum(lengths) / len(lengths),
            'min_length': min(lengths),
            'max_length': max(lengths),
            'total_chars': sum(lengths),
            'avg_words': sum(word_counts) / len(word_counts),
            'sources': sorted(set(c.source for c in chunks)),
        }

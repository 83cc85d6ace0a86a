"""Core modules for the RAG system."""
from .chunker import TextChunker
from .data_models import Document, Chunk, EmbeddedChunk, RetrievalResult, RAGAnswer, IngestionReport
from .document_loader import DocumentLoader
from .embedder import BaseEmbedder, OllamaEmbedder, SentenceTransformerEmbedder
from .errors import (
    RAGError,
    ConfigurationError,
    LoadError,
    EmbeddingServiceError,
    StoreUnavailableError,
    DimensionMismatchError,
    ContextTooLargeError,
    GenerationServiceError,
)
from .generator import BaseGenerator, OllamaGenerator, GeminiGenerator
from .pipeline import IngestionPipeline, QueryPipeline
from .prompt import PromptAssembler, DEFAULT_TEMPLATE
from .retriever import Retriever
from .retry import RetryPolicy
from .vector_store import VectorStore

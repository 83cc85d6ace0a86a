"""
Builds pipeline components from a RAGConfig.

Each builder returns a fresh, explicitly configured instance; the
pipelines receive them as constructor arguments.
"""
from config.settings import RAGConfig

from .chunker import TextChunker
from .document_loader import DocumentLoader
from .embedder import BaseEmbedder, OllamaEmbedder, SentenceTransformerEmbedder
from .generator import BaseGenerator, GeminiGenerator, OllamaGenerator
from .pipeline import IngestionPipeline, QueryPipeline
from .prompt import PromptAssembler
from .retriever import Retriever
from .retry import RetryPolicy
from .vector_store import VectorStore


def create_embedder(config: RAGConfig) -> BaseEmbedder:
    """Create the embedder selected by ``config.embedding_backend``."""
    if config.embedding_backend == 'sentence-transformers':
        return SentenceTransformerEmbedder(config.embedding_model, device=config.embedding_device)
    return OllamaEmbedder(
        base_url=config.ollama_base_url,
        model=config.embedding_model,
        timeout=config.request_timeout,
        retry_policy=RetryPolicy(max_attempts=config.embedding_retry_attempts),
    )


def create_vector_store(config: RAGConfig) -> VectorStore:
    """Connect to the configured collection, creating it if needed."""
    return VectorStore(
        collection_name=config.collection_name,
        url=config.chroma_url or None,
        persist_directory=config.chroma_persist_directory or None,
        distance=config.distance_metric,
    )


def create_generator(config: RAGConfig) -> BaseGenerator:
    """Create the language model client selected by ``config.llm_backend``."""
    retry_policy = RetryPolicy(max_attempts=config.generation_retry_attempts)
    if config.llm_backend == 'gemini':
        return GeminiGenerator(
            model=config.llm_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            retry_policy=retry_policy,
        )
    return OllamaGenerator(
        base_url=config.ollama_base_url,
        model=config.llm_model,
        temperature=config.temperature,
        timeout=config.request_timeout,
        retry_policy=retry_policy,
    )


def create_ingestion_pipeline(config: RAGConfig, show_progress: bool = True) -> IngestionPipeline:
    """Wire loader, chunker, embedder and store for ingestion."""
    config.validate()
    return IngestionPipeline(
        loader=DocumentLoader(config.file_extensions),
        chunker=TextChunker(
            chunk_size=config.chunk_size,
            overlap=config.chunk_overlap,
            strategy=config.chunking_strategy,
        ),
        embedder=create_embedder(config),
        vector_store=create_vector_store(config),
        batch_size=config.embedding_batch_size,
        max_workers=config.embedding_workers,
        show_progress=show_progress,
    )


def create_query_pipeline(config: RAGConfig) -> QueryPipeline:
    """Wire retriever, prompt assembler and generator for answering."""
    config.validate()
    retriever = Retriever(
        embedder=create_embedder(config),
        vector_store=create_vector_store(config),
        k=config.top_k,
        threshold=config.similarity_threshold,
    )
    assembler = PromptAssembler(
        max_prompt_chars=config.max_prompt_chars,
        truncation=config.context_truncation,
    )
    return QueryPipeline(retriever, assembler, create_generator(config))

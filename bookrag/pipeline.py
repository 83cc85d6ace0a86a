"""
Ingestion and query orchestrators.

Both run their stages sequentially. A RAGError raised by any stage is
tagged with the stage name, logged, and re-raised with its original type
and cause.
"""
import logging
from contextlib import contextmanager
from typing import Dict, List

from .chunker import TextChunker
from .data_models import Chunk, Document, IngestionReport, RAGAnswer
from .document_loader import DocumentLoader
from .embedder import BaseEmbedder
from .errors import RAGError
from .generator import BaseGenerator
from .prompt import PromptAssembler
from .retriever import Retriever
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


@contextmanager
def stage(name: str):
    """Attribute any RAGError raised inside the block to a pipeline stage."""
    logger.debug("Stage %s started", name)
    try:
        yield
    except RAGError as e:
        if e.stage is None:
            e.stage = name
        logger.error("Stage %s failed: %s", e.stage, e)
        raise


class IngestionPipeline:
    """Loader -> Chunker -> Embedder -> Vector store."""

    def __init__(
        self,
        loader: DocumentLoader,
        chunker: TextChunker,
        embedder: BaseEmbedder,
        vector_store: VectorStore,
        batch_size: int = 32,
        max_workers: int = 4,
        prune: bool = True,
        show_progress: bool = False
    ):
        self.loader = loader
        self.chunker = chunker
        self.embedder = embedder
        self.vector_store = vector_store
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.prune = prune
        self.show_progress = show_progress

    def run(self, directory) -> IngestionReport:
        """
        Index every eligible document in a directory.

        All chunks are embedded before anything is written, so a failed
        embedding leaves the collection untouched.

        Args:
            directory: Source directory

        Returns:
            IngestionReport with counts per stage
        """
        report = IngestionReport(collection=self.vector_store.collection_name)
        logger.info("Processing documents in %s", directory)

        with stage("load"):
            documents = self.loader.load_directory(directory)
        report.documents = len(documents)

        with stage("chunk"):
            chunks = self.chunker.chunk_documents(documents)
        report.chunks = len(chunks)

        with stage("embed"):
            embedded = self.embedder.embed_chunks(
                chunks,
                batch_size=self.batch_size,
                max_workers=self.max_workers,
                show_progress=self.show_progress,
            )

        with stage("write"):
            report.written = self.vector_store.write(embedded)

        if self.prune:
            with stage("prune"):
                for source, ids in self._ids_by_source(documents, chunks).items():
                    report.pruned += self.vector_store.prune_source(source, ids)

        logger.info(
            "Indexed %d documents as %d chunks into %s (%d stale removed)",
            report.documents, report.written, report.collection, report.pruned
        )
        return report

    @staticmethod
    def _ids_by_source(documents: List[Document], chunks: List[Chunk]) -> Dict[str, List[str]]:
        # a document that now yields no chunks keeps none of its old entries
        grouped: Dict[str, List[str]] = {document.source: [] for document in documents}
        for chunk in chunks:
            grouped.setdefault(chunk.source, []).append(chunk.id)
        return grouped


class QueryPipeline:
    """Retriever -> Prompt assembler -> Language model."""

    def __init__(
        self,
        retriever: Retriever,
        assembler: PromptAssembler,
        generator: BaseGenerator
    ):
        self.retriever = retriever
        self.assembler = assembler
        self.generator = generator

    def ask(self, question: str) -> RAGAnswer:
        """
        Answer a question from the indexed documents.

        Args:
            question: The user question

        Returns:
            RAGAnswer with the generated text and the chunks it was grounded on
        """
        with stage("retrieve"):
            results = self.retriever.retrieve(question)

        with stage("assemble"):
            used = self.assembler.select(question, results)
            prompt = self.assembler.render(question, used)

        with stage("generate"):
            answer = self.generator.generate(prompt)

        return RAGAnswer(
            question=question,
            answer=answer,
            prompt=prompt,
            results=used,
            model=self.generator.model_name,
        )

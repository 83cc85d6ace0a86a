"""
Command line entry points.

Usage:
    bookrag-ingest --source-dir ./book
    bookrag-ask
    bookrag-ask "Who is the main character ?" -k 3
"""
import argparse
import logging
import sys
from typing import List, Optional

from config.settings import RAGConfig

from .errors import RAGError
from .factory import create_ingestion_pipeline, create_query_pipeline
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

EXAMPLE_QUESTIONS = [
    "Who is the main character ?",
    "Who is the anti-protagonist ?",
    "Which places did Alice visit?",
    "What is the cat name ?",
]


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--config', type=str, default=None,
                        help='JSON or .env config file (default: environment and ./.env)')
    parser.add_argument('--collection', type=str, default=None, help='Vector store collection name')
    parser.add_argument('--log-level', type=str, default=None, help='Logging level (default: INFO)')


def _load_config(args) -> RAGConfig:
    config = RAGConfig.from_file(args.config) if args.config else RAGConfig.from_env()
    if args.collection:
        config.collection_name = args.collection
    if args.log_level:
        config.log_level = args.log_level
    return config


def _fail(error: RAGError) -> int:
    stage = f" during {error.stage}" if error.stage else ""
    logger.error("%s%s: %s", type(error).__name__, stage, error)
    if error.__cause__ is not None:
        logger.error("Caused by: %r", error.__cause__)
    return 1


def ingest_main(argv: Optional[List[str]] = None) -> int:
    """Build the vector index from the source documents."""
    parser = argparse.ArgumentParser(description='Index a directory of documents into the vector store')
    _add_common_arguments(parser)
    parser.add_argument('--source-dir', type=str, default=None, help='Directory with the source documents')
    parser.add_argument('--reset', action='store_true', help='Delete the collection before indexing')
    parser.add_argument('--no-progress', action='store_true', help='Hide the embedding progress bar')
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
        configure_logging(config.log_level)
        if args.source_dir:
            config.source_directory = args.source_dir

        pipeline = create_ingestion_pipeline(config, show_progress=not args.no_progress)
        if args.reset:
            pipeline.vector_store.clear()
        report = pipeline.run(config.source_directory)
    except RAGError as e:
        return _fail(e)

    print(f"Indexed {report.documents} documents as {report.written} chunks "
          f"into '{report.collection}' ({report.pruned} stale chunks removed)")
    return 0


def ask_main(argv: Optional[List[str]] = None) -> int:
    """Answer questions against the existing index."""
    parser = argparse.ArgumentParser(description='Answer questions from the indexed documents')
    _add_common_arguments(parser)
    parser.add_argument('questions', nargs='*', help='Questions to ask (default: the example questions)')
    parser.add_argument('-k', '--top-k', type=int, default=None, help='Number of chunks to retrieve')
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
        configure_logging(config.log_level)
        if args.top_k is not None:
            config.top_k = args.top_k

        pipeline = create_query_pipeline(config)
        logger.info("RAG system is ready to use")

        for question in args.questions or EXAMPLE_QUESTIONS:
            answer = pipeline.ask(question)
            print(f"Question: {question}")
            print(f"Answer: {answer.answer}")
            print(f"Sources: {', '.join(answer.sources) or '(none)'}")
            print()
    except RAGError as e:
        return _fail(e)
    return 0


if __name__ == "__main__":
    sys.exit(ask_main())

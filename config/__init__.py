"""Configuration for the RAG pipelines."""
from .settings import RAGConfig

__all__ = ["RAGConfig"]

"""
Shared fixtures: fake services and a throwaway ChromaDB collection.
"""
import hashlib
import re
import uuid
from typing import List, Sequence

import chromadb
import numpy as np
import pytest

from bookrag.embedder import BaseEmbedder
from bookrag.errors import EmbeddingServiceError
from bookrag.generator import BaseGenerator
from bookrag.vector_store import VectorStore


class HashingEmbedder(BaseEmbedder):
    """Deterministic bag-of-words embedder: shared words mean similar vectors."""

    model_name = "hashing-test"

    def __init__(self, dim: int = 64):
        self.dim = dim
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dim, dtype=np.float32)
        for token in re.findall(r"[a-z]+", text.lower()):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = np.linalg.norm(vec)
        if norm == 0:
            vec[0] = 1.0
            return vec
        return vec / norm

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]


class FailingEmbedder(BaseEmbedder):
    """Embedder whose service is always unreachable."""

    model_name = "failing-test"

    def __init__(self):
        self.calls = 0

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        self.calls += 1
        raise EmbeddingServiceError("connection refused", transient=True)


class RecordingGenerator(BaseGenerator):
    """Generator that records prompts and returns a canned answer."""

    model_name = "recording-test"

    def __init__(self, answer: str = "Alice is the main character.", retry_policy=None):
        super().__init__(retry_policy)
        self.answer = answer
        self.prompts: List[str] = []

    def _generate_once(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def generator():
    return RecordingGenerator()


@pytest.fixture
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture
def store(chroma_client):
    """A fresh, uniquely named in-process collection."""
    return VectorStore(collection_name=f"test_{uuid.uuid4().hex}", client=chroma_client)


@pytest.fixture
def book_dir(tmp_path):
    """A small book: two chapters, one note file and a nested directory."""
    chapter_one = (
        "# Chapter 1: Down the Rabbit-Hole\n\n"
        "Alice was beginning to get very tired of sitting by her sister on the bank. "
        "Alice is the main character of the story.\n\n"
        "Suddenly a White Rabbit with pink eyes ran close by her.\n"
    )
    chapter_two = (
        "# Chapter 6: Pig and Pepper\n\n"
        "The Cheshire Cat was sitting on a bough of a tree a few yards off. "
        "The cat only grinned when it saw Alice.\n"
    )
    (tmp_path / "01_rabbit_hole.md").write_text(chapter_one, encoding="utf-8")
    (tmp_path / "06_pig_and_pepper.md").write_text(chapter_two, encoding="utf-8")
    (tmp_path / "notes.txt").write_text("Not part of the book.", encoding="utf-8")
    nested = tmp_path / "drafts"
    nested.mkdir()
    (nested / "draft.md").write_text("# Draft\n\nIgnored.", encoding="utf-8")
    return tmp_path

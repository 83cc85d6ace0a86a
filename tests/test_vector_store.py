"""
Unit tests for the ChromaDB vector store adapter.

Uses a real in-process ChromaDB client with one collection per test.
"""
import uuid

import httpx
import numpy as np
import pytest

from bookrag.data_models import Chunk, EmbeddedChunk
from bookrag.errors import DimensionMismatchError, StoreUnavailableError
from bookrag.vector_store import VectorStore, distance_to_score


def embedded(texts, embedder, source="book.md"):
    chunks = [
        Chunk(id=f"{source}_{i}", text=t, source=source, chunk_index=i,
              start_char=i * 10, end_char=i * 10 + len(t), metadata={"file_path": f"/b/{source}"})
        for i, t in enumerate(texts)
    ]
    return [EmbeddedChunk(chunk=c, embedding=v) for c, v in zip(chunks, embedder.embed(texts))]


TEXTS = [
    "Alice follows the White Rabbit down the hole.",
    "The Queen of Hearts shouts off with their heads.",
    "The Cheshire Cat grins from the tree.",
    "The Mad Hatter pours tea at the party.",
    "Alice grows very tall after eating the cake.",
]


class TestWrite:
    """Upserts and idempotence."""

    def test_write_returns_count(self, store, embedder):
        assert store.write(embedded(TEXTS, embedder)) == len(TEXTS)
        assert store.count == len(TEXTS)

    def test_rewrite_is_idempotent(self, store, embedder):
        entries = embedded(TEXTS, embedder)
        store.write(entries)
        store.write(entries)
        assert store.count == len(TEXTS)

    def test_rewrite_updates_text(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        changed = list(TEXTS)
        changed[0] = "Alice is now somewhere else entirely."
        store.write(embedded(changed, embedder))

        assert store.count == len(TEXTS)
        top = store.query(embedder.embed_query(changed[0]), k=1)[0]
        assert top.id == "book.md_0"
        assert top.text == changed[0]

    def test_empty_write(self, store):
        assert store.write([]) == 0
        assert store.count == 0

    def test_dimension_mismatch(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        bad = EmbeddedChunk(chunk=embedded(TEXTS[:1], embedder)[0].chunk, embedding=np.ones(3))
        with pytest.raises(DimensionMismatchError):
            store.write([bad])
        with pytest.raises(DimensionMismatchError):
            store.query(np.ones(3), k=2)

    def test_metadata_round_trip(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        result = store.query(embedder.embed_query(TEXTS[2]), k=1)[0]
        assert result.source == "book.md"
        assert result.chunk.chunk_index == 2
        assert result.chunk.start_char == 20
        assert result.chunk.metadata["file_path"] == "/b/book.md"


class TestQuery:
    """Nearest-neighbour search."""

    @pytest.mark.parametrize("k", [1, 2, 5, 10])
    def test_never_more_than_k(self, store, embedder, k):
        store.write(embedded(TEXTS, embedder))
        results = store.query(embedder.embed_query("Alice and the cake"), k=k)
        assert len(results) == min(k, len(TEXTS))

    def test_sorted_by_score(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        results = store.query(embedder.embed_query("Alice the rabbit"), k=5)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert [r.rank for r in results] == [1, 2, 3, 4, 5]

    def test_exact_match_first(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        results = store.query(embedder.embed_query(TEXTS[3]), k=3)
        assert results[0].text == TEXTS[3]
        assert results[0].score == pytest.approx(1.0, abs=1e-4)

    def test_empty_collection(self, store, embedder):
        assert store.query(embedder.embed_query("anything"), k=5) == []

    def test_non_positive_k(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        assert store.query(embedder.embed_query("Alice"), k=0) == []

    def test_l2_metric(self, chroma_client, embedder):
        store = VectorStore(collection_name=f"test_{uuid.uuid4().hex}", client=chroma_client, distance="l2")
        store.write(embedded(TEXTS, embedder))
        results = store.query(embedder.embed_query(TEXTS[1]), k=3)
        assert results[0].text == TEXTS[1]
        assert all(0 < r.score <= 1 for r in results)


class TestMaintenance:
    """Pruning, deletion and statistics."""

    def test_prune_source(self, store, embedder):
        store.write(embedded(TEXTS, embedder, source="a.md"))
        store.write(embedded(TEXTS[:2], embedder, source="b.md"))

        removed = store.prune_source("a.md", ["a.md_0", "a.md_1"])

        assert removed == 3
        assert sorted(store.ids_for_source("a.md")) == ["a.md_0", "a.md_1"]
        assert len(store.ids_for_source("b.md")) == 2

    def test_clear(self, store, embedder):
        store.write(embedded(TEXTS, embedder))
        assert store.clear() == len(TEXTS)
        assert store.count == 0

    def test_statistics(self, store, embedder):
        store.write(embedded(TEXTS, embedder, source="a.md"))
        store.write(embedded(TEXTS[:1], embedder, source="b.md"))
        stats = store.get_statistics()
        assert stats["total_chunks"] == len(TEXTS) + 1
        assert stats["sources"] == ["a.md", "b.md"]
        assert stats["distance"] == "cosine"

    def test_invalid_metric(self, chroma_client):
        with pytest.raises(ValueError):
            VectorStore(collection_name="test_invalid_metric", client=chroma_client, distance="manhattan")


class UnreachableClient:
    """Stands in for a ChromaDB client whose server is down."""

    def get_or_create_collection(self, **kwargs):
        raise httpx.ConnectError("connection refused")


class FlakyCollection:
    metadata = {"hnsw:space": "cosine"}

    def count(self):
        raise httpx.ConnectError("connection reset")

    def upsert(self, **kwargs):
        raise ConnectionError("connection reset")


class DroppingClient:
    """Connects, then loses the server."""

    def get_or_create_collection(self, **kwargs):
        return FlakyCollection()


class TestUnavailable:

    def test_unreachable_at_connect(self):
        with pytest.raises(StoreUnavailableError) as excinfo:
            VectorStore(collection_name="test_down", client=UnreachableClient())
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)

    def test_unreachable_during_calls(self, embedder):
        store = VectorStore(collection_name="test_flaky", client=DroppingClient(), dimension=64)
        with pytest.raises(StoreUnavailableError):
            store.query(embedder.embed_query("Alice"), k=3)
        with pytest.raises(StoreUnavailableError):
            store.write(embedded(TEXTS[:1], embedder))

    def test_real_http_client_without_server(self):
        with pytest.raises(StoreUnavailableError):
            VectorStore(collection_name="test_no_server", url="http://127.0.0.1:9")


class TestScores:

    def test_distance_to_score(self):
        assert distance_to_score(0.0, "cosine") == 1.0
        assert distance_to_score(0.25, "ip") == 0.75
        assert distance_to_score(1.0, "l2") == 0.5

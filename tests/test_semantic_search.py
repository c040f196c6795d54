"""
Test cases for SemanticVectorSearch indexing, querying and rerank integration.
"""

import pytest
from unittest.mock import MagicMock

from docchat.core.schemas import EmbeddingConfig, RerankConfig
from docchat.vector import (
    Chunk,
    DeterministicHashEmbedding,
    EmbeddingsService,
    EmbeddingUnavailableError,
    HttpEmbeddingClient,
    RerankClient,
    SemanticVectorSearch,
)
from docchat.vector.types import RerankResult


def _text(word, length):
    return (f"{word} " * length)[:length]


@pytest.fixture
def chunks():
    return [
        Chunk(chunk_id="c1", text=_text("alpha", 100), belongs_to_group="g1"),
        Chunk(chunk_id="c2", text=_text("bravo", 500), belongs_to_group="g1"),
        Chunk(chunk_id="c3", text=_text("charlie", 5000), belongs_to_group="g2"),
    ]


@pytest.fixture
def embedding():
    return EmbeddingsService(DeterministicHashEmbedding(dimension=64))


@pytest.fixture
def search(embedding, tmp_path):
    return SemanticVectorSearch(embedding, db_path=str(tmp_path / "vectors.db"))


def test_query_before_and_after_indexing(search, chunks):
    """An empty index yields nothing; once indexed the exact chunk text is found."""
    assert search.search(chunks[1].text, chunks, doc_id="doc1") == []

    summary = search.index_chunks(chunks, "doc1")
    hits = search.search(chunks[1].text, chunks)

    assert summary == {"doc_id": "doc1", "count": 3, "cached": False, "failed": 0}
    assert hits
    assert hits[0].chunk.chunk_id == "c2"
    assert hits[0].score == pytest.approx(1.0)


def test_hits_rehydrate_full_chunks(search, chunks):
    """The store keeps a 200-char preview; results carry the caller's full chunk."""
    search.index_chunks(chunks, "doc1")

    record = search.get_store("doc1").get("c3")
    hits = search.search(chunks[2].text, chunks)

    assert len(record.metadata["text"]) == 200
    assert record.metadata["charCount"] == 5000
    assert hits[0].chunk is chunks[2]
    assert len(hits[0].chunk.text) == 5000


def test_init_false_without_embedding_client(tmp_path, chunks):
    search = SemanticVectorSearch(None, db_path=str(tmp_path / "vectors.db"))

    assert search.init() is False
    assert search.search("q", chunks, doc_id="doc1") == []
    with pytest.raises(EmbeddingUnavailableError):
        search.index_chunks(chunks, "doc1")


def test_init_false_when_client_unconfigured(tmp_path, chunks):
    client = HttpEmbeddingClient(EmbeddingConfig(api_key=None))
    search = SemanticVectorSearch(client, db_path=str(tmp_path / "vectors.db"))

    assert search.init() is False
    assert search.search("q", chunks, doc_id="doc1") == []


def test_unchanged_chunks_hit_cache(embedding, tmp_path, chunks):
    client = MagicMock(wraps=embedding)
    search = SemanticVectorSearch(client, db_path=str(tmp_path / "vectors.db"))

    search.index_chunks(chunks, "doc1")
    summary = search.index_chunks(chunks, "doc1")

    assert summary["cached"] is True
    assert client.batch_embed.call_count == 1


def test_same_length_edit_triggers_rebuild(search, chunks):
    """Equal counts are not enough; changed content is re-embedded."""
    search.index_chunks(chunks, "doc1")
    edited = [chunks[0], Chunk(chunk_id="c2", text=_text("delta", 500)), chunks[2]]

    summary = search.index_chunks(edited, "doc1")
    hits = search.search(edited[1].text, edited)

    assert summary["cached"] is False
    assert search.get_store("doc1").count() == 3
    assert hits[0].chunk.text == edited[1].text


def test_force_rebuild_skips_cache(search, chunks):
    search.index_chunks(chunks, "doc1")
    assert search.index_chunks(chunks, "doc1", force_rebuild=True)["cached"] is False


def test_failed_embeddings_are_skipped(tmp_path, chunks):
    client = MagicMock()
    client.is_ready.return_value = True
    client.batch_embed.return_value = [[1.0, 0.0], None, [0.0, 1.0]]
    search = SemanticVectorSearch(client, db_path=str(tmp_path / "vectors.db"))

    summary = search.index_chunks(chunks, "doc1")

    assert summary["count"] == 2
    assert summary["failed"] == 1
    assert search.get_store("doc1").get("c2") is None


def test_dict_chunks_accepted(search):
    raw = [{"chunkId": "a", "text": "first chunk"}, {"chunkId": "b", "text": "second chunk"}]

    search.index_chunks(raw, "doc1")
    hits = search.search("second chunk", raw)

    assert hits[0].chunk.chunk_id == "b"


def test_disabled_rerank_keeps_similarity_order(embedding, tmp_path):
    """With rerank disabled, results come back in similarity order."""
    chunks = [Chunk(chunk_id=f"c{i}", text=f"passage number {i}") for i in range(5)]
    search = SemanticVectorSearch(
        embedding,
        rerank_client=RerankClient(RerankConfig(enabled=False)),
        db_path=str(tmp_path / "vectors.db"),
    )
    search.index_chunks(chunks, "doc1")

    hits = search.search("passage number 3", chunks, top_k=5, threshold=-1.0)
    expected = search.get_store("doc1").search(embedding.embed("passage number 3"), top_k=5)

    assert len(hits) == 5
    assert [h.chunk.chunk_id for h in hits] == [r.id for r in expected]
    assert all(h.rerank_score is None for h in hits)


def test_enabled_rerank_reorders_hits(embedding, tmp_path):
    chunks = [Chunk(chunk_id=f"c{i}", text=f"passage number {i}") for i in range(3)]
    rerank = MagicMock()
    rerank.should_rerank.return_value = True
    rerank.rerank.side_effect = lambda query, docs, top_n, search_type: [
        RerankResult(index=i, relevance_score=0.9 - 0.1 * n) for n, i in enumerate(reversed(range(len(docs))))
    ]
    search = SemanticVectorSearch(embedding, rerank_client=rerank, db_path=str(tmp_path / "vectors.db"))
    search.index_chunks(chunks, "doc1")

    before = search.search("passage number 1", chunks, threshold=-1.0)
    rerank.should_rerank.return_value = False
    plain = search.search("passage number 1", chunks, threshold=-1.0)

    assert [h.chunk.chunk_id for h in before] == [h.chunk.chunk_id for h in reversed(plain)]
    assert before[0].rerank_score == pytest.approx(0.9)
    assert before[0].original_score == pytest.approx(plain[-1].score)


def test_rerank_failure_keeps_original_order(embedding, tmp_path, chunks):
    rerank = MagicMock()
    rerank.should_rerank.return_value = True
    rerank.rerank.side_effect = RuntimeError("provider down")
    search = SemanticVectorSearch(embedding, rerank_client=rerank, db_path=str(tmp_path / "vectors.db"))
    search.index_chunks(chunks, "doc1")

    hits = search.search(chunks[0].text, chunks)

    assert hits[0].chunk.chunk_id == "c1"
    assert hits[0].rerank_score is None


def test_query_errors_degrade_to_empty(tmp_path, chunks):
    client = MagicMock()
    client.is_ready.return_value = True
    client.batch_embed.return_value = [[1.0, 0.0]] * 3
    client.embed.side_effect = RuntimeError("timeout")
    search = SemanticVectorSearch(client, db_path=str(tmp_path / "vectors.db"))
    search.index_chunks(chunks, "doc1")

    assert search.search("anything", chunks) == []


def test_index_status_and_delete(search, chunks):
    search.index_chunks(chunks, "doc1")

    status = search.get_index_status("doc1")
    deleted = search.delete_index("doc1")

    assert status["indexed"] is True
    assert status["count"] == 3
    assert status["dimensions"] == 64
    assert status["size_kb"] > 0
    assert deleted == 3
    assert search.get_index_status("doc1")["indexed"] is False
    assert search.current_doc_id is None

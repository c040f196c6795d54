"""
Semantic search over one document's chunks: embed, search the vector store,
then optionally rerank.
"""

import hashlib
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from ..util.logging import logger
from .embeddings import EmbeddingUnavailableError, IEmbeddingClient, ProgressSink
from .rerank import RerankClient
from .store import VectorStore
from .types import Chunk, ChunkHit

PREVIEW_CHARS = 200


def content_hash(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def _as_chunks(chunks: Sequence[Union[Chunk, Dict[str, Any]]]) -> List[Chunk]:
    return [c if isinstance(c, Chunk) else Chunk.from_dict(c, position=i) for i, c in enumerate(chunks)]


class SemanticVectorSearch:
    """
    Composes an embedding client, per-document vector stores and an optional
    rerank client into query -> ranked chunks.

    Indexing errors propagate to the caller; query errors degrade to an empty
    result list.
    """

    def __init__(self, embedding_client: Optional[IEmbeddingClient],
                 rerank_client: Optional[RerankClient] = None,
                 store_factory: Callable[[str], VectorStore] = None,
                 db_path: str = None):
        self.embedding_client = embedding_client
        self.rerank_client = rerank_client
        self.store_factory = store_factory or (lambda namespace: VectorStore(namespace, db_path=db_path))
        self.indexed_docs: Set[str] = set()
        self.current_doc_id: Optional[str] = None
        self._stores: Dict[str, VectorStore] = {}
        self._ready = False

    def init(self) -> bool:
        """Check that the embedding collaborator can be used. Never raises."""
        if self._ready:
            return True
        if self.embedding_client is None:
            return False
        try:
            self._ready = bool(self.embedding_client.is_ready())
        except Exception as e:
            logger.warning(f"Embedding readiness check failed: {e}")
            self._ready = False
        return self._ready

    def get_store(self, doc_id: str) -> VectorStore:
        """Vector store for a document's namespace, created on first use."""
        if doc_id not in self._stores:
            self._stores[doc_id] = self.store_factory(doc_id)
        return self._stores[doc_id]

    def _is_current(self, store: VectorStore, chunks: List[Chunk]) -> bool:
        if store.count() != len(chunks):
            return False
        stored = {r.metadata.get("chunkId"): r.metadata.get("contentHash") for r in store.records()}
        return stored == {c.chunk_id: content_hash(c.text) for c in chunks}

    def index_chunks(self, chunks: Sequence[Union[Chunk, Dict[str, Any]]], doc_id: str,
                     force_rebuild: bool = False, on_progress: Optional[ProgressSink] = None) -> Dict[str, Any]:
        """
        Embed and persist a document's chunks.

        An index whose chunk ids and content hashes match the given chunks is
        reused unless force_rebuild is set. Otherwise old records are dropped,
        all texts are batch-embedded and the memory index is reloaded.

        Returns:
            {"doc_id", "count", "cached", "failed"}

        Raises:
            EmbeddingUnavailableError: if the embedding client is not ready
            EmbeddingConfigError / EmbeddingRequestError: from the embedding client
        """
        if not self.init():
            raise EmbeddingUnavailableError("Embedding client is not configured or disabled")

        chunk_list = _as_chunks(chunks)
        store = self.get_store(doc_id)

        if not force_rebuild and chunk_list and self._is_current(store, chunk_list):
            self.indexed_docs.add(doc_id)
            self.current_doc_id = doc_id
            logger.log_vector_operation("index", doc_id, {"count": len(chunk_list)}, status="cached")
            return {"doc_id": doc_id, "count": len(chunk_list), "cached": True, "failed": 0}

        if store.count():
            store.delete_by_doc_id(doc_id)

        vectors = self.embedding_client.batch_embed([c.text for c in chunk_list], on_progress=on_progress)

        items = []
        failed = 0
        for chunk, vector in zip(chunk_list, vectors):
            if vector is None:
                failed += 1
                continue
            items.append({
                "id": chunk.chunk_id,
                "vector": vector,
                "metadata": {
                    "docId": doc_id,
                    "chunkId": chunk.chunk_id,
                    "belongsToGroup": chunk.belongs_to_group,
                    "position": chunk.position,
                    "charCount": chunk.char_count,
                    "text": chunk.text[:PREVIEW_CHARS],
                    "contentHash": content_hash(chunk.text),
                },
            })

        store.batch_upsert(items)
        store.load_memory_index()
        self.indexed_docs.add(doc_id)
        self.current_doc_id = doc_id

        status = "success" if not failed else "degraded"
        logger.log_vector_operation("index", doc_id, {"count": len(items), "failed": failed}, status=status)
        return {"doc_id": doc_id, "count": len(items), "cached": False, "failed": failed}

    def search(self, query: str, chunks: Sequence[Union[Chunk, Dict[str, Any]]],
               top_k: int = 10, threshold: float = 0.3, doc_id: str = None) -> List[ChunkHit]:
        """
        Return the caller's chunks most similar to the query.

        Results below threshold are dropped. When the rerank client is enabled
        for vector search, hits are reordered by relevance score; a failed
        rerank keeps the similarity order.
        """
        if not self.init():
            logger.warning("Semantic search requested but embedding is not ready")
            return []

        doc_id = doc_id or self.current_doc_id
        if doc_id is None:
            return []

        try:
            store = self.get_store(doc_id)
            if store.count() == 0:
                logger.warning(f"Vector index for {doc_id} is empty")
                return []

            query_vector = self.embedding_client.embed(query)
            results = store.search(query_vector, top_k=top_k)
            chunk_map = {c.chunk_id: c for c in _as_chunks(chunks)}

            hits = []
            for result in results:
                if result.score < threshold:
                    continue
                chunk = chunk_map.get(result.metadata.get("chunkId", result.id))
                if chunk is not None:
                    hits.append(ChunkHit(chunk=chunk, score=result.score))
            hits = hits[:top_k]
        except Exception as e:
            logger.log_vector_operation("search", doc_id, {"error": str(e)}, status="failed")
            return []

        if hits and self.rerank_client is not None and self.rerank_client.should_rerank("vector"):
            try:
                reranked = self.rerank_client.rerank(
                    query, [h.chunk.text for h in hits], top_n=top_k, search_type="vector"
                )
                return [
                    ChunkHit(
                        chunk=hits[r.index].chunk,
                        score=r.relevance_score,
                        original_score=hits[r.index].score,
                        rerank_score=r.relevance_score,
                    )
                    for r in reranked
                ]
            except Exception as e:
                logger.log_rerank("vector", len(hits), status="degraded", details={"error": str(e)})

        return hits

    def delete_index(self, doc_id: str) -> int:
        """Remove a document's vectors."""
        deleted = self.get_store(doc_id).delete_by_doc_id(doc_id)
        self.indexed_docs.discard(doc_id)
        if self.current_doc_id == doc_id:
            self.current_doc_id = None
        return deleted

    def get_index_status(self, doc_id: str) -> Dict[str, Any]:
        """Whether a document is indexed, with record count, dimensions and size in KB."""
        stats = self.get_store(doc_id).stats()
        return {
            "indexed": stats["count"] > 0,
            "count": stats["count"],
            "dimensions": stats["dimensions"],
            "size_kb": round(stats["approx_size_bytes"] / 1024, 2),
        }

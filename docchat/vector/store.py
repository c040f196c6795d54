"""
Namespaced persistent vector store with brute-force cosine search.

Records are written through to SQLite; searches run against an in-memory
index of the whole namespace. The index is rebuilt explicitly with
load_memory_index() and is not refreshed by upserts.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Union
import numpy as np

from ..core.db import get_db, init_db
from ..util.logging import logger
from .types import VectorRecord, SearchResult


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors. Zero-norm vectors score 0."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimension mismatch: {a.shape[0]} vs {b.shape[0]}")

    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    # Clip float error so identical vectors never exceed 1
    return float(np.clip(np.dot(a, b) / denominator, -1.0, 1.0))


class IVectorStore(ABC):
    """Abstract interface for namespaced vector storage."""

    @abstractmethod
    def upsert(self, item_id: str, vector, metadata: Dict[str, Any] = None) -> None:
        """Insert or overwrite a single record."""
        pass

    @abstractmethod
    def batch_upsert(self, items: Iterable[Union[VectorRecord, Dict[str, Any]]]) -> int:
        """Insert or overwrite several records in one transaction."""
        pass

    @abstractmethod
    def load_memory_index(self) -> int:
        """Load every record of the namespace into memory."""
        pass

    @abstractmethod
    def search(self, query_vector, top_k: int = 5, doc_id: Optional[str] = None) -> List[SearchResult]:
        """Search for similar vectors and return ranked results."""
        pass

    @abstractmethod
    def delete_by_doc_id(self, doc_id: str) -> int:
        """Delete every record belonging to a document."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records of the namespace."""
        pass


class VectorStore(IVectorStore):
    """SQLite-backed implementation of IVectorStore for one namespace."""

    def __init__(self, namespace: str, db_path: str = None):
        if not namespace:
            raise ValueError("namespace cannot be empty")
        self.namespace = namespace
        self.db_path = db_path
        self._memory_index: Optional[List[VectorRecord]] = None
        init_db(self.db_path)

    def _full_id(self, item_id: str) -> str:
        return f"{self.namespace}:{item_id}"

    def _strip_id(self, full_id: str) -> str:
        prefix = f"{self.namespace}:"
        return full_id[len(prefix):] if full_id.startswith(prefix) else full_id

    def _stored_dimension(self, conn) -> Optional[int]:
        row = conn.execute(
            "SELECT vector FROM vectors WHERE namespace = ? LIMIT 1", (self.namespace,)
        ).fetchone()
        if row is None:
            return None
        return len(json.loads(row[0]))

    def _normalize_item(self, item: Union[VectorRecord, Dict[str, Any]]) -> VectorRecord:
        if isinstance(item, VectorRecord):
            return item
        return VectorRecord(
            id=str(item["id"]),
            vector=item.get("vector"),
            metadata=item.get("metadata") or {},
        )

    def upsert(self, item_id: str, vector, metadata: Dict[str, Any] = None) -> None:
        """Insert or overwrite a single record. The memory index is not refreshed."""
        self.batch_upsert([VectorRecord(id=item_id, vector=vector, metadata=metadata or {})])

    def batch_upsert(self, items: Iterable[Union[VectorRecord, Dict[str, Any]]]) -> int:
        """
        Write records through to SQLite in one transaction.

        Args:
            items: VectorRecord objects or {"id", "vector", "metadata"} dicts

        Returns:
            Number of records written

        Raises:
            ValueError: if a vector is missing or its dimension differs from the namespace's
        """
        records = [self._normalize_item(item) for item in items]
        if not records:
            return 0

        now = time.time()
        with get_db(self.db_path) as conn:
            dimension = self._stored_dimension(conn)
            rows = []
            for record in records:
                if record.vector is None:
                    raise ValueError(f"Record {record.id} has no vector")
                vector = [float(x) for x in np.asarray(record.vector).ravel()]
                if dimension is None:
                    dimension = len(vector)
                elif len(vector) != dimension:
                    raise ValueError(
                        f"Vector dimension mismatch for {record.id}: expected {dimension}, got {len(vector)}"
                    )
                doc_id = str(record.metadata.get("docId") or record.doc_id or self.namespace)
                rows.append((
                    self.namespace,
                    self._full_id(record.id),
                    doc_id,
                    json.dumps(vector),
                    json.dumps(record.metadata, ensure_ascii=False),
                    now,
                ))

            conn.executemany(
                '''
                INSERT OR REPLACE INTO vectors (namespace, id, doc_id, vector, metadata, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                ''',
                rows,
            )
            conn.commit()

        logger.log_vector_operation("upsert", self.namespace, {"count": len(rows)})
        return len(rows)

    def load_memory_index(self) -> int:
        """Load all records of the namespace into memory; returns the record count."""
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, doc_id, vector, metadata, timestamp FROM vectors WHERE namespace = ? ORDER BY rowid",
                (self.namespace,),
            ).fetchall()

        self._memory_index = [
            VectorRecord(
                id=row[0],
                vector=np.array(json.loads(row[2]), dtype=np.float64),
                metadata=json.loads(row[3]) if row[3] else {},
                namespace=self.namespace,
                doc_id=row[1],
                inserted_at=row[4],
            )
            for row in rows
        ]

        logger.log_vector_operation("load_index", self.namespace, {"count": len(self._memory_index)})
        return len(self._memory_index)

    def search(self, query_vector, top_k: int = 5, doc_id: Optional[str] = None,
               include_vectors: bool = False) -> List[SearchResult]:
        """
        Rank cached records by cosine similarity to the query.

        Loads the memory index if it has never been loaded or was invalidated.
        Results are sorted descending by score (stable for ties) and sliced to top_k.

        Raises:
            ValueError: if the query dimension differs from a stored vector's
        """
        if self._memory_index is None:
            self.load_memory_index()

        query = np.asarray(query_vector, dtype=np.float64)
        scored = []
        for record in self._memory_index:
            if doc_id is not None and record.metadata.get("docId", record.doc_id) != doc_id:
                continue
            scored.append((cosine_similarity(query, record.vector), record))

        scored.sort(key=lambda pair: pair[0], reverse=True)

        return [
            SearchResult(
                id=self._strip_id(record.id),
                score=score,
                metadata=record.metadata,
                vector=record.vector if include_vectors else None,
            )
            for score, record in scored[:max(0, top_k)]
        ]

    def records(self) -> List[VectorRecord]:
        """Records in the memory index, loading it first if needed."""
        if self._memory_index is None:
            self.load_memory_index()
        return list(self._memory_index)

    def get(self, item_id: str) -> Optional[VectorRecord]:
        """Read one record straight from storage."""
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, doc_id, vector, metadata, timestamp FROM vectors WHERE namespace = ? AND id = ?",
                (self.namespace, self._full_id(item_id)),
            ).fetchone()

        if row is None:
            return None
        return VectorRecord(
            id=self._strip_id(row[0]),
            vector=np.array(json.loads(row[2]), dtype=np.float64),
            metadata=json.loads(row[3]) if row[3] else {},
            namespace=self.namespace,
            doc_id=row[1],
            inserted_at=row[4],
        )

    def count(self) -> int:
        """Number of persisted records in the namespace."""
        with get_db(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM vectors WHERE namespace = ?", (self.namespace,)
            ).fetchone()[0]

    def delete_by_doc_id(self, doc_id: str) -> int:
        """Delete a document's records and invalidate the memory index."""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM vectors WHERE namespace = ? AND doc_id = ?", (self.namespace, doc_id)
            )
            conn.commit()
            deleted = cursor.rowcount

        self._memory_index = None
        logger.log_vector_operation("delete_by_doc", self.namespace, {"doc_id": doc_id, "deleted": deleted})
        return deleted

    def clear(self) -> None:
        """Clear all records of the namespace and invalidate the memory index."""
        with get_db(self.db_path) as conn:
            conn.execute("DELETE FROM vectors WHERE namespace = ?", (self.namespace,))
            conn.commit()

        self._memory_index = None
        logger.log_vector_operation("clear", self.namespace)

    def stats(self) -> Dict[str, Any]:
        """Record count, vector dimensionality and approximate serialized size in bytes."""
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, vector, metadata FROM vectors WHERE namespace = ?", (self.namespace,)
            ).fetchall()

        dimensions = len(json.loads(rows[0][1])) if rows else 0
        approx_size = sum(len(r[0]) + len(r[1]) + len(r[2] or "") for r in rows)
        return {
            "namespace": self.namespace,
            "count": len(rows),
            "dimensions": dimensions,
            "approx_size_bytes": approx_size,
        }

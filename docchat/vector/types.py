"""
Records and results shared by the vector store, search and granularity layers.
"""

from typing import Any, Dict, List, Optional
import numpy as np
from dataclasses import dataclass, field


@dataclass
class VectorRecord:
    """Represents a persisted vector record with metadata."""

    id: str
    """Item identifier within the namespace (stored as namespace:id)"""

    vector: Optional[np.ndarray]
    """The embedding of the item"""

    metadata: Dict[str, Any]
    """Additional metadata associated with the vector"""

    namespace: str = ""
    """Logical partition, one per document"""

    doc_id: str = ""
    """Owning document; defaults to the namespace"""

    inserted_at: float = 0.0
    """Unix timestamp of the last write"""


@dataclass
class SearchResult:
    """Represents a search result from the vector store."""

    id: str
    """Identifier for the matching record, namespace prefix stripped"""

    score: float
    """Cosine similarity of the match (-1 to 1)"""

    metadata: Dict[str, Any]
    """Metadata associated with the matched record"""

    vector: Optional[np.ndarray] = None
    """The stored vector, only populated on request"""


@dataclass
class RerankResult:
    """One reordered candidate; index points into the submitted documents."""

    index: int
    relevance_score: float


@dataclass
class Chunk:
    """A caller-supplied text chunk of a document."""

    chunk_id: str
    text: str
    char_count: int = 0
    belongs_to_group: Optional[str] = None
    position: int = 0

    def __post_init__(self):
        if not self.char_count:
            self.char_count = len(self.text or "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> "Chunk":
        chunk_id = data.get("chunkId", data.get("chunk_id", data.get("id")))
        if chunk_id is None:
            raise ValueError("chunk is missing chunkId")
        return cls(
            chunk_id=str(chunk_id),
            text=data.get("text", "") or "",
            char_count=data.get("charCount", data.get("char_count", 0)) or 0,
            belongs_to_group=data.get("belongsToGroup", data.get("belongs_to_group")),
            position=data.get("position", position),
        )


@dataclass
class RetrievalUnit:
    """A semantic group with three nested detail levels: summary, digest and full text."""

    id: str
    summary: str = ""
    digest: str = ""
    full_text: str = ""
    keywords: List[str] = field(default_factory=list)
    char_count: int = 0
    belongs_to_group: Optional[str] = None

    def __post_init__(self):
        if not self.char_count:
            self.char_count = len(self.full_text or "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrievalUnit":
        unit_id = data.get("groupId", data.get("group_id", data.get("id")))
        if unit_id is None:
            raise ValueError("group is missing groupId")
        return cls(
            id=str(unit_id),
            summary=data.get("summary", "") or "",
            digest=data.get("digest", "") or "",
            full_text=data.get("fullText", data.get("full_text", "")) or "",
            keywords=list(data.get("keywords") or []),
            char_count=data.get("charCount", data.get("char_count", 0)) or 0,
            belongs_to_group=data.get("belongsToGroup", data.get("belongs_to_group")),
        )

    def has_level(self, granularity: str) -> bool:
        """Whether the unit carries its own text at this detail level."""
        if granularity == "full":
            return bool(self.full_text)
        if granularity == "digest":
            return bool(self.digest)
        return bool(self.summary)

    def effective_granularity(self, granularity: str) -> str:
        """Level actually shown for a request: full falls back to digest, digest to summary."""
        if granularity == "full" and not self.full_text:
            granularity = "digest"
        if granularity == "digest" and not self.digest:
            granularity = "summary"
        return granularity

    def text_for(self, granularity: str) -> str:
        """Text revealed at the given detail level, falling back to the next lower level."""
        granularity = self.effective_granularity(granularity)
        if granularity == "full":
            return self.full_text
        if granularity == "digest":
            return self.digest
        return self.summary


@dataclass
class ChunkHit:
    """A chunk rehydrated from a vector or lexical match."""

    chunk: Chunk
    score: float
    original_score: Optional[float] = None
    """Similarity score before reranking, set only when a rerank happened"""

    rerank_score: Optional[float] = None

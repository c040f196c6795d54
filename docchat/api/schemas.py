"""
Request and response models for the document retrieval API.
"""

from pydantic import BaseModel, field_validator
from typing import List, Optional

from ..vector.types import Chunk, RetrievalUnit


class ChunkIn(BaseModel):
    chunk_id: str
    text: str
    char_count: int = 0
    belongs_to_group: Optional[str] = None

    @field_validator('chunk_id')
    @classmethod
    def chunk_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('chunk_id cannot be empty')
        return v

    def to_chunk(self, position: int) -> Chunk:
        return Chunk(
            chunk_id=self.chunk_id,
            text=self.text,
            char_count=self.char_count,
            belongs_to_group=self.belongs_to_group,
            position=position,
        )


class GroupIn(BaseModel):
    group_id: str
    summary: str = ""
    digest: str = ""
    full_text: str = ""
    keywords: List[str] = []
    char_count: int = 0

    @field_validator('group_id')
    @classmethod
    def group_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('group_id cannot be empty')
        return v

    def to_unit(self) -> RetrievalUnit:
        return RetrievalUnit(
            id=self.group_id,
            summary=self.summary,
            digest=self.digest,
            full_text=self.full_text,
            keywords=list(self.keywords),
            char_count=self.char_count,
        )


class DocumentRegisterRequest(BaseModel):
    name: Optional[str] = None
    page_count: Optional[int] = None
    language: Optional[str] = None
    chunks: List[ChunkIn]
    groups: List[GroupIn] = []
    force_rebuild: bool = False

    @field_validator('chunks')
    @classmethod
    def chunks_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('chunks cannot be empty')
        return v


class IndexResponse(BaseModel):
    doc_id: str
    count: int
    cached: bool
    failed: int
    vector: bool


class IndexStatusResponse(BaseModel):
    indexed: bool
    count: int
    dimensions: int
    size_kb: float


class SearchRequest(BaseModel):
    query: str
    top_k: int = 10
    threshold: float = 0.3

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v

    @field_validator('top_k')
    @classmethod
    def top_k_must_be_in_range(cls, v):
        if not 1 <= v <= 50:
            raise ValueError('top_k must be between 1 and 50')
        return v

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_in_range(cls, v):
        if not -1.0 <= v <= 1.0:
            raise ValueError('threshold must be between -1 and 1')
        return v


class SearchHit(BaseModel):
    chunk_id: str
    text: str
    score: float
    original_score: Optional[float] = None
    rerank_score: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    results: List[SearchHit]


class AskRequest(BaseModel):
    question: str

    @field_validator('question')
    @classmethod
    def question_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('question cannot be empty')
        return v


class AskResponse(BaseModel):
    answer: Optional[str] = None
    aborted: bool = False
    steps: int = 0


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    documents: int

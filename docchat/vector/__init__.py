"""
Vector retrieval: namespaced store, embedding and rerank clients, semantic and lexical search.
"""

from .types import VectorRecord, SearchResult, RerankResult, Chunk, RetrievalUnit, ChunkHit
from .store import IVectorStore, VectorStore, cosine_similarity
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    IEmbeddingClient,
    EmbeddingsService,
    HttpEmbeddingClient,
    EmbeddingConfigError,
    EmbeddingRequestError,
    EmbeddingUnavailableError,
)
from .rerank import RerankClient
from .semantic_search import SemanticVectorSearch
from .bm25 import BM25Search

__all__ = [
    'VectorRecord',
    'SearchResult',
    'RerankResult',
    'Chunk',
    'RetrievalUnit',
    'ChunkHit',
    'IVectorStore',
    'VectorStore',
    'cosine_similarity',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'IEmbeddingClient',
    'EmbeddingsService',
    'HttpEmbeddingClient',
    'EmbeddingConfigError',
    'EmbeddingRequestError',
    'EmbeddingUnavailableError',
    'RerankClient',
    'SemanticVectorSearch',
    'BM25Search',
]

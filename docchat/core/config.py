"""
Environment-driven configuration and collaborator factories.
"""

import os
from pathlib import Path

# Database path configuration
DB_PATH = os.getenv("DOCCHAT_DB_PATH", "./data/vectors.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Embedding collaborator
EMBEDDING_ENABLED = os.getenv("EMBEDDING_ENABLED", "true").lower() == "true"
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "http")  # http|hash|sentence-transformers
EMBEDDING_API_KEY = os.getenv("EMBEDDING_API_KEY")
EMBEDDING_ENDPOINT = os.getenv("EMBEDDING_ENDPOINT", "https://api.openai.com/v1/embeddings")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
EMBEDDING_MAX_BATCH_TOKENS = int(os.getenv("EMBEDDING_MAX_BATCH_TOKENS", "2048"))
LOCAL_EMBED_MODEL = os.getenv("LOCAL_EMBED_MODEL", "all-MiniLM-L6-v2")

# Rerank collaborator (default disabled)
RERANK_ENABLED = os.getenv("RERANK_ENABLED", "false").lower() == "true"
RERANK_SCOPE = os.getenv("RERANK_SCOPE", "vector-only")  # vector-only|all
RERANK_PROVIDER = os.getenv("RERANK_PROVIDER", "jina")  # jina|cohere|openai
RERANK_API_KEY = os.getenv("RERANK_API_KEY")
RERANK_ENDPOINT = os.getenv("RERANK_ENDPOINT")
RERANK_MODEL = os.getenv("RERANK_MODEL", "jina-reranker-v2-base-multilingual")
RERANK_TOP_N = int(os.getenv("RERANK_TOP_N", "10"))

# Reasoning loop
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen2.5:7b")
REACT_MAX_STEPS = int(os.getenv("REACT_MAX_STEPS", "10"))
TOKEN_BUDGET_TOTAL = int(os.getenv("TOKEN_BUDGET_TOTAL", "32000"))


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    db_dir = Path(db_path or DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)


def get_embedding_client():
    """Get configured embedding client. Returns None if embedding is disabled."""
    if not EMBEDDING_ENABLED:
        return None

    if EMBED_PROVIDER == "hash":
        from docchat.vector.embeddings import DeterministicHashEmbedding, EmbeddingsService
        return EmbeddingsService(DeterministicHashEmbedding(dimension=EMBEDDING_DIMENSIONS))
    elif EMBED_PROVIDER == "sentence-transformers":
        from docchat.vector.embeddings import SentenceTransformerEmbedding, EmbeddingsService
        return EmbeddingsService(SentenceTransformerEmbedding(LOCAL_EMBED_MODEL))
    elif EMBED_PROVIDER == "http":
        from docchat.core.schemas import EmbeddingConfig
        from docchat.vector.embeddings import HttpEmbeddingClient
        return HttpEmbeddingClient(EmbeddingConfig(
            api_key=EMBEDDING_API_KEY,
            endpoint=EMBEDDING_ENDPOINT,
            model=EMBEDDING_MODEL,
            dimensions=EMBEDDING_DIMENSIONS,
            max_batch_tokens=EMBEDDING_MAX_BATCH_TOKENS,
            enabled=EMBEDDING_ENABLED,
        ))
    else:
        raise ValueError(f"Unknown embedding provider: {EMBED_PROVIDER}")


def get_rerank_client():
    """Get configured rerank client. Always returns a client; a disabled one falls back to identity order."""
    from docchat.core.schemas import RerankConfig
    from docchat.vector.rerank import RerankClient
    return RerankClient(RerankConfig(
        enabled=RERANK_ENABLED,
        scope=RERANK_SCOPE,
        provider=RERANK_PROVIDER,
        api_key=RERANK_API_KEY,
        endpoint=RERANK_ENDPOINT,
        model=RERANK_MODEL,
        top_n=RERANK_TOP_N,
    ))


def get_vector_store(namespace: str, db_path: str = None):
    """Get a persistent vector store for one document namespace."""
    from docchat.vector.store import VectorStore
    return VectorStore(namespace, db_path=db_path or DB_PATH)


def get_budget_allocation():
    """Token budget allocation scaled from TOKEN_BUDGET_TOTAL."""
    from docchat.core.schemas import BudgetAllocation
    if TOKEN_BUDGET_TOTAL == 32000:
        return BudgetAllocation()
    scale = TOKEN_BUDGET_TOTAL / 32000
    return BudgetAllocation(
        total=TOKEN_BUDGET_TOTAL,
        system=int(2000 * scale),
        history=int(8000 * scale),
        context=int(18000 * scale),
        response=int(4000 * scale),
    )

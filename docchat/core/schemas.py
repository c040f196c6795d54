"""
Validated configuration models for the embedding, rerank and token budget collaborators.
"""

from pydantic import BaseModel, ConfigDict, field_validator
from typing import Optional

RERANK_PROVIDERS = ['jina', 'cohere', 'openai']
RERANK_SCOPES = ['vector-only', 'all']


class EmbeddingConfig(BaseModel):
    provider: str = "openai"
    api_key: Optional[str] = None
    endpoint: str = "https://api.openai.com/v1/embeddings"
    model: str = "text-embedding-3-small"
    dimensions: Optional[int] = None
    max_batch_tokens: int = 2048
    enabled: bool = True
    timeout_sec: float = 30.0

    @field_validator('endpoint')
    @classmethod
    def endpoint_strip_slash(cls, v):
        return v.strip().rstrip('/')

    @field_validator('dimensions')
    @classmethod
    def dimensions_must_be_positive(cls, v):
        if v is not None and v <= 0:
            raise ValueError('dimensions must be positive')
        return v

    @field_validator('max_batch_tokens')
    @classmethod
    def batch_tokens_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('max_batch_tokens must be positive')
        return v


class RerankConfig(BaseModel):
    enabled: bool = False
    scope: str = "vector-only"
    provider: str = "jina"
    api_key: Optional[str] = None
    endpoint: Optional[str] = None
    model: str = "jina-reranker-v2-base-multilingual"
    top_n: int = 10
    timeout_sec: float = 15.0

    @field_validator('scope')
    @classmethod
    def scope_must_be_valid(cls, v):
        if v not in RERANK_SCOPES:
            raise ValueError(f'scope must be one of: {RERANK_SCOPES}')
        return v

    @field_validator('provider')
    @classmethod
    def provider_must_be_valid(cls, v):
        if v not in RERANK_PROVIDERS:
            raise ValueError(f'provider must be one of: {RERANK_PROVIDERS}')
        return v

    @field_validator('top_n')
    @classmethod
    def top_n_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('top_n must be positive')
        return v


class BudgetAllocation(BaseModel):
    """Per-bucket token allocation. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    total: int = 32000
    system: int = 2000
    history: int = 8000
    context: int = 18000
    response: int = 4000

    @field_validator('total', 'system', 'history', 'context', 'response')
    @classmethod
    def allocation_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('allocation cannot be negative')
        return v

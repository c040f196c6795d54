"""
Optional external reranking of candidate lists.

Every path that cannot produce a real rerank (disabled, unconfigured, out of
scope, provider failure) returns the identity order with synthetic,
strictly descending scores, so callers never branch on whether a rerank
actually happened.
"""

from typing import Any, Dict, List, Optional, Union
import requests

from ..core.schemas import RerankConfig
from ..util.logging import logger
from .types import RerankResult

DEFAULT_ENDPOINTS = {
    "jina": "https://api.jina.ai/v1/rerank",
    "cohere": "https://api.cohere.ai/v1/rerank",
    "openai": None,  # OpenAI-compatible gateways must supply their own endpoint
}


def identity_order(count: int) -> List[RerankResult]:
    """Original order with scores 1.0, 0.99, 0.98, ..."""
    return [RerankResult(index=i, relevance_score=round(1.0 - i * 0.01, 6)) for i in range(count)]


def _document_text(document: Union[str, Dict[str, Any]]) -> str:
    if isinstance(document, str):
        return document
    if isinstance(document, dict):
        return str(document.get("text") or document.get("content") or "")
    return str(getattr(document, "text", "") or "")


class RerankClient:
    """Dispatches rerank requests to one configured provider."""

    def __init__(self, config: RerankConfig = None, session: requests.Session = None):
        self.config = config or RerankConfig()
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> Optional[str]:
        return self.config.endpoint or DEFAULT_ENDPOINTS.get(self.config.provider)

    def is_configured(self) -> bool:
        return bool(self.config.api_key and self.endpoint)

    def should_rerank(self, search_type: str = "vector") -> bool:
        """Whether results of this search type should be reranked."""
        if not self.config.enabled:
            return False
        if self.config.scope == "all":
            return True
        return search_type == "vector"

    def _build_request(self, query: str, documents: List[str], top_n: int) -> Dict[str, Any]:
        # jina, cohere and OpenAI-compatible gateways share the same request shape
        return {
            "url": self.endpoint,
            "json": {
                "model": self.config.model,
                "query": query,
                "documents": documents,
                "top_n": top_n,
            },
            "headers": {
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
        }

    @staticmethod
    def _parse_results(payload: Any, document_count: int) -> List[RerankResult]:
        if not isinstance(payload, dict):
            raise ValueError(f"Rerank response is not an object: {type(payload).__name__}")
        items = payload.get("results") or []
        if not isinstance(items, list):
            raise ValueError("Rerank results is not a list")
        results = []
        for item in items:
            if not isinstance(item, dict):
                raise ValueError(f"Rerank result is not an object: {item!r}")
            index = int(item["index"])
            if not 0 <= index < document_count:
                raise ValueError(f"Rerank index out of range: {index}")
            results.append(RerankResult(index=index, relevance_score=float(item["relevance_score"])))
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def rerank(self, query: str, documents: List[Union[str, Dict[str, Any]]],
               top_n: int = None, search_type: str = "vector") -> List[RerankResult]:
        """
        Reorder documents by relevance to the query.

        Args:
            query: The user query
            documents: Strings, or dicts carrying "text" or "content"
            top_n: Maximum results requested from the provider
            search_type: Search family the candidates came from ("vector", "keyword", ...)

        Returns:
            RerankResult list; never raises
        """
        if not documents:
            return []
        if not query or not self.should_rerank(search_type) or not self.is_configured():
            return identity_order(len(documents))

        texts = [_document_text(d) for d in documents]
        top_n = min(top_n or self.config.top_n, len(texts))
        request = self._build_request(query, texts, top_n)

        try:
            response = self.session.post(timeout=self.config.timeout_sec, **request)
            response.raise_for_status()
            results = self._parse_results(response.json(), len(texts))
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.log_rerank(self.config.provider, len(texts), status="degraded", details={"error": str(e)})
            return identity_order(len(documents))

        if not results:
            logger.log_rerank(self.config.provider, len(texts), status="degraded", details={"error": "empty results"})
            return identity_order(len(documents))

        logger.log_rerank(self.config.provider, len(texts), details={"returned": len(results)})
        return results

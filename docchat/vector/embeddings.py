"""
Embedding collaborators: local providers for offline use and an
OpenAI-compatible HTTP client with batched, retried requests.
"""

from abc import ABC, abstractmethod
import hashlib
import math
import random
import time
from typing import Callable, Dict, List, Optional, Union
import numpy as np
import requests

from ..core.schemas import EmbeddingConfig
from ..util.logging import logger

# Retry policy for the batch path
_MAX_RETRIES = 3
_INITIAL_DELAY = 0.6   # seconds
_MAX_DELAY = 5.0
_MAX_JITTER = 0.25
_RETRY_STATUSES = {401, 403, 408, 429}

ProgressSink = Callable[[int, int, str], None]


class EmbeddingConfigError(ValueError):
    """Raised when a required embedding setting (key, endpoint, model) is missing."""


class EmbeddingRequestError(RuntimeError):
    """Raised when the embedding endpoint rejects a request or retries are exhausted."""


class EmbeddingUnavailableError(RuntimeError):
    """Raised when indexing is requested while no embedding collaborator is ready."""


class IEmbeddingProvider(ABC):
    """Abstract interface for local embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Identical texts always map to identical vectors, so an exact-text query
    scores 1.0 against its own record without any model dependency.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = []
        counter = 0
        # Chain digests until the vector is long enough
        while len(vector) < self.dimension:
            hex_dig = hashlib.md5(f"{counter}:{text}".encode()).hexdigest()
            for i in range(0, len(hex_dig), 8):
                value = int(hex_dig[i:i + 8], 16)
                # Map to [-1, 1] for cosine similarity
                vector.append((value / (2**32)) * 2 - 1)
            counter += 1

        return vector[:self.dimension]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class IEmbeddingClient(ABC):
    """What semantic search needs from an embedding collaborator."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether embed calls can be made at all."""
        pass

    @abstractmethod
    def embed(self, text: Union[str, List[str]]) -> Union[List[float], List[List[float]]]:
        """Embed one text or a list of texts."""
        pass

    @abstractmethod
    def batch_embed(self, texts: List[str], on_progress: Optional[ProgressSink] = None) -> List[Optional[List[float]]]:
        """Embed many texts; failed items are None, aligned with the input positions."""
        pass


class EmbeddingsService(IEmbeddingClient):
    """Embedding client backed by a local IEmbeddingProvider."""

    def __init__(self, provider: IEmbeddingProvider = None):
        self.provider = provider or SentenceTransformerEmbedding()

    def is_ready(self) -> bool:
        return True

    def embed(self, text):
        if isinstance(text, str):
            return self.provider.embed_text(text)
        return [self.provider.embed_text(t) for t in text]

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """
        Embed multiple texts into vectors.

        Returns:
            Numpy array of shape (len(texts), embedding_dim)
        """
        return np.array([self.provider.embed_text(t) for t in texts])

    def batch_embed(self, texts, on_progress=None):
        vectors = []
        for i, text in enumerate(texts):
            vectors.append(self.provider.embed_text(text))
            if on_progress:
                on_progress(i + 1, len(texts), f"Embedded {i + 1}/{len(texts)}")
        return vectors


def estimate_batch_tokens(text: str) -> int:
    """Rough per-text token estimate used to size batches."""
    return math.ceil(len(text or "") * 1.5)


class HttpEmbeddingClient(IEmbeddingClient):
    """OpenAI-compatible /embeddings client."""

    def __init__(self, config: EmbeddingConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        self._cache: Dict[str, List[float]] = {}

    @property
    def url(self) -> str:
        endpoint = self.config.endpoint
        if not endpoint.endswith("/embeddings"):
            endpoint = f"{endpoint}/embeddings"
        return endpoint

    def is_ready(self) -> bool:
        return bool(self.config.enabled and self.config.api_key and self.config.endpoint and self.config.model)

    def _require_config(self):
        missing = [name for name in ("api_key", "endpoint", "model") if not getattr(self.config, name)]
        if missing:
            raise EmbeddingConfigError(f"Embedding config incomplete, missing: {', '.join(missing)}")

    def _cache_key(self, text: str) -> str:
        return f"{self.config.model}:{hashlib.sha1(text.encode('utf-8')).hexdigest()}"

    def _post(self, inputs: List[str]) -> requests.Response:
        payload = {"model": self.config.model, "input": inputs}
        if self.config.dimensions:
            payload["dimensions"] = self.config.dimensions
        return self.session.post(
            self.url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout_sec,
        )

    @staticmethod
    def _parse(response: requests.Response, expected: int) -> List[List[float]]:
        data = response.json().get("data") or []
        if len(data) != expected:
            raise EmbeddingRequestError(f"Expected {expected} embeddings, got {len(data)}")
        # Providers may return items out of order; honor their index when present
        ordered = sorted(data, key=lambda item: item.get("index", 0)) if all("index" in d for d in data) else data
        return [item["embedding"] for item in ordered]

    def _request_with_retry(self, inputs: List[str]) -> List[List[float]]:
        """POST one batch, retrying transient failures with exponential backoff and jitter."""
        for attempt in range(_MAX_RETRIES + 1):
            try:
                response = self._post(inputs)
            except requests.RequestException as e:
                if attempt < _MAX_RETRIES:
                    delay = min(_MAX_DELAY, _INITIAL_DELAY * (2 ** attempt)) + random.uniform(0, _MAX_JITTER)
                    logger.log_operation("embedding.request", "retry", {
                        "attempt": attempt + 1, "delay_sec": round(delay, 2), "error": str(e),
                    })
                    time.sleep(delay)
                    continue
                raise EmbeddingRequestError(f"Embedding request failed after {attempt + 1} attempts: {e}") from e

            status = response.status_code
            if (status in _RETRY_STATUSES or status >= 500) and attempt < _MAX_RETRIES:
                delay = min(_MAX_DELAY, _INITIAL_DELAY * (2 ** attempt)) + random.uniform(0, _MAX_JITTER)
                logger.log_operation("embedding.request", "retry", {
                    "attempt": attempt + 1, "delay_sec": round(delay, 2), "status": status,
                })
                time.sleep(delay)
                continue

            if not response.ok:
                raise EmbeddingRequestError(f"Embedding request failed with HTTP {status}: {response.text[:200]}")
            try:
                return self._parse(response, len(inputs))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise EmbeddingRequestError(f"Malformed embedding response: {e}") from e

        # Unreachable: the last attempt either returns or raises
        raise EmbeddingRequestError("Embedding retries exhausted")

    def embed(self, text):
        """
        Embed one text or a list of texts in a single request, without retry.

        Raises:
            EmbeddingConfigError: if key, endpoint or model is missing
            EmbeddingRequestError: if the endpoint fails
        """
        self._require_config()
        single = isinstance(text, str)
        texts = [text] if single else list(text)

        missing = [t for t in texts if self._cache_key(t) not in self._cache]
        if missing:
            try:
                response = self._post(missing)
            except requests.RequestException as e:
                raise EmbeddingRequestError(f"Embedding request failed: {e}") from e
            if not response.ok:
                raise EmbeddingRequestError(f"Embedding request failed with HTTP {response.status_code}")
            try:
                parsed = self._parse(response, len(missing))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise EmbeddingRequestError(f"Malformed embedding response: {e}") from e
            for t, vector in zip(missing, parsed):
                self._cache[self._cache_key(t)] = vector

        vectors = [self._cache[self._cache_key(t)] for t in texts]
        return vectors[0] if single else vectors

    def _split_batches(self, texts: List[str]) -> List[List[int]]:
        batches, current, current_tokens = [], [], 0
        for i, text in enumerate(texts):
            tokens = estimate_batch_tokens(text)
            if current and current_tokens + tokens > self.config.max_batch_tokens:
                batches.append(current)
                current, current_tokens = [], 0
            current.append(i)
            current_tokens += tokens
        if current:
            batches.append(current)
        return batches

    def batch_embed(self, texts, on_progress=None):
        """
        Embed many texts in token-bounded batches.

        A batch that still fails after its retries yields None for each of its
        items; other batches are unaffected.

        Raises:
            EmbeddingConfigError: if key, endpoint or model is missing
        """
        self._require_config()
        results: List[Optional[List[float]]] = [None] * len(texts)
        batches = self._split_batches(texts)
        completed = 0

        for batch_index, positions in enumerate(batches):
            inputs = [texts[i] for i in positions]
            try:
                vectors = self._request_with_retry(inputs)
                for i, vector in zip(positions, vectors):
                    results[i] = vector
                    self._cache[self._cache_key(texts[i])] = vector
                logger.log_embedding_batch(batch_index, len(batches), len(inputs))
            except EmbeddingRequestError as e:
                logger.log_embedding_batch(batch_index, len(batches), len(inputs), status="failed",
                                           details={"error": str(e)})

            completed += len(positions)
            if on_progress:
                on_progress(completed, len(texts), f"Batch {batch_index + 1}/{len(batches)}")

        return results

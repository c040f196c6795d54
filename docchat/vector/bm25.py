"""
BM25 lexical search over document chunks, with CJK-aware tokenization.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence

from ..util.logging import logger
from .types import Chunk, ChunkHit

_PUNCTUATION = re.compile(r'[^\w\s]|_', re.UNICODE)
_CJK_RUN = re.compile(r'[\u4e00-\u9fa5]+')
_LATIN_WORD = re.compile(r'[a-z]+')
_NUMBER = re.compile(r'\d+(?:\.\d+)?')


def tokenize(text: str) -> List[str]:
    """Split text into CJK unigrams and bigrams, lowercase Latin words and numbers."""
    if not text:
        return []
    cleaned = _PUNCTUATION.sub(" ", text.lower())

    tokens = []
    for run in _CJK_RUN.findall(cleaned):
        tokens.extend(run)
        tokens.extend(run[i:i + 2] for i in range(len(run) - 1))
    tokens.extend(_LATIN_WORD.findall(cleaned))
    tokens.extend(_NUMBER.findall(cleaned))
    return tokens


@dataclass
class BM25Hit:
    id: str
    score: float
    summary: str


class BM25Search:
    """Okapi BM25 index over one document's chunks."""

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        self.k1 = k1
        self.b = b
        self._doc_terms: Dict[str, Counter] = {}
        self._doc_lengths: Dict[str, int] = {}
        self._summaries: Dict[str, str] = {}
        self._df: Counter = Counter()
        self._avg_length = 0.0

    @property
    def size(self) -> int:
        return len(self._doc_terms)

    def index_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Rebuild the index from scratch; returns the number of indexed chunks."""
        self._doc_terms.clear()
        self._doc_lengths.clear()
        self._summaries.clear()
        self._df = Counter()

        for chunk in chunks:
            terms = Counter(tokenize(chunk.text))
            self._doc_terms[chunk.chunk_id] = terms
            self._doc_lengths[chunk.chunk_id] = sum(terms.values())
            self._summaries[chunk.chunk_id] = chunk.text[:150]
            self._df.update(terms.keys())

        self._avg_length = (sum(self._doc_lengths.values()) / len(self._doc_lengths)) if self._doc_lengths else 0.0
        logger.log_operation("bm25.index", "success", {"chunks": len(self._doc_terms), "terms": len(self._df)})
        return len(self._doc_terms)

    def idf(self, term: str) -> float:
        n = len(self._doc_terms)
        df = self._df.get(term, 0)
        return math.log((n - df + 0.5) / (df + 0.5) + 1)

    def search(self, query: str, top_k: int = 5, threshold: float = 0.0) -> List[BM25Hit]:
        """Score every chunk against the query; keep scores above threshold."""
        query_terms = list(dict.fromkeys(tokenize(query)))
        if not query_terms or not self._doc_terms:
            return []

        hits = []
        for doc_id, terms in self._doc_terms.items():
            length = self._doc_lengths[doc_id]
            norm = self.k1 * (1 - self.b + self.b * length / self._avg_length) if self._avg_length else self.k1
            score = 0.0
            for term in query_terms:
                tf = terms.get(term, 0)
                if tf:
                    score += self.idf(term) * tf * (self.k1 + 1) / (tf + norm)
            if score > threshold:
                hits.append(BM25Hit(id=doc_id, score=score, summary=self._summaries[doc_id]))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def search_chunks(self, query: str, chunks: Sequence[Chunk], top_k: int = 10,
                      threshold: float = 0.1) -> List[ChunkHit]:
        """Search and map hits back to the caller's chunk objects, re-indexing if needed."""
        by_id = {c.chunk_id: c for c in chunks}
        if set(by_id) != set(self._doc_terms):
            self.index_chunks(chunks)
        return [
            ChunkHit(chunk=by_id[hit.id], score=hit.score)
            for hit in self.search(query, top_k=top_k, threshold=threshold)
            if hit.id in by_id
        ]

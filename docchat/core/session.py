"""
Composition point: wires one document's chunks and groups to retrieval,
granularity selection, context building and the ReAct engine.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..agents.react_engine import LLMCaller, ReActEngine
from ..agents.tools import DocumentToolkit
from ..util.logging import logger
from ..vector.bm25 import BM25Search
from ..vector.embeddings import IEmbeddingClient, ProgressSink
from ..vector.rerank import RerankClient
from ..vector.semantic_search import SemanticVectorSearch
from ..vector.types import Chunk, ChunkHit, RetrievalUnit
from .config import REACT_MAX_STEPS, get_budget_allocation
from .context_builder import ContextBuilder, DocumentState
from .granularity import SmartGranularitySelector
from .token_budget import TokenBudgetManager


class DocumentSession:
    """Everything needed to answer questions about one open document."""

    def __init__(self, doc_id: str,
                 chunks: Sequence[Union[Chunk, Dict[str, Any]]],
                 groups: Sequence[Union[RetrievalUnit, Dict[str, Any]]] = (),
                 name: str = None, page_count: int = None, language: str = None,
                 embedding_client: Optional[IEmbeddingClient] = None,
                 rerank_client: Optional[RerankClient] = None,
                 llm_caller: Optional[LLMCaller] = None,
                 db_path: str = None,
                 budget: TokenBudgetManager = None,
                 max_steps: int = None):
        self.doc_id = doc_id
        self.name = name or doc_id
        self.page_count = page_count
        self.language = language
        self.chunks = [c if isinstance(c, Chunk) else Chunk.from_dict(c, position=i) for i, c in enumerate(chunks)]
        self.groups = [g if isinstance(g, RetrievalUnit) else RetrievalUnit.from_dict(g) for g in groups]

        self.budget = budget or TokenBudgetManager(get_budget_allocation())
        self.semantic_search = (
            SemanticVectorSearch(embedding_client, rerank_client, db_path=db_path)
            if embedding_client is not None else None
        )
        self.bm25 = BM25Search()
        self.bm25.index_chunks(self.chunks)
        self.selector = SmartGranularitySelector(self.budget)
        self.context_builder = ContextBuilder(self.budget)
        self.llm_caller = llm_caller
        self.max_steps = max_steps or REACT_MAX_STEPS
        self._engine: Optional[ReActEngine] = None

    @property
    def vector_ready(self) -> bool:
        return self.semantic_search is not None and self.doc_id in self.semantic_search.indexed_docs

    def index(self, force_rebuild: bool = False, on_progress: Optional[ProgressSink] = None) -> Dict[str, Any]:
        """Build (or reuse) the document's vector index."""
        if self.semantic_search is None:
            return {"doc_id": self.doc_id, "count": 0, "cached": False, "failed": 0, "vector": False}
        summary = self.semantic_search.index_chunks(
            self.chunks, self.doc_id, force_rebuild=force_rebuild, on_progress=on_progress
        )
        # Tools depend on which indexes exist
        self._engine = None
        return dict(summary, vector=True)

    def index_status(self) -> Dict[str, Any]:
        if self.semantic_search is None:
            return {"indexed": False, "count": 0, "dimensions": 0, "size_kb": 0.0}
        return self.semantic_search.get_index_status(self.doc_id)

    def delete_index(self) -> int:
        if self.semantic_search is None:
            return 0
        self._engine = None
        return self.semantic_search.delete_index(self.doc_id)

    def search(self, query: str, top_k: int = 10, threshold: float = 0.3) -> List[ChunkHit]:
        """Vector search when the index is ready, otherwise BM25."""
        if self.vector_ready:
            return self.semantic_search.search(query, self.chunks, top_k=top_k, threshold=threshold,
                                               doc_id=self.doc_id)
        return self.bm25.search_chunks(query, self.chunks, top_k=top_k)

    def toolkit(self) -> DocumentToolkit:
        return DocumentToolkit(
            self.chunks,
            self.groups,
            semantic_search=self.semantic_search if self.vector_ready else None,
            bm25=self.bm25,
            doc_id=self.doc_id,
        )

    def select_context(self, query: str, max_tokens: int = None) -> str:
        """Rank groups for a query and render them at mixed granularity."""
        groups_by_id = {g.id: g for g in self.groups}
        ranked = []
        seen = set()
        for hit in self.search(query):
            group_id = hit.chunk.belongs_to_group
            if group_id in groups_by_id and group_id not in seen:
                seen.add(group_id)
                ranked.append((groups_by_id[group_id], hit.score))

        if not ranked:
            result = self.toolkit().search_semantic_groups(query, limit=len(self.groups) or 1)
            ranked = [(m.unit, m.score) for m in result.groups]

        limit = max_tokens or self.budget.get_remaining_context_budget()
        decisions = self.selector.select_mixed_granularity(query, ranked, max_tokens=limit)
        return self.selector.build_mixed_context(decisions)

    def document_state(self) -> DocumentState:
        return DocumentState(
            name=self.name,
            page_count=self.page_count,
            language=self.language,
            chunk_count=len(self.chunks),
            group_count=len(self.groups),
            has_vector_index=self.vector_ready,
        )

    @property
    def engine(self) -> ReActEngine:
        """ReAct engine with this document's tools, built lazily."""
        if self._engine is None:
            if self.llm_caller is None:
                raise ValueError("No LLM caller configured for this session")
            engine = ReActEngine(self.llm_caller, max_steps=self.max_steps)
            for tool in self.toolkit().as_tool_definitions(self.context_builder.format_tool_result):
                engine.register(tool)
            self._engine = engine
        return self._engine

    def ask(self, question: str, listeners: Dict[str, Callable[[Dict[str, Any]], None]] = None) -> Optional[str]:
        """
        Answer a question with the ReAct loop.

        Returns:
            The final answer, or None if the run was aborted
        """
        engine = self.engine
        listeners = listeners or {}
        for event, callback in listeners.items():
            engine.on(event, callback)

        initial = self.context_builder.build_initial_context(self.document_state())
        goal = self.context_builder.fit_to_budget(f"{initial}\n\n{question}")
        logger.log_operation("session.ask", "started", {"doc_id": self.doc_id, "question": question[:100]})
        try:
            return engine.run(goal)
        finally:
            for event, callback in listeners.items():
                engine.off(event, callback)

    def abort(self) -> bool:
        return self._engine.abort() if self._engine is not None else False

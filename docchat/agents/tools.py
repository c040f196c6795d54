"""
Document tools for the ReAct loop.

Each tool returns a ToolResult variant; ContextBuilder renders the variant
into the observation text the model sees. Tools available:
- vector_search - semantic chunk search
- keyword_search - BM25 chunk search
- grep - literal substring search, "|" separates alternatives
- search_semantic_groups - keyword/summary match over semantic groups
- fetch - one group's text at a chosen granularity
- map - outline of the document's groups
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence

from ..core.granularity import GRANULARITY_LEVELS
from ..vector.bm25 import BM25Search, tokenize
from ..vector.semantic_search import SemanticVectorSearch
from ..vector.types import Chunk, ChunkHit, RetrievalUnit

FETCH_CHAR_LIMITS = {"summary": 800, "digest": 3000, "full": 8000}


@dataclass
class ToolDefinition:
    """A tool the ReAct engine can call. execute(args) returns the observation text."""
    name: str
    description: str
    execute: Callable[[Any], Any]
    param_schema: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Base of the tool result variants."""
    kind: ClassVar[str] = "result"

    @property
    def success(self) -> bool:
        return True


@dataclass
class ErrorResult(ToolResult):
    kind: ClassVar[str] = "error"
    tool: str
    error: str

    @property
    def success(self) -> bool:
        return False


@dataclass
class VectorSearchResult(ToolResult):
    kind: ClassVar[str] = "vector_search"
    query: str
    hits: List[ChunkHit]


@dataclass
class KeywordSearchResult(ToolResult):
    kind: ClassVar[str] = "keyword_search"
    query: str
    hits: List[ChunkHit]


@dataclass
class GrepMatch:
    chunk_id: str
    term: str
    preview: str


@dataclass
class GrepResult(ToolResult):
    kind: ClassVar[str] = "grep"
    query: str
    matches: List[GrepMatch]
    total: int


@dataclass
class GroupMatch:
    unit: RetrievalUnit
    score: float


@dataclass
class GroupSearchResult(ToolResult):
    kind: ClassVar[str] = "search_semantic_groups"
    query: str
    groups: List[GroupMatch]


@dataclass
class FetchResult(ToolResult):
    kind: ClassVar[str] = "fetch"
    group_id: str
    granularity: str
    text: str
    char_count: int
    truncated: bool = False


@dataclass
class MapResult(ToolResult):
    kind: ClassVar[str] = "map"
    groups: List[RetrievalUnit]
    total: int


def _validate_parameters(tool_name: str, schema: Dict[str, Dict[str, Any]], args: Any) -> Dict[str, Any]:
    """Normalize raw Action Input into keyword arguments for a tool."""
    if isinstance(args, str) or args is None:
        # A bare string fills the first required parameter
        primary = next((name for name, spec in schema.items() if spec.get("required")), None)
        args = {primary: args} if primary and args else {}
    elif not isinstance(args, dict):
        raise ValueError(f"Tool {tool_name} expects a JSON object or a string")

    validated = {}
    for name, spec in schema.items():
        if name in args and args[name] is not None:
            value = args[name]
            if spec.get("type") == "int":
                value = int(value)
            validated[name] = value
        elif spec.get("required"):
            raise ValueError(f"Required parameter '{name}' missing for tool {tool_name}")
        elif "default" in spec:
            validated[name] = spec["default"]
    return validated


class DocumentToolkit:
    """Retrieval tools over one open document."""

    def __init__(self, chunks: Sequence[Chunk], groups: Sequence[RetrievalUnit] = (),
                 semantic_search: Optional[SemanticVectorSearch] = None,
                 bm25: Optional[BM25Search] = None, doc_id: str = None):
        self.chunks = list(chunks)
        self.groups = list(groups)
        self.groups_by_id = {g.id: g for g in self.groups}
        self.semantic_search = semantic_search
        self.bm25 = bm25 or BM25Search()
        self.doc_id = doc_id
        self.tools = self._register_tools()

    def _register_tools(self) -> Dict[str, Dict[str, Any]]:
        tools = {
            "keyword_search": {
                "function": self.keyword_search,
                "description": "BM25 keyword search over document chunks. Good for exact terms and names.",
                "parameters": {
                    "query": {"type": "string", "required": True, "description": "Keywords"},
                    "limit": {"type": "int", "required": False, "default": 8, "description": "Number of results"},
                },
            },
            "grep": {
                "function": self.grep,
                "description": "Literal text search across chunks; separate alternatives with |.",
                "parameters": {
                    "query": {"type": "string", "required": True, "description": "Text to find"},
                    "limit": {"type": "int", "required": False, "default": 20, "description": "Maximum matches"},
                    "context": {"type": "int", "required": False, "default": 200, "description": "Characters of context"},
                },
            },
        }
        if self.semantic_search is not None:
            tools["vector_search"] = {
                "function": self.vector_search,
                "description": "Semantic search over document chunks. Good for paraphrased questions.",
                "parameters": {
                    "query": {"type": "string", "required": True, "description": "Natural language query"},
                    "limit": {"type": "int", "required": False, "default": 10, "description": "Number of results"},
                },
            }
        if self.groups:
            tools["search_semantic_groups"] = {
                "function": self.search_semantic_groups,
                "description": "Find semantic groups whose keywords or summary match the query.",
                "parameters": {
                    "query": {"type": "string", "required": True, "description": "Topic to find"},
                    "limit": {"type": "int", "required": False, "default": 5, "description": "Number of groups"},
                },
            }
            tools["fetch"] = {
                "function": self.fetch,
                "description": "Read one semantic group at granularity summary, digest or full.",
                "parameters": {
                    "group_id": {"type": "string", "required": True, "description": "Group id"},
                    "granularity": {"type": "string", "required": False, "default": "digest", "description": "summary|digest|full"},
                },
            }
            tools["map"] = {
                "function": self.map,
                "description": "List the document's semantic groups with keywords.",
                "parameters": {
                    "limit": {"type": "int", "required": False, "default": 50, "description": "Number of groups"},
                },
            }
        return tools

    def call_tool(self, name: str, args: Any = None) -> ToolResult:
        """Run a tool; failures come back as ErrorResult."""
        if name not in self.tools:
            return ErrorResult(tool=name, error=f"Unknown tool: {name}")
        tool_config = self.tools[name]
        try:
            params = _validate_parameters(name, tool_config["parameters"], args)
            return tool_config["function"](**params)
        except (ValueError, KeyError, TypeError) as e:
            return ErrorResult(tool=name, error=str(e))

    def vector_search(self, query: str, limit: int = 10) -> ToolResult:
        if self.semantic_search is None:
            return ErrorResult(tool="vector_search", error="Vector index is not available")
        hits = self.semantic_search.search(query, self.chunks, top_k=limit, doc_id=self.doc_id)
        return VectorSearchResult(query=query, hits=hits)

    def keyword_search(self, query: str, limit: int = 8) -> ToolResult:
        hits = self.bm25.search_chunks(query, self.chunks, top_k=limit)
        return KeywordSearchResult(query=query, hits=hits)

    def grep(self, query: str, limit: int = 20, context: int = 200) -> ToolResult:
        terms = [t.strip() for t in query.split("|") if t.strip()]
        if not terms:
            return ErrorResult(tool="grep", error="Empty query")

        matches = []
        total = 0
        half = max(0, context) // 2
        patterns = [(term, re.compile(re.escape(term), re.I)) for term in terms]
        for chunk in self.chunks:
            for term, pattern in patterns:
                # Offsets come from the original text, so previews stay aligned
                for found in pattern.finditer(chunk.text):
                    total += 1
                    if len(matches) < limit:
                        preview = chunk.text[max(0, found.start() - half):found.end() + half]
                        matches.append(GrepMatch(chunk_id=chunk.chunk_id, term=term, preview=preview))
        return GrepResult(query=query, matches=matches, total=total)

    def search_semantic_groups(self, query: str, limit: int = 5) -> ToolResult:
        terms = set(tokenize(query))
        if not terms:
            return GroupSearchResult(query=query, groups=[])

        scored = []
        for unit in self.groups:
            keyword_terms = set(tokenize(" ".join(unit.keywords)))
            summary_terms = set(tokenize(unit.summary))
            score = 3 * len(terms & keyword_terms) + 2 * len(terms & summary_terms)
            if score > 0:
                scored.append(GroupMatch(unit=unit, score=float(score)))

        scored.sort(key=lambda m: m.score, reverse=True)
        return GroupSearchResult(query=query, groups=scored[:limit])

    def fetch(self, group_id: str, granularity: str = "digest") -> ToolResult:
        if granularity not in GRANULARITY_LEVELS:
            return ErrorResult(tool="fetch", error=f"Unknown granularity: {granularity}")
        unit = self.groups_by_id.get(group_id)
        if unit is None:
            return ErrorResult(tool="fetch", error=f"Group not found: {group_id}")

        if not unit.has_level(granularity):
            # Fall back to whichever level the group does have
            for level in ("digest", "summary", "full"):
                if unit.has_level(level):
                    granularity = level
                    break
        text = unit.text_for(granularity)

        limit = FETCH_CHAR_LIMITS[granularity]
        return FetchResult(
            group_id=group_id,
            granularity=granularity,
            text=text[:limit],
            char_count=len(text),
            truncated=len(text) > limit,
        )

    def map(self, limit: int = 50) -> ToolResult:
        return MapResult(groups=self.groups[:limit], total=len(self.groups))

    def as_tool_definitions(self, format_result: Callable[[str, Any], str]) -> List[ToolDefinition]:
        """Wrap every tool for the ReAct engine; observations are rendered by format_result."""
        definitions = []
        for name, config in self.tools.items():
            def execute(args, _name=name):
                return format_result(_name, self.call_tool(_name, args))

            params = ", ".join(
                f"{p}{'' if spec.get('required') else '?'}" for p, spec in config["parameters"].items()
            )
            definitions.append(ToolDefinition(
                name=name,
                description=f"{config['description']} Input: JSON object with {params}" if params else config["description"],
                execute=execute,
                param_schema=config["parameters"],
            ))
        return definitions

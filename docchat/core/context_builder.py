"""
Renders document state and tool results into bounded prompt text.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Optional

from ..agents.tools import (
    ErrorResult,
    FetchResult,
    GrepResult,
    GroupSearchResult,
    KeywordSearchResult,
    MapResult,
    ToolResult,
    VectorSearchResult,
)
from .token_budget import TokenBudgetManager

CHARS_PER_TOKEN = 2.5
ELISION_MARKER = "\n\n...[earlier context omitted]...\n\n"


@dataclass
class DocumentState:
    """What the engine knows about the open document before any tool call."""
    name: str
    page_count: Optional[int] = None
    language: Optional[str] = None
    chunk_count: int = 0
    group_count: int = 0
    has_vector_index: bool = False

    @property
    def has_semantic_groups(self) -> bool:
        return self.group_count > 0


class ContextBuilder:
    """Builds the initial context, formats observations and prunes long contexts."""

    def __init__(self, budget: TokenBudgetManager = None):
        self.budget = budget or TokenBudgetManager()

    def build_initial_context(self, state: DocumentState) -> str:
        lines = ["=== Document ===", f"Name: {state.name}"]
        if state.page_count:
            lines.append(f"Pages: {state.page_count}")
        if state.language:
            lines.append(f"Language: {state.language}")
        lines.append(f"Chunks: {state.chunk_count}")

        lines.append("")
        lines.append("=== Available tools ===")
        if state.has_semantic_groups:
            lines.append(
                f"- Structured navigation over {state.group_count} semantic groups: "
                "map, search_semantic_groups, fetch"
            )
        if state.has_vector_index:
            lines.append("- Semantic search: vector_search")
        lines.append("- Lexical search: keyword_search, grep")

        lines.append("")
        lines.append("=== Current state ===")
        lines.append("No document content has been loaded yet. Use a tool to read the document before answering.")
        return "\n".join(lines)

    def format_tool_result(self, tool_name: str, result: Any) -> str:
        """Render a tool result as observation text with counts and truncated previews."""
        if isinstance(result, ErrorResult):
            return f"[{tool_name}] failed: {result.error}"

        if isinstance(result, (VectorSearchResult, KeywordSearchResult)):
            lines = [f"[{tool_name}] {len(result.hits)} results for \"{result.query}\""]
            for i, hit in enumerate(result.hits, 1):
                lines.append(f"{i}. [{hit.chunk.chunk_id}] score={hit.score:.3f}")
                lines.append(f"   {hit.chunk.text[:200]}")
            return "\n".join(lines)

        if isinstance(result, GrepResult):
            lines = [f"[{tool_name}] {result.total} matches for \"{result.query}\""]
            for match in result.matches[:5]:
                lines.append(f"- [{match.chunk_id}] ...{match.preview[:300]}...")
            if result.total > 5:
                lines.append(f"({result.total - 5} more matches not shown)")
            return "\n".join(lines)

        if isinstance(result, GroupSearchResult):
            lines = [f"[{tool_name}] {len(result.groups)} groups for \"{result.query}\""]
            for match in result.groups:
                unit = match.unit
                lines.append(f"- {unit.id} (score={match.score:g}) keywords: {', '.join(unit.keywords)}")
                lines.append(f"  {unit.summary[:150]}")
            return "\n".join(lines)

        if isinstance(result, FetchResult):
            text = result.text[:1500]
            lines = [f"[{tool_name}] {result.group_id} ({result.granularity}, {result.char_count} chars)", text]
            if result.truncated or len(result.text) > 1500:
                lines.append("...[truncated]")
            return "\n".join(lines)

        if isinstance(result, MapResult):
            lines = [f"[{tool_name}] {len(result.groups)}/{result.total} groups"]
            for unit in result.groups:
                lines.append(f"- {unit.id}: {', '.join(unit.keywords[:5])}")
            return "\n".join(lines)

        if isinstance(result, ToolResult):
            return f"[{tool_name}] {type(result).__name__}"

        try:
            dump = json.dumps(result, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            dump = str(result)
        return f"[{tool_name}] {dump[:500]}"

    def prune_context(self, context: str, max_tokens: int) -> str:
        """
        Bound a context to about max_tokens.

        Keeps the first 30% and last 50% of the character target, so recent
        information survives pruning.
        """
        target = math.floor(max_tokens * CHARS_PER_TOKEN)
        if len(context) <= target:
            return context
        head = math.floor(target * 0.3)
        tail = math.floor(target * 0.5)
        return context[:head] + ELISION_MARKER + (context[-tail:] if tail else "")

    def fit_to_budget(self, context: str, system_prompt: str = "", history: str = "") -> str:
        """Prune a context to what the token budget leaves after system prompt and history."""
        remaining = self.budget.get_remaining_context_budget(system_prompt, history)
        return self.prune_context(context, remaining)

"""
Chooses how much text (summary, digest or full) to reveal per retrieved unit.

Queries are classified by ordered keyword-pattern families, mapped to a base
granularity and unit count, then adjusted for candidate scarcity, per-unit
features and the caller's token ceiling.
"""

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..util.logging import logger
from ..vector.types import RetrievalUnit
from .token_budget import TokenBudgetManager

GRANULARITY_LEVELS = ("summary", "digest", "full")

# Checked in order; first match wins
QUERY_PATTERNS: Dict[str, List[re.Pattern]] = {
    "overview": [
        re.compile(r'总结|概括|概述|简述|大意|主要内容|主题|讲.*什么|关于什么'),
        re.compile(r'整体|全文|全部|所有|\boverall\b|\bsummary\b|\bgeneral\b|\bsummari[sz]e\b|\boverview\b', re.I),
        re.compile(r'介绍|背景|目的|意义|作用'),
        re.compile(r'有哪些|包括.*什么|涉及.*什么'),
    ],
    "extraction": [
        re.compile(r'具体|详细|准确|精确|原文|\bexact\b|\bspecific\b|\bdetails?\b', re.I),
        re.compile(r'数据|数值|数字|结果|\btables?\b|\bfigures?\b|\bcharts?\b', re.I),
        re.compile(r'步骤|流程|过程|方法|\balgorithms?\b|\bprocedures?\b', re.I),
        re.compile(r'公式|方程|\bequations?\b|\bformulas?\b', re.I),
        re.compile(r'引用|\bcitations?\b|\breferences?\b|出处', re.I),
        re.compile(r'代码|\bcode\b|实现|\bimplementation\b', re.I),
    ],
    "analytical": [
        re.compile(r'分析|解释|说明|\bexplain\b|\banaly[sz]e\b|\bwhy\b|\bhow\b', re.I),
        re.compile(r'原因|理由|依据|根据|原理|机制'),
        re.compile(r'比较|对比|区别|差异|联系|关系|\bcompare\b', re.I),
        re.compile(r'优缺点|利弊|\badvantages?\b|\bdisadvantages?\b', re.I),
        re.compile(r'影响|效果|\bimpact\b|\beffects?\b', re.I),
    ],
}


@dataclass(frozen=True)
class GranularityRule:
    granularity: str
    max_units: int
    description: str


GRANULARITY_RULES: Dict[str, GranularityRule] = {
    "overview": GranularityRule("summary", 10, "Overview query: scan many units through their summaries"),
    "analytical": GranularityRule("digest", 5, "Analytical query: digests give enough detail to reason over"),
    "extraction": GranularityRule("full", 3, "Extraction query: full text keeps exact facts intact"),
    "specific": GranularityRule("digest", 5, "Specific query: digests balance detail and length"),
}


@dataclass
class GranularitySelection:
    """Uniform detail level for a candidate set."""
    granularity: str
    max_units: int
    query_type: str
    reasoning: str
    estimated_tokens: int


@dataclass
class GranularityDecision:
    """Detail level chosen for one unit in mixed mode."""
    unit: RetrievalUnit
    granularity: str
    estimated_tokens: int
    score: float


def downgrade(granularity: str) -> Optional[str]:
    """Next lower detail level, or None below summary."""
    index = GRANULARITY_LEVELS.index(granularity)
    return GRANULARITY_LEVELS[index - 1] if index > 0 else None


class SmartGranularitySelector:
    """Token-aware granularity selection for retrieved units."""

    # Thresholds for treating a level as meaningfully present
    MIN_DIGEST_CHARS = 100
    MIN_FULL_CHARS = 500
    SHORT_UNIT_CHARS = 2000

    def __init__(self, budget: TokenBudgetManager = None):
        self.budget = budget or TokenBudgetManager()

    def classify_query(self, query: str) -> str:
        """Classify a query as overview, extraction, analytical or specific."""
        q = (query or "").strip()
        if not q:
            return "specific"
        for query_type, patterns in QUERY_PATTERNS.items():
            for pattern in patterns:
                if pattern.search(q):
                    return query_type
        return "specific"

    def adjust_for_unit(self, unit: RetrievalUnit, granularity: str) -> str:
        """
        Adjust a granularity to what one unit can actually offer.

        Short units with a real full text are shown in full. A unit without a
        digest escalates to full (or falls back to summary); a unit without a
        full text treats digest as its ceiling.
        """
        has_digest = len(unit.digest or "") > self.MIN_DIGEST_CHARS
        has_full = len(unit.full_text or "") > self.MIN_FULL_CHARS

        if unit.char_count < self.SHORT_UNIT_CHARS and has_full:
            return "full"

        if not has_digest and granularity == "digest":
            return "full" if has_full else "summary"

        if not has_full and granularity == "full":
            return "digest" if has_digest else "summary"

        return granularity

    def estimate_unit_tokens(self, unit: RetrievalUnit, granularity: str) -> int:
        return self.budget.estimate(unit.text_for(granularity))

    def estimate_tokens(self, units: Sequence[RetrievalUnit], granularity: str) -> int:
        """Estimated tokens for revealing every unit at one granularity."""
        return sum(self.estimate_unit_tokens(u, granularity) for u in units)

    def select_granularity(self, query: str, candidates: Sequence[RetrievalUnit],
                           max_tokens: int = None, force_granularity: str = None,
                           max_units: int = None) -> GranularitySelection:
        """
        Choose one granularity and a unit count for a candidate set.

        Args:
            query: The user query
            candidates: Units in rank order
            max_tokens: Optional ceiling for the estimated tokens of the chosen set
            force_granularity: Skip the query-type mapping
            max_units: Override the rule's unit count

        Returns:
            GranularitySelection describing the decision
        """
        if force_granularity is not None and force_granularity not in GRANULARITY_LEVELS:
            raise ValueError(f"Unknown granularity: {force_granularity}")

        query_type = self.classify_query(query)
        rule = GRANULARITY_RULES[query_type]
        granularity = force_granularity or rule.granularity
        max_units = max_units or rule.max_units

        # Scarce candidates can afford more detail
        if len(candidates) == 1:
            unit = candidates[0]
            if unit.full_text:
                granularity = "full"
            elif granularity == "full" or (granularity == "digest" and not unit.digest):
                granularity = "digest" if unit.digest else "summary"
        elif len(candidates) <= 2 and granularity == "summary":
            granularity = "digest"

        estimated = self.estimate_tokens(candidates[:max_units], granularity)
        if max_tokens:
            while estimated > max_tokens:
                lower = downgrade(granularity)
                if lower is not None:
                    granularity = lower
                elif max_units > 1:
                    max_units = max(1, math.floor(max_units * 0.6))
                else:
                    break
                estimated = self.estimate_tokens(candidates[:max_units], granularity)

        logger.log_operation("granularity.select", "success", {
            "query_type": query_type,
            "granularity": granularity,
            "max_units": max_units,
            "estimated_tokens": estimated,
        })

        return GranularitySelection(
            granularity=granularity,
            max_units=max_units,
            query_type=query_type,
            reasoning=rule.description,
            estimated_tokens=estimated,
        )

    def select_mixed_granularity(self, query: str,
                                 ranked: Sequence[Union[RetrievalUnit, Tuple[RetrievalUnit, float]]],
                                 max_tokens: int = 8000) -> List[GranularityDecision]:
        """
        Give rank-ordered units decaying detail within a token budget.

        The best unit gets the highest level (digest for overview queries),
        ranks 2-3 the rule's base level and the rest summary. Units are admitted
        greedily in rank order; a unit that would overflow is degraded toward
        summary first, and admission stops once even that does not fit.
        """
        query_type = self.classify_query(query)
        rule = GRANULARITY_RULES[query_type]

        decisions: List[GranularityDecision] = []
        used = 0
        for rank, item in enumerate(ranked):
            unit, score = item if isinstance(item, tuple) else (item, 1.0)

            if rank == 0:
                granularity = "digest" if query_type == "overview" else "full"
            elif rank < 3:
                granularity = rule.granularity
            else:
                granularity = "summary"
            granularity = unit.effective_granularity(self.adjust_for_unit(unit, granularity))

            tokens = self.estimate_unit_tokens(unit, granularity)
            while used + tokens > max_tokens:
                lower = downgrade(granularity)
                if lower is None:
                    break
                # Skip levels the unit does not carry
                granularity = unit.effective_granularity(lower)
                tokens = self.estimate_unit_tokens(unit, granularity)

            if used + tokens > max_tokens:
                break

            used += tokens
            decisions.append(GranularityDecision(unit=unit, granularity=granularity,
                                                 estimated_tokens=tokens, score=score))
            if len(decisions) >= rule.max_units:
                break

        logger.log_operation("granularity.mixed", "success", {
            "query_type": query_type,
            "admitted": len(decisions),
            "candidates": len(ranked),
            "tokens": used,
        })
        return decisions

    @staticmethod
    def build_mixed_context(decisions: Sequence[GranularityDecision]) -> str:
        """Render mixed-granularity decisions as one context block."""
        parts = []
        for decision in decisions:
            unit = decision.unit
            lines = [f"[{unit.id} - {decision.granularity}]"]
            if unit.keywords:
                lines.append(f"Keywords: {', '.join(unit.keywords)}")
            lines.append("Content:")
            lines.append(unit.text_for(decision.granularity))
            parts.append("\n".join(lines))
        return "\n\n".join(parts)
